from functools import lru_cache
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase

from verifier.config import get_settings


class Base(DeclarativeBase):
    pass


def _prepare_sqlite_path(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:  # noqa: ANN001
    del connection_record
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_history_engine(database_url: str, *, echo: bool = False) -> Engine:
    if make_url(database_url).get_backend_name() != "sqlite":
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    _prepare_sqlite_path(database_url)
    engine = create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    event.listen(engine, "connect", _enable_sqlite_wal)
    return engine


@lru_cache
def get_engine() -> Engine:
    settings = get_settings()
    return create_history_engine(settings.history_db_url, echo=settings.db_echo)
