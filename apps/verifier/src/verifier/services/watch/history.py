"""Local history of verification jobs and their status transitions.

Writes are serialised through a single lock so concurrent pollers never
interleave a status change; reads go straight to the database and, with
SQLite in WAL mode, observe either the state before or after a write.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import asdict, replace
from datetime import date, datetime, time, timedelta, timezone
import logging
from random import random
from threading import Lock
from time import sleep
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, Select, delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from verifier.db import Base, get_engine
from verifier.models import StatusUpdateRecord, VerificationJobRecord
from verifier.services.watch.errors import (
    DuplicateJobError,
    NotFoundError,
    StorageError,
    StorageErrorKind,
)
from verifier.services.watch.status import JobStatus, resolve_status_filter
from verifier.services.watch.types import (
    DurationSummary,
    HistoryFilter,
    HistoryStats,
    SortKey,
    StatusUpdate,
    VerificationJob,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]

_READ_RETRY_ATTEMPTS = 3
_READ_RETRY_BASE_SECONDS = 0.05


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _day_start(value: date) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _classify(exc: SQLAlchemyError) -> StorageErrorKind:
    text = str(getattr(exc, "orig", None) or exc).lower()
    if "locked" in text or "busy" in text:
        return StorageErrorKind.LOCKED
    if "readonly" in text or "read-only" in text or "permission" in text:
        return StorageErrorKind.PERMISSION_DENIED
    if "malformed" in text or "not a database" in text or "corrupt" in text:
        return StorageErrorKind.CORRUPT
    return StorageErrorKind.UNAVAILABLE


def _to_job(record: VerificationJobRecord) -> VerificationJob:
    return VerificationJob(
        job_id=record.job_id,
        network=record.network,
        class_hash=record.class_hash,
        contract_name=record.contract_name,
        status=JobStatus.parse(record.status),
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
        package=record.package,
        license=record.license,
        cairo_version=record.cairo_version,
        scarb_version=record.scarb_version,
        dojo_version=record.dojo_version,
        completed_at=as_utc(record.completed_at),
        message=record.message,
        error_category=record.error_category,
    )


def _summarize(rows: Iterable[tuple[str, datetime, datetime | None]]) -> DurationSummary:
    total = successful = failed = 0
    durations: list[float] = []
    for status_value, created_at, completed_at in rows:
        status = JobStatus.parse(status_value)
        total += 1
        if status is JobStatus.SUCCESS:
            successful += 1
            if completed_at is not None:
                durations.append(max(0.0, (as_utc(completed_at) - as_utc(created_at)).total_seconds()))
        elif status.is_failure:
            failed += 1

    return DurationSummary(
        total=total,
        successful=successful,
        failed=failed,
        pending=total - successful - failed,
        success_rate=(successful / total) if total else None,
        average_duration_seconds=(sum(durations) / len(durations)) if durations else None,
        min_duration_seconds=min(durations) if durations else None,
        max_duration_seconds=max(durations) if durations else None,
    )


class JobQuery:
    """Lazy result of :meth:`HistoryStore.query`; every iteration re-runs the query."""

    def __init__(self, store: HistoryStore, statement: Select[Any]) -> None:
        self._store = store
        self._statement = statement

    def __iter__(self) -> Iterator[VerificationJob]:
        return self._store._iterate(self._statement)

    def all(self) -> list[VerificationJob]:
        return list(self)

    def first(self) -> VerificationJob | None:
        return next(iter(self), None)


class HistoryStore:
    def __init__(
        self,
        engine: Engine,
        *,
        clock: Clock = utc_now,
        create_schema: bool = True,
    ) -> None:
        self._engine = engine
        self._clock = clock
        self._write_lock = Lock()
        if create_schema:
            with self._translate():
                Base.metadata.create_all(bind=engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def now(self) -> datetime:
        return as_utc(self._clock())

    @contextmanager
    def _translate(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            kind = _classify(exc)
            raise StorageError(
                f"history database error ({kind.value}): {getattr(exc, 'orig', None) or exc}",
                kind=kind,
            ) from exc

    @contextmanager
    def _writing(self) -> Iterator[Session]:
        with self._write_lock, self._translate():
            with Session(self._engine, expire_on_commit=False) as session, session.begin():
                yield session

    def _read(self, operation: Callable[[Session], T]) -> T:
        delay = _READ_RETRY_BASE_SECONDS
        attempt = 1
        while True:
            try:
                with self._translate(), Session(self._engine) as session:
                    return operation(session)
            except StorageError as exc:
                if exc.kind is not StorageErrorKind.LOCKED or attempt >= _READ_RETRY_ATTEMPTS:
                    raise
                logger.debug("history read contention attempt=%s; retrying in %.2fs", attempt, delay)
                sleep(delay + random() * 0.2 * delay)
                delay *= 2
                attempt += 1

    def _iterate(self, statement: Select[Any]) -> Iterator[VerificationJob]:
        with self._translate(), Session(self._engine) as session:
            for record in session.scalars(statement.execution_options(yield_per=200)):
                yield _to_job(record)

    def insert(self, job: VerificationJob) -> VerificationJob:
        created_at = as_utc(job.created_at)
        completed_at = None
        if job.status.is_terminal:
            completed_at = as_utc(job.completed_at) or created_at

        with self._writing() as session:
            if session.get(VerificationJobRecord, job.job_id) is not None:
                raise DuplicateJobError(f"job {job.job_id} already exists in history")

            session.add(
                VerificationJobRecord(
                    job_id=job.job_id,
                    network=job.network,
                    class_hash=job.class_hash,
                    contract_name=job.contract_name,
                    package=job.package,
                    license=job.license,
                    cairo_version=job.cairo_version,
                    scarb_version=job.scarb_version,
                    dojo_version=job.dojo_version,
                    status=job.status.value,
                    created_at=created_at,
                    updated_at=created_at,
                    completed_at=completed_at,
                    message=job.message,
                    error_category=job.error_category,
                )
            )
            # The parent row must exist before its first transition under foreign_keys=ON.
            session.flush()
            session.add(
                StatusUpdateRecord(job_id=job.job_id, status=job.status.value, observed_at=created_at)
            )

        logger.info("recorded job job_id=%s network=%s", job.job_id, job.network)
        return replace(job, created_at=created_at, updated_at=created_at, completed_at=completed_at)

    def update_status(
        self,
        job_id: str,
        new_status: JobStatus | str,
        message: str | None = None,
        error_category: str | None = None,
    ) -> VerificationJob:
        status = JobStatus.parse(new_status)

        with self._writing() as session:
            record = session.get(VerificationJobRecord, job_id)
            if record is None:
                raise NotFoundError(f"job {job_id} not found in history")

            current = JobStatus.parse(record.status)
            if current.is_terminal:
                logger.debug("job %s already terminal (%s); ignoring %s", job_id, current.value, status.value)
                return _to_job(record)
            if status is current:
                return _to_job(record)
            if status.rank < current.rank:
                logger.warning(
                    "status regression ignored job_id=%s stored=%s reported=%s",
                    job_id,
                    current.value,
                    status.value,
                )
                return _to_job(record)

            observed_at = self.now()
            last_observed = as_utc(
                session.scalar(
                    select(func.max(StatusUpdateRecord.observed_at)).where(
                        StatusUpdateRecord.job_id == job_id
                    )
                )
            )
            if last_observed is not None and observed_at <= last_observed:
                observed_at = last_observed + timedelta(microseconds=1)

            session.add(StatusUpdateRecord(job_id=job_id, status=status.value, observed_at=observed_at))
            record.status = status.value
            record.updated_at = observed_at
            if status.is_terminal:
                record.completed_at = observed_at
                record.message = message
                record.error_category = error_category
            job = _to_job(record)

        logger.info("job status updated job_id=%s %s -> %s", job_id, current.value, status.value)
        return job

    def get(self, job_id: str) -> VerificationJob | None:
        def operation(session: Session) -> VerificationJob | None:
            record = session.get(VerificationJobRecord, job_id)
            return _to_job(record) if record is not None else None

        return self._read(operation)

    def status_updates(self, job_id: str) -> list[StatusUpdate]:
        def operation(session: Session) -> list[StatusUpdate]:
            records = session.scalars(
                select(StatusUpdateRecord)
                .where(StatusUpdateRecord.job_id == job_id)
                .order_by(StatusUpdateRecord.observed_at.asc())
            ).all()
            return [
                StatusUpdate(
                    job_id=record.job_id,
                    status=JobStatus.parse(record.status),
                    observed_at=as_utc(record.observed_at),
                )
                for record in records
            ]

        return self._read(operation)

    def _duration_expression(self) -> ColumnElement[Any]:
        if self._engine.dialect.name == "sqlite":
            return func.julianday(VerificationJobRecord.completed_at) - func.julianday(
                VerificationJobRecord.created_at
            )
        return VerificationJobRecord.completed_at - VerificationJobRecord.created_at

    @staticmethod
    def _conditions(filters: HistoryFilter) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = []
        if filters.status is not None:
            statuses = sorted(status.value for status in resolve_status_filter(filters.status))
            conditions.append(VerificationJobRecord.status.in_(statuses))
        if filters.network is not None:
            conditions.append(VerificationJobRecord.network == filters.network)
        if filters.job_id is not None:
            if filters.job_id_prefix:
                conditions.append(VerificationJobRecord.job_id.startswith(filters.job_id, autoescape=True))
            else:
                conditions.append(VerificationJobRecord.job_id == filters.job_id)
        if filters.contract_name:
            conditions.append(
                func.lower(VerificationJobRecord.contract_name).contains(
                    filters.contract_name.lower(), autoescape=True
                )
            )
        if filters.class_hash_prefix:
            conditions.append(
                func.lower(VerificationJobRecord.class_hash).startswith(
                    filters.class_hash_prefix.lower(), autoescape=True
                )
            )
        if filters.since is not None:
            conditions.append(VerificationJobRecord.created_at >= _day_start(filters.since))
        if filters.before is not None:
            conditions.append(VerificationJobRecord.created_at < _day_start(filters.before))
        if filters.after is not None:
            conditions.append(
                VerificationJobRecord.created_at >= _day_start(filters.after) + timedelta(days=1)
            )
        return conditions

    def query(self, filters: HistoryFilter | None = None) -> JobQuery:
        filters = filters or HistoryFilter()
        statement = select(VerificationJobRecord).where(*self._conditions(filters))

        if filters.sort is SortKey.DURATION:
            key = self._duration_expression()
        elif filters.sort is SortKey.CONTRACT:
            key = func.lower(VerificationJobRecord.contract_name)
        else:
            key = VerificationJobRecord.created_at

        order = key.desc() if filters.descending else key.asc()
        if filters.sort is SortKey.DURATION:
            order = order.nulls_last()
        tie_break = (
            VerificationJobRecord.created_at.desc() if filters.descending else VerificationJobRecord.created_at.asc()
        )
        statement = statement.order_by(order, tie_break, VerificationJobRecord.job_id.asc())

        if filters.limit is not None:
            statement = statement.limit(max(0, filters.limit))
        return JobQuery(self, statement)

    def recent_durations(self, network: str | None = None, sample_size: int = 10) -> list[float]:
        statement = select(VerificationJobRecord.created_at, VerificationJobRecord.completed_at).where(
            VerificationJobRecord.status == JobStatus.SUCCESS.value,
            VerificationJobRecord.completed_at.is_not(None),
        )
        if network is not None:
            statement = statement.where(VerificationJobRecord.network == network)
        statement = statement.order_by(VerificationJobRecord.completed_at.desc()).limit(max(0, sample_size))

        def operation(session: Session) -> list[float]:
            return [
                max(0.0, (as_utc(completed_at) - as_utc(created_at)).total_seconds())
                for created_at, completed_at in session.execute(statement).all()
            ]

        return self._read(operation)

    def stats(self, filters: HistoryFilter | None = None) -> HistoryStats:
        filters = filters or HistoryFilter()
        statement = select(
            VerificationJobRecord.network,
            VerificationJobRecord.status,
            VerificationJobRecord.created_at,
            VerificationJobRecord.completed_at,
        ).where(*self._conditions(filters))

        rows: Sequence[tuple[str, str, datetime, datetime | None]] = self._read(
            lambda session: [tuple(row) for row in session.execute(statement).all()]
        )

        counts_by_status: dict[str, int] = {}
        per_network: dict[str, list[tuple[str, datetime, datetime | None]]] = {}
        for network, status_value, created_at, completed_at in rows:
            counts_by_status[status_value] = counts_by_status.get(status_value, 0) + 1
            per_network.setdefault(network, []).append((status_value, created_at, completed_at))

        overall = _summarize((status, created, completed) for _, status, created, completed in rows)
        return HistoryStats(
            **asdict(overall),
            counts_by_status=counts_by_status,
            by_network={network: _summarize(items) for network, items in sorted(per_network.items())},
        )

    def clean(
        self,
        older_than_days: int,
        status: str | JobStatus | None = None,
        network: str | None = None,
    ) -> int:
        if older_than_days < 0:
            raise ValueError("older_than_days must be non-negative")

        cutoff = self.now() - timedelta(days=older_than_days)
        conditions = [VerificationJobRecord.created_at < cutoff]
        conditions.extend(self._conditions(HistoryFilter(status=status, network=network)))
        deleted = self._delete_where(conditions)
        logger.info("cleaned %s history record(s) older than %s days", deleted, older_than_days)
        return deleted

    def clean_all(self) -> int:
        return self._delete_where([])

    def _delete_where(self, conditions: list[ColumnElement[bool]]) -> int:
        matching_ids = select(VerificationJobRecord.job_id).where(*conditions)
        with self._writing() as session:
            session.execute(
                delete(StatusUpdateRecord)
                .where(StatusUpdateRecord.job_id.in_(matching_ids))
                .execution_options(synchronize_session=False)
            )
            result = session.execute(
                delete(VerificationJobRecord)
                .where(*conditions)
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)

    def pending_jobs(self, network: str | None = None) -> list[VerificationJob]:
        return self.query(HistoryFilter(status="pending", network=network, descending=False)).all()


def open_history_store() -> HistoryStore:
    return HistoryStore(get_engine())
