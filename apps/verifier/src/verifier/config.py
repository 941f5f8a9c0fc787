from __future__ import annotations

from dataclasses import dataclass, field, fields
from functools import lru_cache
import os
from pathlib import Path
import tomllib
from typing import Any

CONFIG_FILE_NAME = ".voyager.toml"
DEFAULT_HISTORY_DB_PATH = Path("~/.voyager/history.db")


class ConfigError(RuntimeError):
    pass


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


def _default_database_url() -> str:
    return f"sqlite+pysqlite:///{DEFAULT_HISTORY_DB_PATH.expanduser()}"


@dataclass(frozen=True)
class Settings:
    history_db_url: str
    db_echo: bool
    api_timeout_seconds: float
    batch_delay_seconds: float
    default_network: str | None


@lru_cache
def get_settings() -> Settings:
    return Settings(
        history_db_url=os.getenv("VERIFIER_HISTORY_DB_URL", _default_database_url()),
        db_echo=_to_bool(os.getenv("VERIFIER_DB_ECHO"), default=False),
        api_timeout_seconds=_to_float(
            os.getenv("VERIFIER_API_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        batch_delay_seconds=_to_float(
            os.getenv("VERIFIER_BATCH_DELAY_SECONDS"), default=5.0, minimum=0.0
        ),
        default_network=os.getenv("VERIFIER_NETWORK") or None,
    )


@dataclass(frozen=True)
class ContractEntry:
    class_hash: str
    contract_name: str
    package: str | None = None


@dataclass(frozen=True)
class ConfigLayer:
    """One source of configuration values; ``None`` means "not set here"."""

    network: str | None = None
    url: str | None = None
    license: str | None = None
    watch: bool | None = None
    notify: bool | None = None
    verbose: bool | None = None
    package: str | None = None
    batch_delay_seconds: float | None = None
    contracts: tuple[ContractEntry, ...] | None = None


@dataclass(frozen=True)
class ResolvedConfig:
    network: str | None
    url: str | None
    license: str | None
    watch: bool
    notify: bool
    verbose: bool
    package: str | None
    batch_delay_seconds: float
    contracts: tuple[ContractEntry, ...] = field(default_factory=tuple)

    @property
    def is_batch(self) -> bool:
        return bool(self.contracts)


def default_layer(settings: Settings | None = None) -> ConfigLayer:
    settings = settings or get_settings()
    return ConfigLayer(
        network=settings.default_network,
        watch=False,
        notify=False,
        verbose=False,
        batch_delay_seconds=settings.batch_delay_seconds,
        contracts=(),
    )


def merge_config(cli: ConfigLayer, file: ConfigLayer, defaults: ConfigLayer) -> ResolvedConfig:
    """Resolve CLI flag > config file > default for every field."""
    merged: dict[str, Any] = {}
    for item in fields(ConfigLayer):
        value = None
        for layer in (cli, file, defaults):
            candidate = getattr(layer, item.name)
            if candidate is not None:
                value = candidate
                break
        merged[item.name] = value

    # An explicit URL wins over a network inherited from a lower layer.
    if cli.url is not None and cli.network is None:
        merged["network"] = None

    return ResolvedConfig(
        network=merged["network"],
        url=merged["url"],
        license=merged["license"],
        watch=bool(merged["watch"]),
        notify=bool(merged["notify"]),
        verbose=bool(merged["verbose"]),
        package=merged["package"],
        batch_delay_seconds=float(merged["batch_delay_seconds"] or 0.0),
        contracts=tuple(merged["contracts"] or ()),
    )


def find_config_file(start_dir: Path) -> Path | None:
    current = start_dir.resolve()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _optional_str(table: dict[str, Any], key: str) -> str | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _optional_bool(table: dict[str, Any], key: str) -> bool | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def parse_config(data: dict[str, Any]) -> ConfigLayer:
    voyager = data.get("voyager", {})
    workspace = data.get("workspace", {})
    if not isinstance(voyager, dict) or not isinstance(workspace, dict):
        raise ConfigError("[voyager] and [workspace] must be tables")

    contracts: list[ContractEntry] = []
    for entry in data.get("contracts", []):
        if not isinstance(entry, dict):
            raise ConfigError("[[contracts]] entries must be tables")
        class_hash = _optional_str(entry, "class-hash")
        contract_name = _optional_str(entry, "contract-name")
        if class_hash is None or contract_name is None:
            raise ConfigError("[[contracts]] entries require class-hash and contract-name")
        contracts.append(
            ContractEntry(
                class_hash=class_hash,
                contract_name=contract_name,
                package=_optional_str(entry, "package"),
            )
        )

    batch_delay = voyager.get("batch-delay")
    if batch_delay is not None and (
        isinstance(batch_delay, bool) or not isinstance(batch_delay, (int, float))
    ):
        raise ConfigError("batch-delay must be a number of seconds")

    return ConfigLayer(
        network=_optional_str(voyager, "network"),
        url=_optional_str(voyager, "url"),
        license=_optional_str(voyager, "license"),
        watch=_optional_bool(voyager, "watch"),
        notify=_optional_bool(voyager, "notify"),
        verbose=_optional_bool(voyager, "verbose"),
        package=_optional_str(workspace, "default-package"),
        batch_delay_seconds=float(batch_delay) if batch_delay is not None else None,
        contracts=tuple(contracts) if contracts else None,
    )


def load_config_file(start_dir: Path) -> ConfigLayer:
    path = find_config_file(start_dir)
    if path is None:
        return ConfigLayer()

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc

    return parse_config(data)
