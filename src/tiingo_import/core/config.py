"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from tiingo_import.core.exceptions import ConfigError
from tiingo_import.core.models import StorageBackend

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class TiingoConfig(BaseModel):
    """Tiingo daily-prices API access configuration."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    token: str = ""
    base_url: str = "https://api.tiingo.com/tiingo/daily"
    rate_limit: float = 5
    history_days: int = 7
    request_timeout: float = 30.0

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("rate_limit must be > 0 (requests per second)")
        return v

    @field_validator("history_days")
    @classmethod
    def history_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("history_days must be >= 0")
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class PipelineConfig(BaseModel):
    """Fan-out limits for the fetch pipeline."""

    model_config = ConfigDict(frozen=True)

    max_concurrency: int = 64
    queue_size: int = 1000
    deadline: float | None = None

    @field_validator("max_concurrency", "queue_size")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("deadline")
    @classmethod
    def deadline_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("deadline must be > 0 seconds")
        return v


class ParquetConfig(BaseModel):
    """Columnar archive writer parameters."""

    model_config = ConfigDict(frozen=True)

    path: str | None = None
    row_group_size: int = 1024 * 1024
    page_size: int = 8 * 1024
    compression: str = "gzip"
    batch_size: int = 10_000

    @field_validator("row_group_size", "page_size", "batch_size")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class StorageConfig(BaseModel):
    """Relational store configuration."""

    model_config = ConfigDict(frozen=True)

    backend: StorageBackend = StorageBackend.SQLITE
    sqlite_path: str | None = None
    postgresql_url: str | None = None
    table: str = "eod"
    legacy_table: str = "eod_v1"
    source: str = "api.tiingo.com"

    @field_validator("table", "legacy_table")
    @classmethod
    def valid_identifier(cls, v: str) -> str:
        """Table names are interpolated into SQL, so only plain identifiers pass."""
        if not _IDENTIFIER_RE.match(v):
            raise ValueError(f"invalid table name: {v!r}")
        return v

    @model_validator(mode="after")
    def pg_url_required_for_pg(self) -> StorageConfig:
        if self.backend == StorageBackend.POSTGRESQL and not self.postgresql_url:
            raise ValueError("postgresql_url is required when backend is 'postgresql'")
        return self

    @property
    def enabled(self) -> bool:
        if self.backend == StorageBackend.POSTGRESQL:
            return bool(self.postgresql_url)
        return bool(self.sqlite_path)


class DisplayConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    hide_progress: bool = False


class LogConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return v


class ImportConfig(BaseModel):
    """Root configuration for tiingo-import."""

    model_config = ConfigDict(frozen=True)

    tiingo: TiingoConfig = TiingoConfig()
    pipeline: PipelineConfig = PipelineConfig()
    parquet: ParquetConfig = ParquetConfig()
    storage: StorageConfig = StorageConfig()
    display: DisplayConfig = DisplayConfig()
    log: LogConfig = LogConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "TIINGO_IMPORT_",
) -> ImportConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (TIINGO_IMPORT_TIINGO__TOKEN, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        TIINGO_IMPORT_TIINGO__RATE_LIMIT=5  ->  tiingo.rate_limit = 5
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return ImportConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("TIINGO_IMPORT_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from TIINGO_IMPORT_CONFIG not found: {env_path}",
                context={"field": "TIINGO_IMPORT_CONFIG", "value": env_path},
            )
        return p

    default = Path("tiingo-import.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            else:
                target[part] = dict(target[part])
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
