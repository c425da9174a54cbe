"""Custom exception hierarchy for tiingo-import."""

from typing import Any


class TiingoImportError(Exception):
    """Base exception for all tiingo-import errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(TiingoImportError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field (str): the config field that failed validation
        value (Any): the invalid value (redacted for secrets)
    """


class FetchError(TiingoImportError):
    """Failed to fetch or parse EOD quotes for one instrument.

    Policy: log and yield zero records for that instrument. Never abort
    the run.

    Context keys:
        ticker (str): the instrument being fetched
        url (str): the URL that was requested (token redacted)
        status_code (int | None): HTTP status if a response arrived
    """


class SinkError(TiingoImportError):
    """A persistence sink could not be opened or finalized.

    Policy: fatal for that sink only. The other sink still runs.

    Context keys:
        sink (str): "parquet" or "database"
        path (str): destination, when file based
    """


class StorageError(SinkError):
    """Relational store operation failed.

    Raised for connection and schema failures. Per-record upsert failures
    are logged and counted by UpsertSink instead.

    Context keys:
        operation (str): "connect", "create_schema", "upsert", etc.
        table (str): the table involved
    """
