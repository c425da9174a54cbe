"""tiingo_import.core: foundation types, config, and exceptions."""

from tiingo_import.core.config import (
    DisplayConfig,
    ImportConfig,
    LogConfig,
    ParquetConfig,
    PipelineConfig,
    StorageConfig,
    TiingoConfig,
    load_config,
)
from tiingo_import.core.exceptions import (
    ConfigError,
    FetchError,
    SinkError,
    StorageError,
    TiingoImportError,
)
from tiingo_import.core.models import (
    CompositeFigi,
    FetchReport,
    Instrument,
    QuoteRecord,
    RunReport,
    SinkReport,
    StorageBackend,
    Ticker,
    TiingoQuote,
    WriteOutcome,
)

__all__ = [
    # Type aliases
    "CompositeFigi",
    "Ticker",
    # Enums
    "StorageBackend",
    "WriteOutcome",
    # Models
    "Instrument",
    "TiingoQuote",
    "QuoteRecord",
    "FetchReport",
    "SinkReport",
    "RunReport",
    # Config
    "ImportConfig",
    "TiingoConfig",
    "PipelineConfig",
    "ParquetConfig",
    "StorageConfig",
    "DisplayConfig",
    "LogConfig",
    "load_config",
    # Exceptions
    "TiingoImportError",
    "ConfigError",
    "FetchError",
    "SinkError",
    "StorageError",
]
