"""tiingo-import: rate-limited Tiingo EOD quote ingestion into parquet and SQL."""

__version__ = "0.1.0"
