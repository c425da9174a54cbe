"""Columnar archive sink: gzip-compressed parquet via pyarrow."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq

from tiingo_import.core.config import ParquetConfig
from tiingo_import.core.exceptions import SinkError
from tiingo_import.core.models import QuoteRecord, SinkReport, WriteOutcome
from tiingo_import.fetch.normalize import MARKET_TZ

logger = logging.getLogger(__name__)

QUOTE_SCHEMA = pa.schema(
    [
        pa.field("date", pa.string()),
        pa.field("ticker", pa.string()),
        pa.field("compositeFigi", pa.string()),
        pa.field("open", pa.float32()),
        pa.field("high", pa.float32()),
        pa.field("low", pa.float32()),
        pa.field("close", pa.float32()),
        pa.field("volume", pa.float32()),
        pa.field("dividend", pa.float32()),
        pa.field("split", pa.float32()),
    ]
)


def _to_row(record: QuoteRecord) -> dict:
    """Flatten a record into a parquet row; raises on non-numeric fields."""
    return {
        "date": record.display_date,
        "ticker": str(record.ticker),
        "compositeFigi": str(record.composite_figi),
        "open": float(record.open),
        "high": float(record.high),
        "low": float(record.low),
        "close": float(record.close),
        "volume": float(record.volume),
        "dividend": float(record.dividend),
        "split": float(record.split_factor),
    }


class ParquetSink:
    """Writes a record set to a single parquet file.

    Records are converted ``batch_size`` at a time and buffered until a full
    row group (``row_group_size`` rows) is available, so every row group but
    the last has exactly that many rows. Opening, writing and closing the
    file are fatal (``SinkError``); a record that cannot be converted is
    logged and skipped while the rest are written.
    """

    name = "parquet"

    def __init__(self, config: ParquetConfig | None = None) -> None:
        self._config = config or ParquetConfig()

    def write(self, records: list[QuoteRecord], path: str | Path) -> SinkReport:
        path = Path(path)
        try:
            writer = pq.ParquetWriter(
                str(path),
                QUOTE_SCHEMA,
                compression=self._config.compression,
                data_page_size=self._config.page_size,
            )
        except (OSError, pa.ArrowException) as e:
            logger.error("Cannot create parquet file %s: %s", path, e)
            raise SinkError(
                f"Cannot create parquet file: {e}",
                context={"sink": self.name, "path": str(path)},
            ) from e

        written = 0
        skipped = 0
        batch: list[dict] = []
        pending: list[pa.Table] = []
        try:
            for record in records:
                try:
                    batch.append(_to_row(record))
                except (TypeError, ValueError, OverflowError) as e:
                    skipped += 1
                    logger.error(
                        "Parquet write failed for record %s %s (%s): %s",
                        record.ticker, record.date_str, record.composite_figi, e,
                    )
                    continue
                if len(batch) >= self._config.batch_size:
                    skipped += self._convert(batch, pending)
                    batch = []
                    written += self._write_row_groups(writer, pending, path, final=False)
            if batch:
                skipped += self._convert(batch, pending)
            written += self._write_row_groups(writer, pending, path, final=True)
        finally:
            try:
                writer.close()
            except (OSError, pa.ArrowException) as e:
                logger.error("Parquet write failed on close: %s", e)
                raise SinkError(
                    f"Failed to finalize parquet file: {e}",
                    context={"sink": self.name, "path": str(path)},
                ) from e

        logger.info("Parquet write finished: %d records to %s", written, path)
        return SinkReport(
            sink=self.name,
            written=written,
            skipped=skipped,
            outcomes={WriteOutcome.SUCCESS: written, WriteOutcome.LOST: skipped},
        )

    def _convert(self, rows: list[dict], pending: list[pa.Table]) -> int:
        """Append ``rows`` to ``pending`` as an Arrow table; returns rows skipped.

        If the batch as a whole does not convert, rows are retried one by one
        and only the failing ones are dropped.
        """
        try:
            pending.append(pa.Table.from_pylist(rows, schema=QUOTE_SCHEMA))
            return 0
        except pa.ArrowException:
            if len(rows) == 1:
                row = rows[0]
                logger.error(
                    "Parquet write failed for record %s %s (%s): cannot convert to schema",
                    row["ticker"], row["date"], row["compositeFigi"],
                )
                return 1
        return sum(self._convert([row], pending) for row in rows)

    def _write_row_groups(
        self,
        writer: pq.ParquetWriter,
        pending: list[pa.Table],
        path: Path,
        final: bool,
    ) -> int:
        """Write every full row group buffered in ``pending``; returns rows written.

        With ``final`` the remainder is flushed as a last, shorter row group.
        """
        size = self._config.row_group_size
        buffered = sum(t.num_rows for t in pending)
        if buffered == 0 or (buffered < size and not final):
            return 0

        table = pa.concat_tables(pending)
        pending.clear()
        full = buffered if final else buffered - buffered % size
        if full < buffered:
            pending.append(table.slice(full))
        try:
            writer.write_table(table.slice(0, full), row_group_size=size)
        except (OSError, pa.ArrowException) as e:
            logger.error("Parquet write failed for %s: %s", path, e)
            raise SinkError(
                f"Failed to write parquet row group: {e}",
                context={"sink": self.name, "path": str(path)},
            ) from e
        return full


def read_parquet_quotes(path: str | Path) -> list[QuoteRecord]:
    """Load a parquet archive written by ParquetSink back into records.

    Values come back at float32 precision.
    """
    table = pq.read_table(str(path))
    records: list[QuoteRecord] = []
    for row in table.to_pylist():
        event_date = _parse_stored_date(row["date"])
        records.append(
            QuoteRecord(
                date_str=row["date"],
                event_date=event_date,
                ticker=row["ticker"],
                composite_figi=row["compositeFigi"],
                open=row["open"],
                high=row["high"],
                low=row["low"],
                close=row["close"],
                volume=row["volume"],
                dividend=row["dividend"],
                split_factor=row["split"],
            )
        )
    return records


def _parse_stored_date(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(MARKET_TZ)
