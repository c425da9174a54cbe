"""Fetch pipeline: rate-gated dispatch, result aggregation, and run orchestration."""

from tiingo_import.pipeline.dispatcher import QuoteFetcher, QuotePipeline, ResultAggregator
from tiingo_import.pipeline.runner import fetch_quotes, history_start, persist, run_import

__all__ = [
    "QuoteFetcher",
    "QuotePipeline",
    "ResultAggregator",
    "fetch_quotes",
    "history_start",
    "persist",
    "run_import",
]
