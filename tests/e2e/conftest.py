"""End-to-end test fixtures: requires network access and a Tiingo API token."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from tiingo_import.core.config import (
    ImportConfig,
    PipelineConfig,
    StorageConfig,
    TiingoConfig,
)


def pytest_configure(config):
    """Register e2e and slow markers."""
    config.addinivalue_line("markers", "e2e: end-to-end test requiring network")
    config.addinivalue_line("markers", "slow: tests that take > 10 seconds")


@pytest.fixture
def e2e_config(tmp_path: Path) -> ImportConfig:
    """Config for e2e tests with real Tiingo access."""
    token = os.environ.get("TIINGO_API_TOKEN")
    if not token:
        pytest.skip("TIINGO_API_TOKEN not set")
    return ImportConfig(
        tiingo=TiingoConfig(token=token, rate_limit=2, history_days=10, request_timeout=60),
        pipeline=PipelineConfig(max_concurrency=4, deadline=120),
        storage=StorageConfig(sqlite_path=str(tmp_path / "e2e.db")),
    )
