"""Shared test fixtures for the AMM history service."""

import pytest

from ammtrail.config import AppSettings, CacheSettings, FetchSettings, NodeSettings, QuoteSettings


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (two fake endpoints, no delays)."""
    return AppSettings(
        log_level="DEBUG",
        node=NodeSettings(
            endpoints=["wss://node-a.test", "wss://node-b.test"],
            grant_delay=0.0,
            discovery_timeout=0.1,
        ),
        fetch=FetchSettings(page_delay=0.0, page_timeout=0.1),
        cache=CacheSettings(db_path=":memory:"),
        quote=QuoteSettings(),
    )
