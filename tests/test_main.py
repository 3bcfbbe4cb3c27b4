"""Tests for component wiring and the FastAPI lifespan."""

from fastapi.testclient import TestClient

from ammtrail.api.app import create_app
from ammtrail.config import AppSettings
from ammtrail.data.cache import CacheLayer
from ammtrail.main import _build_components, lifespan
from ammtrail.pipeline import PairHistoryService
from ammtrail.pnl.quote import QuoteEngine


class TestBuildComponents:
    def test_all_components_present(self, mock_settings: AppSettings) -> None:
        components = _build_components(mock_settings)

        assert set(components) == {
            "storage",
            "cache",
            "ledger_client",
            "discovery",
            "fetcher",
            "quote_engine",
            "history_service",
        }
        assert isinstance(components["cache"], CacheLayer)
        assert isinstance(components["quote_engine"], QuoteEngine)
        assert isinstance(components["history_service"], PairHistoryService)

    def test_pool_uses_node_settings(self, mock_settings: AppSettings) -> None:
        components = _build_components(mock_settings)
        pool = components["ledger_client"].pool
        assert pool.max_connections == mock_settings.node.max_connections
        assert pool.active_count == 0


class TestLifespan:
    def test_startup_and_shutdown(self, mock_settings: AppSettings) -> None:
        app = create_app(lifespan=lifespan)
        app.state.settings = mock_settings
        app.state.components = _build_components(mock_settings)

        with TestClient(app) as client:
            response = client.post("/api/cache/evict")
            assert response.status_code == 200
            assert response.json() == {"removed": 0}
            assert app.state.history_service is app.state.components["history_service"]
