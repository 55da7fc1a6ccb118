r"""backend/tests/test_forecast_api.py"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

import pytest
import yaml
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.demand_engine.main import app
from backend.demand_engine.models.schemas import ProductSnapshot, SaleRecord
from backend.demand_engine.services.forecast_orchestrator import ForecastOrchestrator
from backend.demand_engine.services.record_store import FileRecordStore, InMemoryRecordStore

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
FORECASTS_MODULE = "backend.demand_engine.api.v1.forecasts"

client = TestClient(app)


def _flat(quantity: float) -> list[SaleRecord]:
    return [SaleRecord(timestamp=NOW - timedelta(days=day, hours=1), quantity=quantity) for day in range(90)]


@pytest.fixture
def orchestrator(monkeypatch) -> ForecastOrchestrator:
    store = InMemoryRecordStore(
        [
            ProductSnapshot(id="P1", name="Biogesic", current_stock=20, reorder_level=30, cost_price=2.5),
            ProductSnapshot(id="P2", name="Amoxil", category="Antibiotics", current_stock=0),
            ProductSnapshot(id="P3", name="Neozep", current_stock=5000, reorder_level=0),
        ],
        {"P1": _flat(5), "P2": _flat(12), "P3": _flat(1)},
    )
    instance = ForecastOrchestrator(store, seed=1, clock=lambda: NOW)
    monkeypatch.setattr(f"{FORECASTS_MODULE}._orchestrator", instance)
    return instance


def test_forecast_api_returns_expected_payload(orchestrator) -> None:
    response = client.get("/api/v1/forecasts/P1", params={"horizon_days": 14})

    assert response.status_code == 200
    payload = response.json()
    assert payload["product_id"] == "P1"
    assert payload["horizon_days"] == 14
    assert len(payload["daily_forecast"]) == 14
    assert payload["daily_average"] == 5.0
    assert payload["demand_level"] == "Medium"
    assert payload["trend"]["label"] == "Stable"
    assert payload["days_of_stock"] == 4
    assert payload["reorder_suggestion"]["urgency"] == "medium"
    assert payload["reorder_suggestion"]["suggested_quantity"] == 160
    datetime.fromisoformat(payload["generated_at"])


def test_forecast_api_unknown_product(orchestrator) -> None:
    response = client.get("/api/v1/forecasts/missing")

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "product_not_found"


@pytest.mark.parametrize("horizon", [0, 366])
def test_forecast_api_rejects_bad_horizon(orchestrator, horizon: int) -> None:
    response = client.get("/api/v1/forecasts/P1", params={"horizon_days": horizon})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_horizon"


def test_forecast_api_data_unavailable(monkeypatch, tmp_path: Path) -> None:
    empty = ForecastOrchestrator(FileRecordStore(tmp_path), clock=lambda: NOW)
    monkeypatch.setattr(f"{FORECASTS_MODULE}._orchestrator", empty)

    response = client.get("/api/v1/forecasts/P1")

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "data_unavailable"


def test_forecast_api_unexpected_failure(orchestrator, monkeypatch) -> None:
    def _boom(*_args, **_kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(orchestrator, "forecast", _boom)

    response = client.get("/api/v1/forecasts/P1")

    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "forecast_failed"


def test_batch_endpoint_reports_excluded_products(orchestrator) -> None:
    response = client.post("/api/v1/forecasts/batch", json={"product_ids": ["P3", "nope", "P1"]})

    assert response.status_code == 200
    payload = response.json()
    assert [item["product_id"] for item in payload["forecasts"]] == ["P3", "P1"]
    assert payload["requested"] == 3
    assert payload["excluded"] == ["nope"]


def test_batch_endpoint_validates_horizon(orchestrator) -> None:
    response = client.post("/api/v1/forecasts/batch", json={"product_ids": ["P1"], "horizon_days": 400})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_horizon"


def test_top_demand_and_trending_endpoints(orchestrator) -> None:
    top = client.get("/api/v1/forecasts/top-demand", params={"limit": 2})
    trending = client.get("/api/v1/forecasts/trending")

    assert top.status_code == 200
    assert [item["product_id"] for item in top.json()] == ["P2", "P1"]
    assert trending.status_code == 200
    assert trending.json() == []


def test_list_limit_is_validated(orchestrator) -> None:
    response = client.get("/api/v1/forecasts/top-demand", params={"limit": 0})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_request"


def test_summary_and_worklist_endpoints(orchestrator) -> None:
    summary = client.get("/api/v1/forecasts/summary").json()
    worklist = client.get("/api/v1/reorder/worklist").json()

    assert summary["total_products"] == 3
    assert summary["high_demand"] == 1
    assert summary["needs_reorder"] == 2
    assert summary["critical_stock"] == 1
    assert [item["product_id"] for item in worklist] == ["P2", "P1"]
    assert worklist[0]["suggestion"]["urgency"] == "critical"


def test_thresholds_get_put(orchestrator, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr("backend.demand_engine.api.v1.configs.CONFIG_DIR", str(tmp_path))
    (tmp_path / "thresholds.yaml").write_text(yaml.safe_dump({"demand_levels": {"high": 10, "medium": 3}}))

    response = client.get("/api/v1/configs/thresholds")
    assert response.status_code == 200
    assert response.json()["demand_levels"]["high"] == 10

    response = client.put("/api/v1/configs/thresholds", json={"demand_levels": {"high": 20}})
    assert response.status_code == 200
    assert response.json()["demand_levels"] == {"high": 20.0, "medium": 3.0}

    stored = yaml.safe_load((tmp_path / "thresholds.yaml").read_text())
    assert stored["demand_levels"] == {"high": 20, "medium": 3}
    assert orchestrator.config.demand_levels.high == 20
    assert client.get("/api/v1/forecasts/P2").json()["demand_level"] == "Medium"


def test_thresholds_put_rejects_invalid_values(orchestrator, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr("backend.demand_engine.api.v1.configs.CONFIG_DIR", str(tmp_path))

    response = client.put("/api/v1/configs/thresholds", json={"demand_levels": {"medium": 50}})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_request"
    assert not (tmp_path / "thresholds.yaml").exists()
    assert orchestrator.config.demand_levels.medium == 3


def test_seasonality_table_endpoint(orchestrator) -> None:
    response = client.get("/api/v1/configs/seasonality")

    assert response.status_code == 200
    categories = response.json()["categories"]
    assert categories["Antibiotics"] == {"seasonal": True, "peak_months": [1, 2, 6, 7, 12]}


def test_health_and_metrics() -> None:
    health = client.get("/api/v1/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    client.get("/api/v1/forecasts/missing")
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text
    assert "demand_forecasts_total" in metrics.text


def test_api_package_exposes_routers_lazily() -> None:
    import backend.demand_engine.api.v1 as api_v1

    assert api_v1.reorder.router.routes
    with pytest.raises(AttributeError):
        getattr(api_v1, "approvals")
