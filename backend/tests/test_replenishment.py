from __future__ import annotations

from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.demand_engine.core.config import ReplenishmentSettings
from backend.demand_engine.models.schemas import ProductSnapshot, UrgencyLevel
from backend.demand_engine.services.replenishment_service import (
    UNBOUNDED_DAYS_OF_STOCK,
    DemandSignal,
    ReplenishmentAdvisor,
    calculate_eoq,
    calculate_rop,
    days_of_stock,
    stock_status,
    z_for_service_level,
)


def _product(stock: int, **overrides) -> ProductSnapshot:
    payload = {"id": "SKU-1", "name": "Paracetamol 500mg", "current_stock": stock, "cost_price": 2.5}
    payload.update(overrides)
    return ProductSnapshot(**payload)


def _signal(daily: float, adjusted: float | None = None, std: float = 0.0, has_history: bool = True) -> DemandSignal:
    return DemandSignal(
        daily_average=daily,
        adjusted_daily_rate=daily if adjusted is None else adjusted,
        daily_std=std,
        has_history=has_history,
    )


def test_z_for_service_level() -> None:
    assert z_for_service_level(0.95) == pytest.approx(1.6449, rel=1e-3)
    assert z_for_service_level(0.5) == pytest.approx(0.0, abs=1e-9)


def test_eoq_and_rop_formulas() -> None:
    eoq = calculate_eoq(daily_mean=10, unit_cost=5, order_cost=50, carrying_cost_rate=0.2)
    rop, safety_stock = calculate_rop(daily_mean=10, daily_std=4, lead_time_days=4, service_level=0.95)

    assert eoq == pytest.approx(604.152, rel=1e-4)
    assert safety_stock == pytest.approx(1.6449 * 4 * 2, rel=1e-3)
    assert rop == pytest.approx(40 + safety_stock)
    assert calculate_eoq(0, 5, 50, 0.2) == 0.0


def test_days_of_stock_uses_sentinel_for_zero_rate() -> None:
    assert days_of_stock(50, 0.0) == UNBOUNDED_DAYS_OF_STOCK
    assert days_of_stock(50, 2.0) == pytest.approx(25.0)


@pytest.mark.parametrize(
    "stock, days, expected",
    [
        (0, 0.0, "out_of_stock"),
        (5, 3.0, "critical"),
        (10, 7.0, "low"),
        (20, 14.0, "moderate"),
        (100, 50.0, "good"),
    ],
)
def test_stock_status_tiers(stock: int, days: float, expected: str) -> None:
    assert stock_status(stock, days).status == expected


def test_zero_stock_is_critical() -> None:
    suggestion = ReplenishmentAdvisor().advise(_product(0), _signal(2.0))

    assert suggestion.should_reorder is True
    assert suggestion.urgency is UrgencyLevel.CRITICAL
    assert suggestion.suggested_quantity == 60 + 100
    assert suggestion.days_until_stockout == 0
    assert suggestion.message == "Out of stock! Order 160 units immediately"
    assert suggestion.estimated_cost == pytest.approx(400.0)


@pytest.mark.parametrize(
    "stock, reorder_level, urgency, message",
    [
        (10, 0, UrgencyLevel.HIGH, "Only 2 days left! Order 150 units"),
        (20, 0, UrgencyLevel.MEDIUM, "4 days remaining. Suggest ordering 150 units"),
        (45, 50, UrgencyLevel.LOW, "Stock adequate. Consider ordering 155 units soon"),
    ],
)
def test_urgency_tiers(stock: int, reorder_level: int, urgency: UrgencyLevel, message: str) -> None:
    suggestion = ReplenishmentAdvisor().advise(_product(stock, reorder_level=reorder_level), _signal(5.0))

    assert suggestion.should_reorder is True
    assert suggestion.urgency is urgency
    assert suggestion.message == message


def test_sufficient_stock_needs_no_reorder() -> None:
    suggestion = ReplenishmentAdvisor().advise(_product(500, reorder_level=50), _signal(5.0))

    assert suggestion.should_reorder is False
    assert suggestion.urgency is UrgencyLevel.LOW
    assert suggestion.suggested_quantity == 0
    assert suggestion.estimated_cost == 0.0
    assert suggestion.message == "Stock sufficient for 100 days"


def test_reorder_level_triggers_even_with_long_cover() -> None:
    suggestion = ReplenishmentAdvisor().advise(_product(80), _signal(1.0))

    assert suggestion.should_reorder is True
    assert suggestion.suggested_quantity == 30 + 20


def test_no_history_never_reorders() -> None:
    suggestion = ReplenishmentAdvisor().advise(_product(0), _signal(0.0, has_history=False))

    assert suggestion.should_reorder is False
    assert suggestion.days_until_stockout == UNBOUNDED_DAYS_OF_STOCK


def test_cost_falls_back_to_selling_price() -> None:
    product = _product(0, cost_price=None, price_fallback=4.0, reorder_level=0)

    suggestion = ReplenishmentAdvisor().advise(product, _signal(1.0))

    assert suggestion.estimated_cost == pytest.approx(30 * 4.0)


def test_product_lead_time_overrides_default() -> None:
    product = _product(40, reorder_level=0, lead_time_days=14)

    assert ReplenishmentAdvisor().advise(product, _signal(4.0)).should_reorder is True
    assert ReplenishmentAdvisor().advise(_product(40, reorder_level=0), _signal(4.0)).should_reorder is False


def test_eoq_safety_stock_policy() -> None:
    advisor = ReplenishmentAdvisor(ReplenishmentSettings(policy="eoq-safety-stock"))
    product = _product(50, reorder_level=0, cost_price=5.0)

    suggestion = advisor.advise(product, _signal(10.0))
    idle = advisor.advise(_product(200, reorder_level=0, cost_price=5.0), _signal(10.0))

    assert suggestion.should_reorder is True
    assert suggestion.policy == "eoq-safety-stock"
    assert suggestion.suggested_quantity == 605
    assert idle.should_reorder is False


def test_eoq_policy_respects_minimum_order() -> None:
    advisor = ReplenishmentAdvisor(ReplenishmentSettings(policy="eoq-safety-stock", min_order_qty=1000))

    suggestion = advisor.advise(_product(0, cost_price=5.0), _signal(10.0))

    assert suggestion.suggested_quantity == 1000


def test_dynamic_seasonal_policy_uses_adjusted_rate() -> None:
    product = _product(60, reorder_level=0)
    signal = _signal(5.0, adjusted=10.0)

    seasonal = ReplenishmentAdvisor(ReplenishmentSettings(policy="dynamic-seasonal")).advise(product, signal)
    moving = ReplenishmentAdvisor().advise(product, signal)

    assert seasonal.should_reorder is True
    assert seasonal.suggested_quantity == 300
    assert seasonal.days_until_stockout == 6
    assert moving.should_reorder is False
