"""Reorder suggestions using pluggable replenishment policies.

Three policies share one interface:

* ``moving-average`` - cover ``supply_days`` at the trailing 30-day rate and
  top up to the reorder level.
* ``eoq-safety-stock`` - classic reorder point with safety stock and an
  economic order quantity.
* ``dynamic-seasonal`` - the moving-average rule applied to the forecast's
  trend and season adjusted rate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from statistics import NormalDist
from typing import Dict, Tuple, Type

from ..core.config import ReplenishmentSettings
from ..models.schemas import ProductSnapshot, ReorderSuggestion, StockStatus, UrgencyLevel

LOGGER = logging.getLogger(__name__)

# Reported when there is no measurable consumption to divide by.
UNBOUNDED_DAYS_OF_STOCK = 999


# ---------------------------------------------------------------------------
def z_for_service_level(service_level: float) -> float:
    """Return the z-score associated with a one-sided service level."""

    level = float(service_level)
    if not math.isfinite(level):
        level = 0.95
    level = max(0.5, min(level, 0.999))
    return NormalDist().inv_cdf(level)


def calculate_eoq(
    daily_mean: float,
    unit_cost: float,
    order_cost: float,
    carrying_cost_rate: float,
) -> float:
    """Compute the economic order quantity using annual demand."""

    if daily_mean <= 0 or unit_cost <= 0 or carrying_cost_rate <= 0 or order_cost <= 0:
        return 0.0

    annual_demand = daily_mean * 365.0
    carrying_cost = carrying_cost_rate * unit_cost
    value = (2.0 * order_cost * annual_demand) / carrying_cost
    return math.sqrt(value) if value > 0 else 0.0


def calculate_rop(
    daily_mean: float,
    daily_std: float,
    lead_time_days: float,
    service_level: float,
) -> Tuple[float, float]:
    """Return (reorder point, safety stock) over the lead time."""

    lead_time = max(lead_time_days, 0.0)
    mu_l = max(daily_mean, 0.0) * lead_time
    safety_stock = z_for_service_level(service_level) * max(daily_std, 0.0) * math.sqrt(lead_time)
    return mu_l + safety_stock, safety_stock


def days_of_stock(current_stock: int, daily_rate: float) -> float:
    """Days until stock-out at ``daily_rate``; the unbounded sentinel when the rate is zero."""

    if daily_rate <= 0 or not math.isfinite(daily_rate):
        return float(UNBOUNDED_DAYS_OF_STOCK)
    return min(current_stock / daily_rate, float(UNBOUNDED_DAYS_OF_STOCK))


def classify_urgency(current_stock: int, stock_days: float) -> UrgencyLevel:
    if current_stock == 0:
        return UrgencyLevel.CRITICAL
    if stock_days <= 3:
        return UrgencyLevel.HIGH
    if stock_days <= 7:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def stock_status(current_stock: int, stock_days: float) -> StockStatus:
    if current_stock == 0:
        return StockStatus(status="out_of_stock", label="Out of Stock")
    if stock_days <= 3:
        return StockStatus(status="critical", label="Critical")
    if stock_days <= 7:
        return StockStatus(status="low", label="Low Stock")
    if stock_days <= 14:
        return StockStatus(status="moderate", label="Moderate")
    return StockStatus(status="good", label="Good")


def reorder_message(urgency: UrgencyLevel, stock_days: float, quantity: int) -> str:
    days = int(round(stock_days))
    if urgency is UrgencyLevel.CRITICAL:
        return f"Out of stock! Order {quantity} units immediately"
    if urgency is UrgencyLevel.HIGH:
        return f"Only {days} days left! Order {quantity} units"
    if urgency is UrgencyLevel.MEDIUM:
        return f"{days} days remaining. Suggest ordering {quantity} units"
    return f"Stock adequate. Consider ordering {quantity} units soon"


# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class DemandSignal:
    """Per-product demand figures handed to a policy."""

    daily_average: float
    adjusted_daily_rate: float
    daily_std: float
    has_history: bool


class ReplenishmentPolicy:
    """Base policy: subclasses decide the consumption rate, trigger and quantity."""

    name: str = "base"

    def __init__(self, settings: ReplenishmentSettings) -> None:
        self.settings = settings

    def consumption_rate(self, signal: DemandSignal) -> float:
        return signal.daily_average

    def triggers(self, product: ProductSnapshot, signal: DemandSignal, stock_days: float,
                 lead_time: float, reorder_level: int) -> bool:
        raise NotImplementedError

    def order_quantity(self, product: ProductSnapshot, signal: DemandSignal, reorder_level: int) -> int:
        raise NotImplementedError


class MovingAveragePolicy(ReplenishmentPolicy):
    name = "moving-average"

    def triggers(self, product, signal, stock_days, lead_time, reorder_level):
        return stock_days <= lead_time or product.current_stock <= reorder_level

    def order_quantity(self, product, signal, reorder_level):
        supply = math.ceil(self.consumption_rate(signal) * self.settings.supply_days)
        deficit = max(0, reorder_level - product.current_stock)
        return int(supply + deficit)


class DynamicSeasonalPolicy(MovingAveragePolicy):
    name = "dynamic-seasonal"

    def consumption_rate(self, signal: DemandSignal) -> float:
        return signal.adjusted_daily_rate


class EoqSafetyStockPolicy(ReplenishmentPolicy):
    name = "eoq-safety-stock"

    def _reorder_point(self, signal: DemandSignal, lead_time: float) -> int:
        rop, _ = calculate_rop(
            daily_mean=signal.daily_average,
            daily_std=signal.daily_std,
            lead_time_days=lead_time,
            service_level=self.settings.service_level,
        )
        return int(math.ceil(rop))

    def triggers(self, product, signal, stock_days, lead_time, reorder_level):
        reorder_point = self._reorder_point(signal, lead_time)
        return product.current_stock <= reorder_point or product.current_stock <= reorder_level

    def order_quantity(self, product, signal, reorder_level):
        unit_cost = product.cost_price or product.price_fallback or 1.0
        eoq = calculate_eoq(
            daily_mean=signal.daily_average,
            unit_cost=unit_cost,
            order_cost=self.settings.order_cost,
            carrying_cost_rate=self.settings.holding_cost_rate,
        )
        return int(max(self.settings.min_order_qty, math.ceil(eoq)))


POLICIES: Dict[str, Type[ReplenishmentPolicy]] = {
    MovingAveragePolicy.name: MovingAveragePolicy,
    EoqSafetyStockPolicy.name: EoqSafetyStockPolicy,
    DynamicSeasonalPolicy.name: DynamicSeasonalPolicy,
}


class ReplenishmentAdvisor:
    """Turn stock levels and demand signals into a :class:`ReorderSuggestion`."""

    def __init__(self, settings: ReplenishmentSettings | None = None) -> None:
        self.settings = settings or ReplenishmentSettings()
        try:
            self.policy: ReplenishmentPolicy = POLICIES[self.settings.policy](self.settings)
        except KeyError as exc:
            raise ValueError(f"Unknown replenishment policy '{self.settings.policy}'") from exc

    # ------------------------------------------------------------------
    def lead_time(self, product: ProductSnapshot) -> float:
        return float(product.lead_time_days or self.settings.lead_time_days)

    def reorder_level(self, product: ProductSnapshot) -> int:
        if product.reorder_level is None:
            return self.settings.default_reorder_level
        return int(product.reorder_level)

    def stock_days(self, product: ProductSnapshot, signal: DemandSignal) -> float:
        return days_of_stock(product.current_stock, self.policy.consumption_rate(signal))

    # ------------------------------------------------------------------
    def advise(self, product: ProductSnapshot, signal: DemandSignal) -> ReorderSuggestion:
        stock_days = self.stock_days(product, signal)
        reported_days = int(round(stock_days))

        if not signal.has_history:
            return ReorderSuggestion(
                should_reorder=False,
                urgency=UrgencyLevel.LOW,
                suggested_quantity=0,
                days_until_stockout=reported_days,
                estimated_cost=0.0,
                message="No sales history; no reorder suggested",
                policy=self.policy.name,
            )

        lead_time = self.lead_time(product)
        reorder_level = self.reorder_level(product)
        if not self.policy.triggers(product, signal, stock_days, lead_time, reorder_level):
            return ReorderSuggestion(
                should_reorder=False,
                urgency=UrgencyLevel.LOW,
                suggested_quantity=0,
                days_until_stockout=reported_days,
                estimated_cost=0.0,
                message=f"Stock sufficient for {reported_days} days",
                policy=self.policy.name,
            )

        quantity = self.policy.order_quantity(product, signal, reorder_level)
        urgency = classify_urgency(product.current_stock, stock_days)
        unit_cost = product.cost_price or product.price_fallback or 0.0
        estimated_cost = round(quantity * unit_cost, 2)

        LOGGER.info(
            "Reorder advice for %s: policy=%s stock=%d days=%.1f qty=%d urgency=%s",
            product.id,
            self.policy.name,
            product.current_stock,
            stock_days,
            quantity,
            urgency.value,
        )
        return ReorderSuggestion(
            should_reorder=True,
            urgency=urgency,
            suggested_quantity=quantity,
            days_until_stockout=reported_days,
            estimated_cost=estimated_cost,
            message=reorder_message(urgency, stock_days, quantity),
            policy=self.policy.name,
        )
