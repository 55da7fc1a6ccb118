r"""backend/demand_engine/models/schemas.py

Pydantic models used throughout the engine and the API.

Inputs (``SaleRecord``, ``ProductSnapshot``) are frozen snapshots supplied by
the record store.  Outputs (``ForecastResult`` and its parts) are rebuilt on
every call and serialise directly to JSON with ``model_dump(mode="json")``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator


# ============== Enums ==============


class DemandLevel(str, Enum):
    """Demand classification by units sold per day."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    NONE = "No Demand"


class TrendLabel(str, Enum):
    INCREASING = "Increasing"
    STABLE = "Stable"
    DECLINING = "Declining"


class UrgencyLevel(str, Enum):
    """Reorder urgency levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============== Inputs ==============


class SaleRecord(BaseModel):
    """A single sale line for one product."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    quantity: float = Field(..., ge=0)
    unit_price: Optional[float] = Field(None, ge=0)

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ProductSnapshot(BaseModel):
    """Read-only product metadata needed by the advisory step."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    category: Optional[str] = None
    current_stock: int = Field(0, ge=0)
    reorder_level: Optional[int] = Field(None, ge=0)
    cost_price: Optional[float] = Field(None, ge=0)
    price_fallback: Optional[float] = Field(None, ge=0)
    lead_time_days: Optional[float] = Field(None, gt=0)


# ============== Signals ==============


class TrendResult(BaseModel):
    label: TrendLabel = TrendLabel.STABLE
    percentage: float = Field(0.0, description="Relative change of the recent window vs the previous one")


class MonthDeviation(BaseModel):
    month: int = Field(..., ge=1, le=12)
    deviation: float


class SeasonalityAnalysis(BaseModel):
    """Details of a dynamic seasonality scan, kept for display and debugging."""

    overall_mean: float
    coefficient_of_variation: float
    monthly_means: Dict[int, float]
    peak_month_details: List[MonthDeviation] = Field(default_factory=list)
    low_month_details: List[MonthDeviation] = Field(default_factory=list)


class SeasonalityResult(BaseModel):
    is_seasonal: bool = False
    factor: float = Field(1.0, ge=0.6, le=1.8)
    peak_months: List[int] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0, le=1)
    method: str
    is_peak_period: bool = False
    analysis: Optional[SeasonalityAnalysis] = None


class ForecastSeries(BaseModel):
    """Daily forecast values plus the aggregated interval."""

    daily_forecast: List[float]
    total_forecast: int = Field(..., ge=0)
    low_estimate: int = Field(..., ge=0)
    high_estimate: int = Field(..., ge=0)
    adjusted_daily_rate: float = Field(0.0, ge=0)


# ============== Advisory ==============


class ReorderSuggestion(BaseModel):
    should_reorder: bool
    urgency: UrgencyLevel
    suggested_quantity: int = Field(..., ge=0)
    days_until_stockout: int = Field(..., ge=0, description="999 means no measurable consumption")
    estimated_cost: float = Field(0.0, ge=0)
    message: str
    policy: str


class StockStatus(BaseModel):
    status: str
    label: str


class DataRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class ForecastResult(BaseModel):
    """A complete demand forecast and reorder advisory for one product."""

    product_id: str
    product_name: str = ""
    category: Optional[str] = None
    current_stock: int = 0

    daily_average: float = Field(..., ge=0)
    weekly_average: float = Field(..., ge=0)
    monthly_average: float = Field(..., ge=0)
    demand_level: DemandLevel

    trend: TrendResult
    seasonality: SeasonalityResult

    horizon_days: int
    daily_forecast: List[float]
    total_forecast: int = Field(..., ge=0)
    low_estimate: int = Field(..., ge=0)
    high_estimate: int = Field(..., ge=0)

    confidence: float = Field(..., ge=0, le=1)
    data_points: int = Field(..., ge=0)

    days_of_stock: int = Field(..., ge=0)
    stock_status: StockStatus
    reorder_suggestion: ReorderSuggestion

    data_range: DataRange = Field(default_factory=DataRange)
    generated_at: datetime

    _daily_rate: Optional[float] = PrivateAttr(default=None)

    @property
    def daily_rate(self) -> float:
        """Unrounded daily average when known, used for ranking."""

        return self.daily_average if self._daily_rate is None else self._daily_rate


class DemandSummary(BaseModel):
    """Counts across a product set, used by the dashboard header."""

    total_products: int = 0
    high_demand: int = 0
    medium_demand: int = 0
    low_demand: int = 0
    trending: int = 0
    declining: int = 0
    needs_reorder: int = 0
    critical_stock: int = 0


class ReorderWorklistItem(BaseModel):
    product_id: str
    product_name: str = ""
    current_stock: int
    daily_average: float
    suggestion: ReorderSuggestion
