"""
Application configuration utilities.

This module defines the ``Settings`` class used for environment variables and
the ``EngineConfig`` model that holds every business threshold of the
forecasting pipeline.  Thresholds live in YAML files under ``CONFIG_DIR`` so a
deployment can tune them without code changes:

* ``thresholds.yaml`` - demand levels, trend, seasonality, confidence and
  forecast settings.
* ``settings.yaml`` - replenishment policy, history lookbacks and batch limits.
* ``seasonality.yaml`` - the static category to peak-month fallback table.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Directory holding products.csv / sale_items.csv (or Parquet siblings)
    data_dir: str = "data"
    config_dir: str = "configs"

    cors_origins: str = ""

    # Seed for forecast jitter; unset means fresh entropy on every call
    forecast_seed: Optional[int] = None


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# ---------------------------------------------------------------------------
# Threshold sections


class DemandLevelThresholds(BaseModel):
    high: float = Field(10.0, gt=0, description="Units/day at or above which demand is High")
    medium: float = Field(3.0, gt=0, description="Units/day at or above which demand is Medium")

    @model_validator(mode="after")
    def _ordered(self) -> "DemandLevelThresholds":
        if self.medium > self.high:
            raise ValueError("demand_levels.medium must not exceed demand_levels.high")
        return self


class TrendThresholds(BaseModel):
    increasing: float = Field(0.15, gt=0)
    declining: float = Field(-0.15, lt=0)
    window_days: int = Field(7, ge=1)
    min_history_records: int = Field(14, ge=0)


class SeasonalityThresholds(BaseModel):
    min_records: int = Field(100, ge=1)
    min_months: int = Field(6, ge=1, le=12)
    peak_deviation: float = Field(0.30, gt=0)
    low_deviation: float = Field(-0.30, lt=0)
    cv_threshold: float = Field(0.25, ge=0)
    min_peak_months: int = Field(2, ge=1)
    confidence_cutoff: float = Field(0.6, ge=0, le=1)
    low_factor_deviation: float = Field(-0.20, lt=0)
    min_factor: float = Field(0.6, gt=0)
    max_factor: float = Field(1.8, gt=0)
    no_pattern_confidence: float = Field(0.8, ge=0, le=1)
    static_peak_factor: float = Field(1.3, gt=0)
    static_off_peak_factor: float = Field(0.9, gt=0)
    static_confidence: float = Field(0.7, ge=0, le=1)

    @model_validator(mode="after")
    def _factor_bounds(self) -> "SeasonalityThresholds":
        if not self.min_factor <= 1.0 <= self.max_factor:
            raise ValueError("seasonality factor bounds must bracket 1.0")
        return self


class ConfidenceSettings(BaseModel):
    full_history_records: int = Field(90, ge=1)
    recent_window_days: int = Field(30, ge=1)
    volume_weight: float = Field(0.4, ge=0)
    recency_weight: float = Field(0.3, ge=0)
    consistency_weight: float = Field(0.3, ge=0)
    variance_scale: float = Field(100.0, gt=0)


class ForecastSettings(BaseModel):
    horizon_days: int = Field(30, ge=1, le=365)
    usage_window_days: int = Field(30, ge=1)
    weekly_window_days: int = Field(7, ge=1)
    max_trend_adjustment: float = Field(0.5, ge=0, le=1)
    jitter: float = Field(0.1, ge=0, lt=1, description="Half-width of the multiplicative daily jitter")
    interval_method: Literal["fixed", "residual"] = "fixed"
    interval_band: float = Field(0.2, ge=0, le=1)
    interval_service_level: float = Field(0.8, gt=0.5, lt=1)


class ReplenishmentSettings(BaseModel):
    policy: Literal["moving-average", "eoq-safety-stock", "dynamic-seasonal"] = "moving-average"
    lead_time_days: float = Field(7.0, gt=0)
    default_reorder_level: int = Field(100, ge=0)
    supply_days: int = Field(30, ge=1)
    service_level: float = Field(0.95, ge=0.5, lt=1)
    order_cost: float = Field(50.0, ge=0)
    holding_cost_rate: float = Field(0.2, gt=0)
    min_order_qty: int = Field(10, ge=0)


class BatchSettings(BaseModel):
    max_concurrency: int = Field(8, ge=1)
    per_product_timeout_seconds: float = Field(10.0, gt=0)


class CategorySeasonality(BaseModel):
    seasonal: bool = False
    peak_months: List[int] = Field(default_factory=list)

    @field_validator("peak_months")
    @classmethod
    def _valid_months(cls, value: List[int]) -> List[int]:
        for month in value:
            if not 1 <= month <= 12:
                raise ValueError(f"peak month {month} is outside 1..12")
        return sorted(set(value))


DEFAULT_SEASONAL_CATEGORIES: Dict[str, Dict[str, object]] = {
    "Pain Relief": {"seasonal": False, "peak_months": []},
    "Antibiotics": {"seasonal": True, "peak_months": [12, 1, 2, 6, 7]},
    "Antihistamine": {"seasonal": True, "peak_months": [3, 4, 5, 9, 10]},
    "Respiratory": {"seasonal": True, "peak_months": [12, 1, 2, 6, 7]},
    "Vitamins": {"seasonal": True, "peak_months": [1, 6, 9, 12]},
    "Cardiovascular": {"seasonal": False, "peak_months": []},
    "Diabetes": {"seasonal": False, "peak_months": []},
    "Gastro": {"seasonal": False, "peak_months": []},
}


class SeasonalityTable(BaseModel):
    """Static category to seasonality lookup used when dynamic detection is inconclusive."""

    categories: Dict[str, CategorySeasonality] = Field(
        default_factory=lambda: {
            name: CategorySeasonality.model_validate(entry)
            for name, entry in DEFAULT_SEASONAL_CATEGORIES.items()
        }
    )

    def lookup(self, category: Optional[str]) -> CategorySeasonality:
        if not category:
            return CategorySeasonality()
        return self.categories.get(category.strip(), CategorySeasonality())


class EngineConfig(BaseModel):
    """Every tunable threshold of the forecasting and replenishment pipeline."""

    demand_levels: DemandLevelThresholds = Field(default_factory=DemandLevelThresholds)
    trend: TrendThresholds = Field(default_factory=TrendThresholds)
    seasonality: SeasonalityThresholds = Field(default_factory=SeasonalityThresholds)
    confidence: ConfidenceSettings = Field(default_factory=ConfidenceSettings)
    forecast: ForecastSettings = Field(default_factory=ForecastSettings)
    replenishment: ReplenishmentSettings = Field(default_factory=ReplenishmentSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    history_lookback_days: int = Field(90, ge=1)
    seasonality_lookback_days: int = Field(730, ge=1)
    seasonal_categories: SeasonalityTable = Field(default_factory=SeasonalityTable)


THRESHOLD_SECTIONS = ("demand_levels", "trend", "seasonality", "confidence", "forecast")
SETTINGS_SECTIONS = ("replenishment", "batch", "history_lookback_days", "seasonality_lookback_days")


def engine_config_from_documents(
    thresholds: dict,
    settings: dict,
    seasonality: dict,
    source: str = "configuration",
) -> EngineConfig:
    """Validate already-parsed YAML documents into an :class:`EngineConfig`."""

    payload: dict = {}
    for key in THRESHOLD_SECTIONS:
        if thresholds.get(key) is not None:
            payload[key] = thresholds[key]
    for key in SETTINGS_SECTIONS:
        if settings.get(key) is not None:
            payload[key] = settings[key]
    if seasonality.get("categories") is not None:
        payload["seasonal_categories"] = {"categories": seasonality["categories"]}

    try:
        return EngineConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid {source}: {exc}") from exc


def load_engine_config(config_root: str = "configs") -> EngineConfig:
    """Assemble an :class:`EngineConfig` from the YAML files in ``config_root``.

    Missing files or sections fall back to the built-in defaults.  Values that
    fail validation raise :class:`ConfigurationError`.
    """

    return engine_config_from_documents(
        load_yaml(os.path.join(config_root, "thresholds.yaml")),
        load_yaml(os.path.join(config_root, "settings.yaml")),
        load_yaml(os.path.join(config_root, "seasonality.yaml")),
        source=f"configuration under {config_root}",
    )
