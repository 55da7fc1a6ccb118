r"""backend/demand_engine/services/forecasting_service.py

Multi-day demand forecast built from the usage, trend and seasonality signals.

The point forecast is the trailing 30-day usage rate
scaled by a bounded trend multiplier and the current-month seasonal factor,
then spread over the horizon with a small multiplicative jitter so the series
is not a flat line.  The jitter is drawn from an injected
``numpy.random.Generator``; passing a seeded generator makes the output
reproducible.
"""

from __future__ import annotations

import logging
from datetime import datetime
from math import sqrt
from statistics import NormalDist
from typing import Optional

import numpy as np

from ..core.config import ForecastSettings
from ..models.schemas import ForecastSeries, SeasonalityResult, TrendResult
from .confidence_service import daily_totals, population_variance
from .usage_service import HistoryLike, UsageAggregator, as_history_frame

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helper utilities (kept top-level for straightforward unit testing)


def trend_multiplier(trend: TrendResult, max_adjustment: float = 0.5) -> float:
    """Return ``1 + percentage`` with the percentage clamped to ``±max_adjustment``."""

    bounded = max(-max_adjustment, min(float(trend.percentage), max_adjustment))
    return 1.0 + bounded


def compute_interval(
    total: int,
    daily_std: float,
    horizon_days: int,
    z_value: float,
) -> tuple[int, int]:
    """Prediction interval for a horizon total from the historical daily spread.

    Daily deviations are treated as independent, so the spread of the total
    grows with the square root of the horizon.
    """

    if not np.isfinite(daily_std) or daily_std < 0:
        daily_std = 0.0
    spread = z_value * daily_std * sqrt(max(horizon_days, 0))
    low = int(round(max(total - spread, 0.0)))
    high = int(round(total + spread))
    return min(low, total), max(high, total)


class ForecastGenerator:
    """Combine the demand signals into a horizon forecast with an interval."""

    def __init__(
        self,
        settings: ForecastSettings | None = None,
        usage: UsageAggregator | None = None,
    ) -> None:
        self.settings = settings or ForecastSettings()
        self.usage = usage or UsageAggregator()
        self.z_value: float = NormalDist().inv_cdf(self.settings.interval_service_level)

    # ------------------------------------------------------------------
    def adjusted_rate(
        self,
        history: HistoryLike,
        trend: TrendResult,
        seasonality: SeasonalityResult,
        now: datetime,
    ) -> float:
        base_rate = self.usage.daily_average(history, self.settings.usage_window_days, now)
        factor = trend_multiplier(trend, self.settings.max_trend_adjustment) * float(seasonality.factor)
        return max(base_rate * factor, 0.0)

    # ------------------------------------------------------------------
    def generate(
        self,
        history: HistoryLike,
        trend: TrendResult,
        seasonality: SeasonalityResult,
        now: datetime,
        horizon_days: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> ForecastSeries:
        """Return ``horizon_days`` daily values and the total with its interval."""

        horizon = self.settings.horizon_days if horizon_days is None else int(horizon_days)
        if horizon <= 0:
            raise ValueError("horizon_days must be a positive integer")

        frame = as_history_frame(history)
        if frame.empty:
            return ForecastSeries(
                daily_forecast=[0.0] * horizon,
                total_forecast=0,
                low_estimate=0,
                high_estimate=0,
                adjusted_daily_rate=0.0,
            )

        rate = self.adjusted_rate(frame, trend, seasonality, now)
        rng = rng if rng is not None else np.random.default_rng()
        jitter = self.settings.jitter
        variation = rng.uniform(1.0 - jitter, 1.0 + jitter, size=horizon)
        values = np.clip(rate * variation, 0.0, None)
        daily = [round(float(v), 1) for v in values]

        total = int(round(sum(daily)))
        if self.settings.interval_method == "residual":
            daily_std = sqrt(population_variance(daily_totals(frame)))
            low, high = compute_interval(total, daily_std, horizon, self.z_value)
        else:
            band = self.settings.interval_band
            low = int(round(total * (1.0 - band)))
            high = int(round(total * (1.0 + band)))

        LOGGER.debug(
            "Forecast rate=%.3f horizon=%d total=%d interval=[%d, %d]", rate, horizon, total, low, high
        )
        return ForecastSeries(
            daily_forecast=daily,
            total_forecast=total,
            low_estimate=low,
            high_estimate=high,
            adjusted_daily_rate=rate,
        )
