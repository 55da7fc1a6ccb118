r"""backend/demand_engine/services/seasonality_service.py

Calendar-month seasonality detection.

Detection runs in two tiers:

1. **Dynamic** - sales are bucketed by calendar month (years superimposed),
   the mean quantity per sale event is compared across months, and a pattern
   is accepted when at least two months peak and the coefficient of variation
   of the monthly means is high enough.
2. **Static** - when history is too short, or the dynamic pattern is weak, the
   product category is looked up in an injected :class:`SeasonalityTable`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import pandas as pd

from ..core.config import SeasonalityTable, SeasonalityThresholds
from ..models.schemas import MonthDeviation, SeasonalityAnalysis, SeasonalityResult
from .usage_service import HistoryLike, as_history_frame, to_utc_timestamp

LOGGER = logging.getLogger(__name__)


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


class SeasonalityDetector:
    """Detect a current-month demand multiplier from history or category."""

    def __init__(
        self,
        thresholds: SeasonalityThresholds | None = None,
        table: SeasonalityTable | None = None,
    ) -> None:
        self.thresholds = thresholds or SeasonalityThresholds()
        self.table = table or SeasonalityTable()

    # ------------------------------------------------------------------
    def detect(self, history: HistoryLike, category: Optional[str], now: datetime) -> SeasonalityResult:
        """Return the seasonality signal for ``now``'s calendar month."""

        dynamic = self.detect_dynamic(history, now)
        if dynamic.method == "dynamic-no-pattern":
            return dynamic
        if dynamic.is_seasonal and dynamic.confidence >= self.thresholds.confidence_cutoff:
            return dynamic

        LOGGER.debug(
            "Dynamic seasonality inconclusive (method=%s confidence=%.2f); using category table",
            dynamic.method,
            dynamic.confidence,
        )
        return self.detect_static(category, now)

    # ------------------------------------------------------------------
    def detect_static(self, category: Optional[str], now: datetime) -> SeasonalityResult:
        entry = self.table.lookup(category)
        if not entry.seasonal:
            return SeasonalityResult(
                is_seasonal=False,
                factor=1.0,
                peak_months=[],
                confidence=1.0,
                method="static-none",
            )

        is_peak = to_utc_timestamp(now).month in entry.peak_months
        factor = self.thresholds.static_peak_factor if is_peak else self.thresholds.static_off_peak_factor
        return SeasonalityResult(
            is_seasonal=True,
            factor=_clamp(factor, self.thresholds.min_factor, self.thresholds.max_factor),
            peak_months=list(entry.peak_months),
            confidence=self.thresholds.static_confidence,
            method="static-category",
            is_peak_period=is_peak,
        )

    # ------------------------------------------------------------------
    def detect_dynamic(self, history: HistoryLike, now: datetime) -> SeasonalityResult:
        cfg = self.thresholds
        frame = as_history_frame(history)

        if len(frame) < cfg.min_records:
            return SeasonalityResult(method="insufficient-data", confidence=0.0)

        months = frame["timestamp"].dt.month
        monthly_means = frame.groupby(months)["quantity"].mean().sort_index()
        months_with_data = int(len(monthly_means))
        if months_with_data < cfg.min_months:
            return SeasonalityResult(method="insufficient-months", confidence=0.0)

        overall_mean = float(monthly_means.mean())
        if overall_mean <= 0:
            return SeasonalityResult(method="dynamic-no-pattern", confidence=cfg.no_pattern_confidence)

        deviations = (monthly_means - overall_mean) / overall_mean
        peaks = [int(m) for m, dev in deviations.items() if dev > cfg.peak_deviation]
        lows = [int(m) for m, dev in deviations.items() if dev < cfg.low_deviation]

        # population standard deviation of the monthly means
        cv = float(monthly_means.std(ddof=0)) / overall_mean

        if not (len(peaks) >= cfg.min_peak_months and cv > cfg.cv_threshold):
            return SeasonalityResult(
                is_seasonal=False,
                factor=1.0,
                peak_months=[],
                confidence=cfg.no_pattern_confidence,
                method="dynamic-no-pattern",
            )

        confidence = (
            0.4 * min(months_with_data / 12, 1.0)
            + 0.3 * min(cv / 0.5, 1.0)
            + 0.3 * min(len(peaks) / 4, 1.0)
        )

        current_month = to_utc_timestamp(now).month
        is_peak = current_month in peaks
        factor = self._current_month_factor(deviations, current_month, is_peak)

        analysis = SeasonalityAnalysis(
            overall_mean=round(overall_mean, 1),
            coefficient_of_variation=round(cv, 2),
            monthly_means={int(m): round(float(v), 2) for m, v in monthly_means.items()},
            peak_month_details=[MonthDeviation(month=m, deviation=round(float(deviations[m]), 3)) for m in peaks],
            low_month_details=[MonthDeviation(month=m, deviation=round(float(deviations[m]), 3)) for m in lows],
        )

        return SeasonalityResult(
            is_seasonal=True,
            factor=round(factor, 2),
            peak_months=peaks,
            confidence=round(min(confidence, 1.0), 2),
            method="dynamic-detected",
            is_peak_period=is_peak,
            analysis=analysis,
        )

    # ------------------------------------------------------------------
    def _current_month_factor(self, deviations: pd.Series, month: int, is_peak: bool) -> float:
        cfg = self.thresholds
        if month not in deviations.index:
            # no sales recorded for this month in any year
            return 1.0
        deviation = float(deviations[month])
        if is_peak:
            return _clamp(1.0 + deviation, 1.0, cfg.max_factor)
        if deviation < cfg.low_factor_deviation:
            return _clamp(1.0 + deviation, cfg.min_factor, 1.0)
        return 1.0
