"""Week-over-week momentum classification."""

from __future__ import annotations

import logging
from datetime import datetime

import pandas as pd

from ..core.config import TrendThresholds
from ..models.schemas import TrendLabel, TrendResult
from .usage_service import HistoryLike, as_history_frame, to_utc_timestamp

LOGGER = logging.getLogger(__name__)


class TrendDetector:
    """Compare the most recent window of sales against the one before it."""

    def __init__(self, thresholds: TrendThresholds | None = None) -> None:
        self.thresholds = thresholds or TrendThresholds()

    def classify_change(self, recent_total: float, previous_total: float) -> TrendResult:
        """Classify the relative change between two window totals.

        A previous window with no sales cannot produce a ratio: any recent
        sales count as a 100% increase, otherwise the trend is flat.
        """

        if previous_total == 0:
            if recent_total > 0:
                return TrendResult(label=TrendLabel.INCREASING, percentage=1.0)
            return TrendResult(label=TrendLabel.STABLE, percentage=0.0)

        change = (recent_total - previous_total) / previous_total
        if change >= self.thresholds.increasing:
            label = TrendLabel.INCREASING
        elif change <= self.thresholds.declining:
            label = TrendLabel.DECLINING
        else:
            label = TrendLabel.STABLE
        return TrendResult(label=label, percentage=float(change))

    def detect(self, history: HistoryLike, now: datetime) -> TrendResult:
        frame = as_history_frame(history)
        if len(frame) < self.thresholds.min_history_records:
            return TrendResult(label=TrendLabel.STABLE, percentage=0.0)

        window = pd.Timedelta(days=self.thresholds.window_days)
        recent_start = to_utc_timestamp(now) - window
        previous_start = recent_start - window
        stamps = frame["timestamp"]

        recent_total = float(frame.loc[stamps >= recent_start, "quantity"].sum())
        previous_total = float(
            frame.loc[(stamps >= previous_start) & (stamps < recent_start), "quantity"].sum()
        )
        LOGGER.debug("Trend windows recent=%.2f previous=%.2f", recent_total, previous_total)
        return self.classify_change(recent_total, previous_total)
