"""Trailing-window consumption rates and demand classification."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence, Union

import pandas as pd

from ..core.config import DemandLevelThresholds
from ..models.schemas import DemandLevel, SaleRecord

HistoryLike = Union[pd.DataFrame, Sequence[SaleRecord]]


# ---------------------------------------------------------------------------
# History helpers (shared by every signal service)


def empty_history_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": pd.Series(dtype="datetime64[ns, UTC]"),
            "quantity": pd.Series(dtype=float),
        }
    )


def records_to_frame(records: Sequence[SaleRecord]) -> pd.DataFrame:
    """Return ``records`` as a ``timestamp``/``quantity`` frame sorted by time."""

    if not records:
        return empty_history_frame()
    frame = pd.DataFrame(
        {
            "timestamp": pd.to_datetime([record.timestamp for record in records], utc=True),
            "quantity": [float(record.quantity) for record in records],
        }
    )
    return frame.sort_values("timestamp", kind="stable").reset_index(drop=True)


def as_history_frame(history: HistoryLike) -> pd.DataFrame:
    if isinstance(history, pd.DataFrame):
        return history
    return records_to_frame(list(history))


def to_utc_timestamp(moment: datetime) -> pd.Timestamp:
    stamp = pd.Timestamp(moment)
    if stamp.tzinfo is None:
        return stamp.tz_localize(timezone.utc)
    return stamp.tz_convert(timezone.utc)


# ---------------------------------------------------------------------------


class UsageAggregator:
    """Average units consumed per day over a trailing window."""

    def daily_average(self, history: HistoryLike, window_days: int, now: datetime) -> float:
        """Return ``sum(quantity) / window_days`` for sales inside the window.

        The divisor is the full window length rather than the number of days
        with sales, so intermittent sellers are not overstated.  An empty
        window yields ``0.0``.
        """

        if window_days <= 0:
            raise ValueError("window_days must be a positive integer")

        frame = as_history_frame(history)
        if frame.empty:
            return 0.0

        cutoff = to_utc_timestamp(now) - pd.Timedelta(days=window_days)
        total = float(frame.loc[frame["timestamp"] >= cutoff, "quantity"].sum())
        return max(total, 0.0) / window_days


def classify_demand(daily_average: float, thresholds: DemandLevelThresholds | None = None) -> DemandLevel:
    thresholds = thresholds or DemandLevelThresholds()
    if daily_average >= thresholds.high:
        return DemandLevel.HIGH
    if daily_average >= thresholds.medium:
        return DemandLevel.MEDIUM
    if daily_average > 0:
        return DemandLevel.LOW
    return DemandLevel.NONE
