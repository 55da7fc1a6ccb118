"""Forecast reliability scoring from data volume, recency and consistency."""

from __future__ import annotations

from datetime import datetime

import pandas as pd

from ..core.config import ConfidenceSettings
from .usage_service import HistoryLike, as_history_frame, to_utc_timestamp


def daily_totals(history: HistoryLike) -> pd.Series:
    """Return quantity summed per calendar day (UTC), days without sales omitted."""

    frame = as_history_frame(history)
    if frame.empty:
        return pd.Series(dtype=float)
    return frame.groupby(frame["timestamp"].dt.date)["quantity"].sum().astype(float)


def population_variance(values: pd.Series) -> float:
    if values.empty:
        return 0.0
    return float(values.var(ddof=0))


class ConfidenceScorer:
    """Score in ``[0, 1]`` describing how far a forecast can be trusted."""

    def __init__(self, settings: ConfidenceSettings | None = None) -> None:
        self.settings = settings or ConfidenceSettings()

    def score(self, history: HistoryLike, now: datetime) -> float:
        cfg = self.settings
        frame = as_history_frame(history)
        if frame.empty:
            return 0.0

        volume = cfg.volume_weight * min(len(frame) / cfg.full_history_records, 1.0)

        recent_cutoff = to_utc_timestamp(now) - pd.Timedelta(days=cfg.recent_window_days)
        recency = cfg.recency_weight if bool((frame["timestamp"] >= recent_cutoff).any()) else 0.0

        variance = population_variance(daily_totals(frame))
        consistency = max(0.0, cfg.consistency_weight - variance / cfg.variance_scale)

        return float(min(max(volume + recency + consistency, 0.0), 1.0))
