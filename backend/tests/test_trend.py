from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys
from typing import List, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.demand_engine.core.config import TrendThresholds
from backend.demand_engine.models.schemas import SaleRecord, TrendLabel
from backend.demand_engine.services.trend_service import TrendDetector

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _two_weeks(recent: Sequence[float], previous: Sequence[float]) -> List[SaleRecord]:
    """One sale per day: ``recent`` covers the last 7 days, ``previous`` the 7 before."""

    records = [
        SaleRecord(timestamp=NOW - timedelta(days=day + 0.5), quantity=qty) for day, qty in enumerate(recent)
    ]
    records += [
        SaleRecord(timestamp=NOW - timedelta(days=day + 7.5), quantity=qty) for day, qty in enumerate(previous)
    ]
    return records


def test_short_history_is_stable() -> None:
    history = _two_weeks([50] * 7, [1] * 6)  # 13 records

    result = TrendDetector().detect(history, NOW)

    assert result.label is TrendLabel.STABLE
    assert result.percentage == 0.0


def test_increase_between_windows() -> None:
    history = _two_weeks([20, 20, 20, 20, 20, 0, 0], [16, 16, 16, 16, 16, 0, 0])

    result = TrendDetector().detect(history, NOW)

    assert result.label is TrendLabel.INCREASING
    assert result.percentage == pytest.approx(0.25)


def test_decrease_between_windows() -> None:
    history = _two_weeks([10] * 7, [20] * 7)

    result = TrendDetector().detect(history, NOW)

    assert result.label is TrendLabel.DECLINING
    assert result.percentage == pytest.approx(-0.5)


def test_sales_only_in_recent_window_count_as_full_increase() -> None:
    history = _two_weeks([3] * 7, [0] * 7)

    result = TrendDetector().detect(history, NOW)

    assert result.label is TrendLabel.INCREASING
    assert result.percentage == 1.0


def test_older_sales_are_ignored() -> None:
    history = _two_weeks([5] * 7, [5] * 7)
    history.append(SaleRecord(timestamp=NOW - timedelta(days=30), quantity=500))

    result = TrendDetector().detect(history, NOW)

    assert result.label is TrendLabel.STABLE
    assert result.percentage == pytest.approx(0.0)


@pytest.mark.parametrize(
    "recent, previous, expected",
    [
        (115, 100, TrendLabel.INCREASING),
        (114, 100, TrendLabel.STABLE),
        (86, 100, TrendLabel.STABLE),
        (85, 100, TrendLabel.DECLINING),
        (0, 0, TrendLabel.STABLE),
    ],
)
def test_classify_change_thresholds(recent: float, previous: float, expected: TrendLabel) -> None:
    assert TrendDetector().classify_change(recent, previous).label is expected


def test_thresholds_are_configurable() -> None:
    detector = TrendDetector(TrendThresholds(increasing=0.5, declining=-0.5, min_history_records=2))

    assert detector.classify_change(130, 100).label is TrendLabel.STABLE
    assert detector.detect(_two_weeks([10], [5]), NOW).label is TrendLabel.INCREASING
