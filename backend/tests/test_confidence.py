from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.demand_engine.models.schemas import SaleRecord
from backend.demand_engine.services.confidence_service import ConfidenceScorer, daily_totals

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def test_empty_history_scores_zero() -> None:
    assert ConfidenceScorer().score([], NOW) == 0.0


def test_full_recent_consistent_history_scores_one() -> None:
    history = [SaleRecord(timestamp=NOW - timedelta(days=day, hours=1), quantity=5) for day in range(90)]

    assert ConfidenceScorer().score(history, NOW) == pytest.approx(1.0)


def test_stale_history_loses_recency_weight() -> None:
    history = [SaleRecord(timestamp=NOW - timedelta(days=40 + day), quantity=5) for day in range(45)]

    # 0.4 * 45/90 + 0 recency + 0.3 consistency
    assert ConfidenceScorer().score(history, NOW) == pytest.approx(0.5)


def test_volatile_history_loses_consistency_weight() -> None:
    history = [
        SaleRecord(timestamp=NOW - timedelta(days=day, hours=1), quantity=100 if day % 2 else 0)
        for day in range(90)
    ]

    assert ConfidenceScorer().score(history, NOW) == pytest.approx(0.7)


def test_daily_totals_group_by_calendar_day() -> None:
    history = [
        SaleRecord(timestamp=datetime(2024, 3, 1, 9, tzinfo=timezone.utc), quantity=2),
        SaleRecord(timestamp=datetime(2024, 3, 1, 17, tzinfo=timezone.utc), quantity=3),
        SaleRecord(timestamp=datetime(2024, 3, 2, 9, tzinfo=timezone.utc), quantity=4),
    ]

    assert daily_totals(history).tolist() == [5.0, 4.0]


@pytest.mark.parametrize("seed", range(25))
def test_confidence_is_bounded_for_random_histories(seed: int) -> None:
    rng = np.random.default_rng(seed)
    size = int(rng.integers(1, 400))
    ages = rng.uniform(0, 400, size=size)
    scale = rng.uniform(0.1, 80)
    quantities = rng.exponential(scale, size=size)
    history = [
        SaleRecord(timestamp=NOW - timedelta(days=float(age)), quantity=float(qty))
        for age, qty in zip(ages, quantities)
    ]

    score = ConfidenceScorer().score(history, NOW)

    assert 0.0 <= score <= 1.0
