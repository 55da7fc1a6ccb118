r"""backend/demand_engine/services/forecast_orchestrator.py

Assemble per-product forecasts and the views built on top of them.

Each call re-reads the product snapshot and its sales history from the
record store, runs the signal services (usage, trend, seasonality,
confidence), generates the horizon forecast and finishes with the reorder
advice.  Nothing is cached between calls.

Batch operations fan out over a thread pool owned by the batch, with bounded
concurrency and an independent timeout per product.  A product that fails or
times out is logged and left out of the result; it never fails or stalls the
whole batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from math import sqrt
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from ..core.config import EngineConfig, Settings, get_settings, load_engine_config
from ..core.errors import NotFoundError
from ..core.observability import FORECAST_COUNTER, FORECAST_LATENCY
from ..models.schemas import (
    DataRange,
    DemandLevel,
    DemandSummary,
    ForecastResult,
    ReorderWorklistItem,
    SaleRecord,
    TrendLabel,
    UrgencyLevel,
)
from .confidence_service import ConfidenceScorer, daily_totals, population_variance
from .forecasting_service import ForecastGenerator
from .record_store import FileRecordStore, RecordStore
from .replenishment_service import DemandSignal, ReplenishmentAdvisor, days_of_stock, stock_status
from .seasonality_service import SeasonalityDetector
from .trend_service import TrendDetector
from .usage_service import UsageAggregator, classify_demand, records_to_frame

LOGGER = logging.getLogger(__name__)

MIN_HORIZON_DAYS = 1
MAX_HORIZON_DAYS = 365

_URGENCY_RANK = {
    UrgencyLevel.CRITICAL: 0,
    UrgencyLevel.HIGH: 1,
    UrgencyLevel.MEDIUM: 2,
    UrgencyLevel.LOW: 3,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _Pipeline:
    """Stages built from one configuration, swapped as a unit on reload."""

    config: EngineConfig
    usage: UsageAggregator
    trend_detector: TrendDetector
    seasonality_detector: SeasonalityDetector
    confidence_scorer: ConfidenceScorer
    generator: ForecastGenerator
    advisor: ReplenishmentAdvisor

    @classmethod
    def build(cls, config: EngineConfig) -> "_Pipeline":
        usage = UsageAggregator()
        return cls(
            config=config,
            usage=usage,
            trend_detector=TrendDetector(config.trend),
            seasonality_detector=SeasonalityDetector(config.seasonality, config.seasonal_categories),
            confidence_scorer=ConfidenceScorer(config.confidence),
            generator=ForecastGenerator(config.forecast, usage),
            advisor=ReplenishmentAdvisor(config.replenishment),
        )


class ForecastOrchestrator:
    """Run the forecasting pipeline against a :class:`RecordStore`."""

    def __init__(
        self,
        record_store: RecordStore,
        config: EngineConfig | None = None,
        seed: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.record_store = record_store
        self.seed = seed
        self.clock = clock
        self.reload_config(config or EngineConfig())

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ForecastOrchestrator":
        settings = settings or get_settings()
        return cls(
            record_store=FileRecordStore(settings.data_dir),
            config=load_engine_config(settings.config_dir),
            seed=settings.forecast_seed,
        )

    def reload_config(self, config: EngineConfig) -> None:
        """Swap in a new configuration and rebuild the pipeline stages.

        Forecasts already running keep the pipeline they started with.
        """

        self._pipeline = _Pipeline.build(config)

    @property
    def config(self) -> EngineConfig:
        return self._pipeline.config

    # ------------------------------------------------------------------
    def _rng(self, product_id: str) -> np.random.Generator:
        """Per-product generator so batch results do not depend on scheduling order."""

        if self.seed is None:
            return np.random.default_rng()
        return np.random.default_rng([self.seed, zlib.crc32(product_id.encode("utf-8"))])

    @staticmethod
    def _resolve_horizon(config: EngineConfig, horizon_days: Optional[int]) -> int:
        horizon = config.forecast.horizon_days if horizon_days is None else int(horizon_days)
        if horizon < MIN_HORIZON_DAYS or horizon > MAX_HORIZON_DAYS:
            raise ValueError(
                f"horizon_days must be between {MIN_HORIZON_DAYS} and {MAX_HORIZON_DAYS} days."
            )
        return horizon

    # ------------------------------------------------------------------
    def forecast(self, product_id: str, horizon_days: Optional[int] = None) -> ForecastResult:
        """Build a complete :class:`ForecastResult` for one product."""

        start = time.perf_counter()
        try:
            result = self._forecast(product_id, horizon_days)
        except NotFoundError:
            FORECAST_COUNTER.labels("not_found").inc()
            raise
        except Exception:
            FORECAST_COUNTER.labels("error").inc()
            raise
        FORECAST_COUNTER.labels("success").inc()
        FORECAST_LATENCY.observe(time.perf_counter() - start)
        return result

    def _forecast(self, product_id: str, horizon_days: Optional[int]) -> ForecastResult:
        pipeline = self._pipeline
        config = pipeline.config
        horizon = self._resolve_horizon(config, horizon_days)
        product = self.record_store.get_product(product_id)
        if product is None:
            raise NotFoundError(product_id)

        now = self.clock()
        records: List[SaleRecord] = self.record_store.get_sales_history(
            product_id, now - timedelta(days=config.history_lookback_days)
        )
        seasonal_records = self.record_store.get_sales_history(
            product_id, now - timedelta(days=config.seasonality_lookback_days)
        )
        history = records_to_frame(records)
        fcfg = config.forecast

        daily_average = pipeline.usage.daily_average(history, fcfg.usage_window_days, now)
        weekly_average = pipeline.usage.daily_average(history, fcfg.weekly_window_days, now)
        trend = pipeline.trend_detector.detect(history, now)
        seasonality = pipeline.seasonality_detector.detect(records_to_frame(seasonal_records), product.category, now)
        series = pipeline.generator.generate(
            history, trend, seasonality, now, horizon_days=horizon, rng=self._rng(product_id)
        )
        confidence = pipeline.confidence_scorer.score(history, now)

        signal = DemandSignal(
            daily_average=daily_average,
            adjusted_daily_rate=series.adjusted_daily_rate,
            daily_std=sqrt(population_variance(daily_totals(history))),
            has_history=not history.empty,
        )
        suggestion = pipeline.advisor.advise(product, signal)
        stock_days = days_of_stock(product.current_stock, daily_average)

        data_range = DataRange()
        if not history.empty:
            data_range = DataRange(
                start=history["timestamp"].min().to_pydatetime(),
                end=history["timestamp"].max().to_pydatetime(),
            )

        LOGGER.info(
            "Forecast %s: daily=%.2f trend=%s season=%s(%.2f) total=%d confidence=%.2f reorder=%s",
            product_id,
            daily_average,
            trend.label.value,
            seasonality.method,
            seasonality.factor,
            series.total_forecast,
            confidence,
            suggestion.should_reorder,
        )

        result = ForecastResult(
            product_id=product.id,
            product_name=product.name,
            category=product.category,
            current_stock=product.current_stock,
            daily_average=round(daily_average, 1),
            weekly_average=round(weekly_average, 1),
            monthly_average=round(daily_average * 30, 1),
            demand_level=classify_demand(daily_average, config.demand_levels),
            trend=trend,
            seasonality=seasonality,
            horizon_days=horizon,
            daily_forecast=series.daily_forecast,
            total_forecast=series.total_forecast,
            low_estimate=series.low_estimate,
            high_estimate=series.high_estimate,
            confidence=confidence,
            data_points=len(records),
            days_of_stock=int(round(stock_days)),
            stock_status=stock_status(product.current_stock, stock_days),
            reorder_suggestion=suggestion,
            data_range=data_range,
            generated_at=now,
        )
        result._daily_rate = daily_average
        return result

    # ------------------------------------------------------------------
    async def aforecast_many(
        self,
        product_ids: Iterable[str],
        horizon_days: Optional[int] = None,
    ) -> List[ForecastResult]:
        """Forecast many products concurrently, keeping input order and dropping failures."""

        ids = list(product_ids)
        batch = self.config.batch
        semaphore = asyncio.Semaphore(batch.max_concurrency)
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=batch.max_concurrency, thread_name_prefix="forecast-batch")

        async def run_one(product_id: str) -> Optional[ForecastResult]:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        loop.run_in_executor(executor, self.forecast, product_id, horizon_days),
                        timeout=batch.per_product_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    FORECAST_COUNTER.labels("timeout").inc()
                    LOGGER.warning(
                        "Excluding %s from batch: forecast exceeded %.1fs",
                        product_id,
                        batch.per_product_timeout_seconds,
                    )
                except NotFoundError as exc:
                    LOGGER.warning("Excluding %s from batch: %s", product_id, exc)
                except Exception:
                    LOGGER.exception("Excluding %s from batch: forecast failed", product_id)
                return None

        try:
            results = await asyncio.gather(*(run_one(product_id) for product_id in ids))
        finally:
            # timed-out fetches finish in the background; nothing waits on them
            executor.shutdown(wait=False, cancel_futures=True)
        forecasts = [result for result in results if result is not None]
        LOGGER.info("Batch forecast completed: %d of %d products", len(forecasts), len(ids))
        return forecasts

    def forecast_many(
        self,
        product_ids: Iterable[str],
        horizon_days: Optional[int] = None,
    ) -> List[ForecastResult]:
        return asyncio.run(self.aforecast_many(product_ids, horizon_days))

    # ------------------------------------------------------------------
    def _forecasts_for(self, product_ids: Optional[Sequence[str]]) -> List[ForecastResult]:
        ids = list(product_ids) if product_ids is not None else self.record_store.list_product_ids()
        return self.forecast_many(ids)

    def top_demand(self, limit: int = 10, product_ids: Optional[Sequence[str]] = None) -> List[ForecastResult]:
        """Products with the highest daily average first; ties keep input order."""

        forecasts = self._forecasts_for(product_ids)
        ranked = sorted(forecasts, key=lambda item: item.daily_rate, reverse=True)
        return ranked[: max(limit, 0)]

    def trending(self, limit: int = 10, product_ids: Optional[Sequence[str]] = None) -> List[ForecastResult]:
        forecasts = self._forecasts_for(product_ids)
        increasing = [item for item in forecasts if item.trend.label is TrendLabel.INCREASING]
        ranked = sorted(increasing, key=lambda item: item.trend.percentage, reverse=True)
        return ranked[: max(limit, 0)]

    def demand_summary(self, product_ids: Optional[Sequence[str]] = None) -> DemandSummary:
        forecasts = self._forecasts_for(product_ids)

        def count(predicate: Callable[[ForecastResult], bool]) -> int:
            return sum(1 for item in forecasts if predicate(item))

        return DemandSummary(
            total_products=len(forecasts),
            high_demand=count(lambda item: item.demand_level is DemandLevel.HIGH),
            medium_demand=count(lambda item: item.demand_level is DemandLevel.MEDIUM),
            low_demand=count(lambda item: item.demand_level is DemandLevel.LOW),
            trending=count(lambda item: item.trend.label is TrendLabel.INCREASING),
            declining=count(lambda item: item.trend.label is TrendLabel.DECLINING),
            needs_reorder=count(lambda item: item.reorder_suggestion.should_reorder),
            critical_stock=count(lambda item: item.reorder_suggestion.urgency is UrgencyLevel.CRITICAL),
        )

    def reorder_worklist(self, product_ids: Optional[Sequence[str]] = None) -> List[ReorderWorklistItem]:
        """Products that need reordering, most urgent first."""

        forecasts = self._forecasts_for(product_ids)
        items = [
            ReorderWorklistItem(
                product_id=item.product_id,
                product_name=item.product_name,
                current_stock=item.current_stock,
                daily_average=item.daily_average,
                suggestion=item.reorder_suggestion,
            )
            for item in forecasts
            if item.reorder_suggestion.should_reorder
        ]
        return sorted(
            items,
            key=lambda entry: (_URGENCY_RANK[entry.suggestion.urgency], entry.suggestion.days_until_stockout),
        )
