"""Routes for demand forecasts and the views derived from them."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, TypeVar

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.errors import DataUnavailableError, NotFoundError
from ...models import schemas
from ...services.forecast_orchestrator import (
    MAX_HORIZON_DAYS,
    MIN_HORIZON_DAYS,
    ForecastOrchestrator,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter()

MAX_LIST_LIMIT = 500

_orchestrator = ForecastOrchestrator.from_settings()

T = TypeVar("T")


def get_orchestrator() -> ForecastOrchestrator:
    """Return the process-wide orchestrator shared by the v1 routers."""

    return _orchestrator


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


def _parse_horizon(raw_horizon: Optional[int]) -> Optional[int]:
    """Validate the requested forecast horizon; ``None`` means the configured default."""

    if raw_horizon is None:
        return None
    if raw_horizon < MIN_HORIZON_DAYS or raw_horizon > MAX_HORIZON_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload(
                "invalid_horizon",
                f"horizon_days must be between {MIN_HORIZON_DAYS} and {MAX_HORIZON_DAYS} days.",
            ),
        )
    return raw_horizon


def _parse_limit(limit: int) -> int:
    if limit < 1 or limit > MAX_LIST_LIMIT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", f"limit must be between 1 and {MAX_LIST_LIMIT}."),
        )
    return limit


def run_engine_call(description: str, call: Callable[[], T]) -> T:
    """Invoke an orchestrator call and translate engine errors into HTTP errors."""

    try:
        return call()
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_error_payload("product_not_found", str(exc)),
        ) from exc
    except DataUnavailableError as exc:
        LOGGER.error("%s failed because data is unavailable: %s", description, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload(
                "data_unavailable",
                "Product or sales data files are missing. Export them to DATA_DIR and retry.",
            ),
        ) from exc
    except ValueError as exc:
        LOGGER.warning("%s rejected: %s", description, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", str(exc)),
        ) from exc
    except Exception as exc:
        LOGGER.exception("Unexpected error during %s", description)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("forecast_failed", "An unexpected error occurred while forecasting."),
        ) from exc


class BatchForecastRequest(BaseModel):
    """Payload for forecasting several products in one call."""

    product_ids: List[str] = Field(..., min_length=1, description="Product identifiers")
    horizon_days: Optional[int] = Field(None, description="Forecast horizon in days")


class BatchForecastResponse(BaseModel):
    forecasts: List[schemas.ForecastResult]
    requested: int
    excluded: List[str] = Field(default_factory=list, description="Products that failed or timed out")


@router.get("/forecasts/top-demand", response_model=List[schemas.ForecastResult])
def get_top_demand(
    limit: int = Query(10, description="Maximum number of products to return"),
) -> List[schemas.ForecastResult]:
    """Return active products ordered by daily average, highest first."""

    count = _parse_limit(limit)
    return run_engine_call("top-demand ranking", lambda: get_orchestrator().top_demand(limit=count))


@router.get("/forecasts/trending", response_model=List[schemas.ForecastResult])
def get_trending(
    limit: int = Query(10, description="Maximum number of products to return"),
) -> List[schemas.ForecastResult]:
    """Return products with an increasing trend, strongest first."""

    count = _parse_limit(limit)
    return run_engine_call("trending ranking", lambda: get_orchestrator().trending(limit=count))


@router.get("/forecasts/summary", response_model=schemas.DemandSummary)
def get_summary() -> schemas.DemandSummary:
    return run_engine_call("demand summary", lambda: get_orchestrator().demand_summary())


@router.post("/forecasts/batch", response_model=BatchForecastResponse)
def post_batch(body: BatchForecastRequest) -> BatchForecastResponse:
    """Forecast several products; failures are excluded rather than failing the call."""

    horizon = _parse_horizon(body.horizon_days)
    LOGGER.info("Batch forecast request received for %d products", len(body.product_ids))
    forecasts = run_engine_call(
        "batch forecast",
        lambda: get_orchestrator().forecast_many(body.product_ids, horizon_days=horizon),
    )
    succeeded = {item.product_id for item in forecasts}
    return BatchForecastResponse(
        forecasts=forecasts,
        requested=len(body.product_ids),
        excluded=[product_id for product_id in body.product_ids if product_id not in succeeded],
    )


@router.get("/forecasts/{product_id}", response_model=schemas.ForecastResult)
def get_forecast(
    product_id: str,
    horizon_days: Optional[int] = Query(None, description="Forecast horizon in days"),
) -> schemas.ForecastResult:
    """Return a demand forecast and reorder advice for one product."""

    LOGGER.info("Forecast request received for product_id=%s horizon=%s", product_id, horizon_days)
    horizon = _parse_horizon(horizon_days)
    return run_engine_call(
        f"forecast for product_id={product_id}",
        lambda: get_orchestrator().forecast(product_id, horizon_days=horizon),
    )
