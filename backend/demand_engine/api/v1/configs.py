"""API endpoints for reading and updating the forecasting thresholds."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from typing import Any, Dict, Optional

import yaml
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict

from ...core.config import (
    THRESHOLD_SECTIONS,
    engine_config_from_documents,
    get_settings,
    load_yaml,
)
from ...core.errors import ConfigurationError
from .forecasts import get_orchestrator

LOGGER = logging.getLogger(__name__)

router = APIRouter()

CONFIG_DIR = get_settings().config_dir


def _path(filename: str) -> str:
    return os.path.join(CONFIG_DIR, filename)


def _safe_write_yaml(path: str, payload: Dict[str, Any]) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        prefix=".tmp-", suffix=".yaml", dir=directory
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False)
        shutil.move(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class ThresholdsUpdate(BaseModel):
    """Partial update; each section is merged key by key into thresholds.yaml."""

    model_config = ConfigDict(extra="forbid")

    demand_levels: Optional[Dict[str, Any]] = None
    trend: Optional[Dict[str, Any]] = None
    seasonality: Optional[Dict[str, Any]] = None
    confidence: Optional[Dict[str, Any]] = None
    forecast: Optional[Dict[str, Any]] = None


def _merge_updates(original: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(original)
    for section, values in updates.items():
        current = result.get(section)
        merged = dict(current) if isinstance(current, dict) else {}
        merged.update(values)
        result[section] = merged
    return result


@router.get("/configs/thresholds")
def get_thresholds() -> Dict[str, Any]:
    """Return the effective thresholds, defaults filled in."""

    config = get_orchestrator().config
    return config.model_dump(mode="json", include=set(THRESHOLD_SECTIONS))


@router.put("/configs/thresholds")
def put_thresholds(body: ThresholdsUpdate) -> Dict[str, Any]:
    current = load_yaml(_path("thresholds.yaml"))
    updates = body.model_dump(exclude_none=True)
    updated = _merge_updates(current, updates)

    try:
        config = engine_config_from_documents(
            updated,
            load_yaml(_path("settings.yaml")),
            load_yaml(_path("seasonality.yaml")),
            source="thresholds update",
        )
    except ConfigurationError as exc:
        LOGGER.warning("Rejected thresholds update: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_request", "message": str(exc)},
        ) from exc

    if updated != current:
        try:
            _safe_write_yaml(_path("thresholds.yaml"), updated)
        except OSError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={"error": "write_failed", "message": str(exc)},
            ) from exc

    get_orchestrator().reload_config(config)
    LOGGER.info("Thresholds updated: %s", sorted(updates))
    return config.model_dump(mode="json", include=set(THRESHOLD_SECTIONS))


@router.get("/configs/seasonality")
def get_seasonality() -> Dict[str, Any]:
    """Return the category fallback table in use."""

    table = get_orchestrator().config.seasonal_categories
    return {"categories": table.model_dump(mode="json")["categories"]}
