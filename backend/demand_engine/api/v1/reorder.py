r"""backend/demand_engine/api/v1/reorder.py

Routes for the reorder worklist."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter

from ...models import schemas
from .forecasts import get_orchestrator, run_engine_call

router = APIRouter()


@router.get("/reorder/worklist", response_model=List[schemas.ReorderWorklistItem])
def get_worklist() -> List[schemas.ReorderWorklistItem]:
    """Return products that need reordering, most urgent first."""

    return run_engine_call("reorder worklist", lambda: get_orchestrator().reorder_worklist())
