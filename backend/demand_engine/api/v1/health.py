r"""backend/demand_engine/api/v1/health.py

Health check endpoints.

Orchestrators and load balancers call `/api/v1/health` to verify that the
service is running.  The payload also reports whether the product and sales
exports are present in `DATA_DIR`, without loading them.
"""

from fastapi import APIRouter

from ...core.config import get_settings
from ...services.record_store import FileRecordStore

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Return a basic health indicator."""

    store = FileRecordStore(get_settings().data_dir)
    return {"status": "ok", "data": "present" if store.data_files_present() else "missing"}
