r"""backend/demand_engine/main.py

Main entrypoint for the FastAPI application.

The API exposes demand forecasts and reorder advice per product, batch and
ranking views across the catalogue, and read/update access to the forecasting
thresholds.  A health endpoint is provided for readiness/liveness checks and
Prometheus metrics are served at `/metrics`.  Configuration is read from
environment variables (or `.env`) and YAML files in `configs/`.
"""

import logging
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

# Load .env from repo root before settings are first read
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")

from .api.v1 import configs, forecasts, health, reorder  # noqa: E402
from .core.config import get_settings  # noqa: E402
from .core.observability import RequestLoggingMiddleware, metrics_endpoint  # noqa: E402

settings = get_settings()

logging.getLogger(__name__).info(
    "Demand engine starting: data_dir=%s config_dir=%s seeded=%s",
    settings.data_dir,
    settings.config_dir,
    settings.forecast_seed is not None,
)

app = FastAPI(title="Demand Forecasting API", version="0.1.0")

# Allow cross-origin requests from the dashboard (and others).
origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(forecasts.router, prefix="/api/v1")
app.include_router(reorder.router, prefix="/api/v1")
app.include_router(configs.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
