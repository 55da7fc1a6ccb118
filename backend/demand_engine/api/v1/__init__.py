r"""backend/demand_engine/api/v1/__init__.py

Routers mounted under /api/v1: forecasts and their ranked views, the
reorder worklist, threshold configuration and health.  Submodules are
imported on first attribute access."""

from importlib import import_module
from typing import Any

__all__ = [
    "configs",
    "forecasts",
    "health",
    "reorder",
]


def __getattr__(name: str) -> Any:
    if name in __all__:
        module = import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
