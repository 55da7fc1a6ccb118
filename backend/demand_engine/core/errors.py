"""Exception hierarchy shared by the forecasting services and the API layer."""

from __future__ import annotations


class DemandEngineError(Exception):
    """Base class for errors raised by the demand engine."""


class NotFoundError(DemandEngineError):
    """Raised when a product is missing from the record store."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product '{product_id}' was not found.")
        self.product_id = product_id


class DataUnavailableError(DemandEngineError):
    """Raised when the backing product or sales tables cannot be read."""


class ConfigurationError(DemandEngineError):
    """Raised when YAML configuration fails validation."""
