r"""backend/demand_engine/services/record_store.py

Read-only access to product snapshots and sales history.

The engine only depends on the :class:`RecordStore` protocol.  Two adapters
ship with the package:

* :class:`InMemoryRecordStore` - dictionaries of snapshots and sale records,
  used by tests and by callers that already hold the data.
* :class:`FileRecordStore` - ``products.csv`` and ``sale_items.csv`` exported
  from the point-of-sale database, read with pandas.  A Parquet sibling
  (``products.parquet``) is preferred when present.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import pandas as pd

from ..core.errors import DataUnavailableError
from ..models.schemas import ProductSnapshot, SaleRecord
from .usage_service import to_utc_timestamp

LOGGER = logging.getLogger(__name__)

PRODUCTS_FILE = "products.csv"
SALE_ITEMS_FILE = "sale_items.csv"


class RecordStore(Protocol):
    """Minimal read interface the forecasting pipeline needs."""

    def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        ...

    def get_sales_history(self, product_id: str, since: datetime) -> List[SaleRecord]:
        ...

    def list_product_ids(self) -> List[str]:
        ...


# ---------------------------------------------------------------------------
class InMemoryRecordStore:
    """Record store backed by plain Python containers."""

    def __init__(
        self,
        products: Iterable[ProductSnapshot] = (),
        sales: Optional[Mapping[str, Sequence[SaleRecord]]] = None,
    ) -> None:
        self._products: Dict[str, ProductSnapshot] = {product.id: product for product in products}
        self._sales: Dict[str, List[SaleRecord]] = {
            key: sorted(records, key=lambda record: record.timestamp) for key, records in (sales or {}).items()
        }

    def add_product(self, product: ProductSnapshot, sales: Sequence[SaleRecord] = ()) -> None:
        self._products[product.id] = product
        self._sales[product.id] = sorted(sales, key=lambda record: record.timestamp)

    def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        return self._products.get(product_id)

    def get_sales_history(self, product_id: str, since: datetime) -> List[SaleRecord]:
        cutoff = to_utc_timestamp(since).to_pydatetime()
        return [record for record in self._sales.get(product_id, []) if record.timestamp >= cutoff]

    def list_product_ids(self) -> List[str]:
        return list(self._products)


# ---------------------------------------------------------------------------
def prefer_parquet(csv_path: Path, *, dtype: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
    """Load a table from ``<name>.parquet`` when it exists, else from the CSV."""

    pq_path = csv_path.with_suffix(".parquet")
    if pq_path.exists():
        return pd.read_parquet(pq_path)
    if not csv_path.exists():
        raise DataUnavailableError(f"Dataset not found at {csv_path}")
    return pd.read_csv(csv_path, dtype=dtype)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def _optional_int(value: Any) -> Optional[int]:
    number = _optional_float(value)
    return None if number is None else int(number)


def _positive_or_none(value: Optional[float]) -> Optional[float]:
    return value if value is not None and value > 0 else None


def _first_present(row: Mapping[str, Any], *columns: str) -> Any:
    for column in columns:
        value = row.get(column)
        if value is not None and not pd.isna(value) and str(value).strip():
            return value
    return None


class FileRecordStore:
    """Record store reading the exported product and sale-item tables.

    ``products.csv`` columns: ``id``, ``brand_name`` or ``name``,
    ``generic_name``, ``category``, ``stock_in_pieces``, ``reorder_level``,
    ``cost_price``, ``price_per_piece``, ``lead_time_days`` and ``status``.
    ``sale_items.csv`` columns: ``product_id``, ``quantity``, ``unit_price``,
    ``created_at`` and ``status``.  Only ``active`` products and
    ``completed`` sale rows are used when the ``status`` columns exist.

    Tables are loaded lazily on first use and cached; call :meth:`reload` to
    pick up a new export.
    """

    def __init__(self, data_root: str | Path = "data") -> None:
        self.data_root = Path(data_root)
        self._lock = threading.Lock()
        self._products_df: Optional[pd.DataFrame] = None
        self._sales_df: Optional[pd.DataFrame] = None

    # ------------------------------------------------------------------
    def _products_path(self) -> Path:
        return self.data_root / PRODUCTS_FILE

    def _sales_path(self) -> Path:
        return self.data_root / SALE_ITEMS_FILE

    def data_files_present(self) -> bool:
        def present(path: Path) -> bool:
            return path.exists() or path.with_suffix(".parquet").exists()

        return present(self._products_path()) and present(self._sales_path())

    def reload(self) -> None:
        with self._lock:
            self._products_df = None
            self._sales_df = None

    # ------------------------------------------------------------------
    def _load_products(self) -> pd.DataFrame:
        frame = prefer_parquet(self._products_path(), dtype={"id": "string"})
        if "id" not in frame.columns:
            raise DataUnavailableError(f"{self._products_path()} has no 'id' column")
        frame = frame.copy()
        frame["id"] = frame["id"].astype(str).str.strip()
        if "status" in frame.columns:
            frame = frame[frame["status"].astype(str).str.lower() == "active"]
        frame = frame.drop_duplicates(subset="id", keep="first")
        LOGGER.info("Loaded %d active products from %s", len(frame), self.data_root)
        return frame.set_index("id", drop=False)

    def _load_sales(self) -> pd.DataFrame:
        frame = prefer_parquet(self._sales_path(), dtype={"product_id": "string"})
        missing = {"product_id", "quantity", "created_at"} - set(frame.columns)
        if missing:
            raise DataUnavailableError(f"{self._sales_path()} is missing columns: {sorted(missing)}")

        frame = frame.copy()
        if "status" in frame.columns:
            frame = frame[frame["status"].astype(str).str.lower() == "completed"]
        frame["product_id"] = frame["product_id"].astype(str).str.strip()
        frame["timestamp"] = pd.to_datetime(frame["created_at"], utc=True, errors="coerce")
        frame["quantity"] = pd.to_numeric(frame["quantity"], errors="coerce")
        if "unit_price" in frame.columns:
            frame["unit_price"] = pd.to_numeric(frame["unit_price"], errors="coerce")
        else:
            frame["unit_price"] = float("nan")

        dropped = int(frame["timestamp"].isna().sum() + frame["quantity"].isna().sum())
        frame = frame.dropna(subset=["timestamp", "quantity"])
        frame = frame[frame["quantity"] >= 0]
        if dropped:
            LOGGER.warning("Skipped %d sale rows with unparseable timestamp or quantity", dropped)

        frame = frame.sort_values(["product_id", "timestamp"], kind="stable")
        LOGGER.info("Loaded %d completed sale rows from %s", len(frame), self.data_root)
        return frame[["product_id", "timestamp", "quantity", "unit_price"]]

    def _products(self) -> pd.DataFrame:
        with self._lock:
            if self._products_df is None:
                self._products_df = self._load_products()
            return self._products_df

    def _sales(self) -> pd.DataFrame:
        with self._lock:
            if self._sales_df is None:
                self._sales_df = self._load_sales()
            return self._sales_df

    # ------------------------------------------------------------------
    def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        products = self._products()
        key = str(product_id).strip()
        if key not in products.index:
            return None
        row = products.loc[key].to_dict()

        name = _first_present(row, "brand_name", "name", "generic_name") or ""
        category = _first_present(row, "category")
        return ProductSnapshot(
            id=key,
            name=str(name),
            category=str(category) if category is not None else None,
            current_stock=max(_optional_int(_first_present(row, "stock_in_pieces", "current_stock")) or 0, 0),
            reorder_level=_optional_int(row.get("reorder_level")),
            cost_price=_optional_float(row.get("cost_price")),
            price_fallback=_optional_float(_first_present(row, "price_per_piece", "price")),
            lead_time_days=_positive_or_none(_optional_float(row.get("lead_time_days"))),
        )

    def get_sales_history(self, product_id: str, since: datetime) -> List[SaleRecord]:
        sales = self._sales()
        cutoff = to_utc_timestamp(since)
        rows = sales[(sales["product_id"] == str(product_id).strip()) & (sales["timestamp"] >= cutoff)]
        return [
            SaleRecord(
                timestamp=row.timestamp.to_pydatetime(),
                quantity=float(row.quantity),
                unit_price=_optional_float(row.unit_price),
            )
            for row in rows.itertuples(index=False)
        ]

    def list_product_ids(self) -> List[str]:
        return [str(product_id) for product_id in self._products().index]
