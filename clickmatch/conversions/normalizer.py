"""
Purchase normalizer - transform uploaded rows into OfflinePurchase objects.

Upload files come from many exports (POS, spreadsheets, CRM reports) and
name the same column a dozen ways. The normalizer maps every known alias
onto one canonical field in a single pass, so the matching engine only
ever sees validated OfflinePurchase records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import pandas as pd

from clickmatch.conversions.schema import OfflinePurchase

logger = logging.getLogger(__name__)


# Canonical field -> accepted source columns, in priority order
DEFAULT_FIELD_ALIASES: dict[str, list[str]] = {
    "order_id": ["order_id", "orderId", "Order ID", "transaction_id", "id"],
    "purchase_amount": ["purchase_amount", "amount", "value", "total", "Conversion Value"],
    "purchase_date": ["purchase_date", "date", "Date", "DATE", "timestamp", "created_at"],
    "email": ["email", "Email", "EMAIL", "email_address"],
    "phone": ["phone", "Phone", "PHONE", "phone_number"],
    "first_name": ["first_name", "firstName", "First Name"],
    "last_name": ["last_name", "lastName", "Last Name"],
    "street_address": ["address", "street", "street_address"],
    "city": ["city", "City"],
    "state": ["state", "State", "region"],
    "zip_code": ["zip", "zip_code", "zipCode", "postal_code", "Postal Code"],
    "country": ["country", "Country"],
    "currency": ["currency", "Currency"],
}


@dataclass
class RowError:
    """An upload row that could not be normalized."""

    row_index: int
    message: str


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _clean(field_name: str, value: Any) -> Any:
    """Coerce spreadsheet artifacts (floats for ids/zips/phones, Timestamps)."""
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if field_name in ("order_id", "phone", "zip_code") and isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    return value


class PurchaseNormalizer:
    """
    Normalize uploaded purchase rows.

    Example:
        normalizer = PurchaseNormalizer()
        purchases = normalizer.normalize(pd.read_csv("purchases.csv"))
        for error in normalizer.errors:
            print(error.row_index, error.message)

        # Custom column names
        normalizer = PurchaseNormalizer(field_map={"Sale Total": "purchase_amount"})
    """

    def __init__(self, field_map: dict[str, str] | None = None):
        """
        Initialize normalizer.

        Args:
            field_map: Extra source column -> canonical field mappings,
                checked before the built-in aliases
        """
        self.aliases: dict[str, list[str]] = {
            name: list(columns) for name, columns in DEFAULT_FIELD_ALIASES.items()
        }
        for source_field, target_field in (field_map or {}).items():
            if target_field not in self.aliases:
                raise ValueError(f"Unknown purchase field: {target_field}")
            self.aliases[target_field].insert(0, source_field)

        self.errors: list[RowError] = []

    def map_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Map one raw row onto canonical purchase fields."""
        mapped: dict[str, Any] = {}
        for target_field, columns in self.aliases.items():
            for column in columns:
                value = row.get(column)
                if not _is_missing(value):
                    mapped[target_field] = _clean(target_field, value)
                    break
        return mapped

    def normalize(
        self,
        data: pd.DataFrame | list[dict[str, Any]],
    ) -> list[OfflinePurchase]:
        """
        Normalize upload rows to OfflinePurchase objects.

        Rows that fail validation are skipped and recorded in `errors`.

        Args:
            data: Upload data as DataFrame or list of dicts

        Returns:
            List of valid purchases, in input order
        """
        df = data if isinstance(data, pd.DataFrame) else pd.DataFrame(data)
        self.errors = []
        purchases = []

        for index, (_, row) in enumerate(df.iterrows()):
            mapped = self.map_row(row.to_dict())
            try:
                purchases.append(OfflinePurchase.from_dict(mapped))
            except ValueError as e:
                logger.warning(f"Skipping upload row {index}: {e}")
                self.errors.append(RowError(row_index=index, message=str(e)))

        logger.info(f"Normalized {len(purchases)} of {len(df)} upload rows")
        return purchases
