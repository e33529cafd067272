"""Click event store backed by the business's BigQuery dataset.

Expects two tables in `clickmatch_{business_id}`:

- click_events: one row per captured click, including the
  normalized_email / normalized_phone columns written at ingestion time
- conversions: historical conversions with a geo_location key
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from clickmatch.bigquery.client import BigQueryConfig, TenantBigQueryClient
from clickmatch.connectors.exceptions import StoreQueryError, StoreTimeoutError
from clickmatch.connectors.store import ClickEventStore
from clickmatch.conversions.schema import ClickEvent

logger = logging.getLogger(__name__)

CLICK_EVENTS_TABLE = "click_events"
CONVERSIONS_TABLE = "conversions"


class BigQueryClickEventStore(ClickEventStore):
    """ClickEventStore that issues parameterized queries against BigQuery.

    Every query runs with the client's configured timeout. Timeouts raise
    StoreTimeoutError and any other BigQuery failure raises StoreQueryError,
    so the matching tiers can degrade instead of aborting.

    Example:
        >>> store = BigQueryClickEventStore(business_id="acme")
        >>> engine = AttributionEngine(store)
    """

    def __init__(
        self,
        business_id: str,
        config: BigQueryConfig | None = None,
        client: TenantBigQueryClient | None = None,
    ):
        """Initialize the store.

        Args:
            business_id: Business whose dataset holds the click events.
            config: Optional BigQuery configuration (defaults to env).
            client: Optional pre-built tenant client.
        """
        self.business_id = business_id
        self._client = client or TenantBigQueryClient(business_id=business_id, config=config)

    def _run(self, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            return self._client.query(sql, params=params).rows
        except TimeoutError as e:
            raise StoreTimeoutError(f"Click event query timed out for {self.business_id}") from e
        except Exception as e:
            raise StoreQueryError(f"Click event query failed for {self.business_id}: {e}") from e

    def _to_events(self, rows: list[dict[str, Any]]) -> list[ClickEvent]:
        events = []
        for row in rows:
            try:
                events.append(ClickEvent.from_dict(row))
            except ValueError as e:
                logger.warning(f"Skipping malformed click event row: {e}")
        return events

    def find_by_identifier_within_window(
        self,
        email: str | None,
        phone: str | None,
        after: datetime,
        before: datetime,
        require_gclid: bool = True,
        client_id: str | None = None,
        inclusive: bool = False,
    ) -> list[ClickEvent]:
        identity = []
        params: dict[str, Any] = {"after": after, "before": before}
        if email:
            identity.append("normalized_email = @email")
            params["email"] = email
        if phone:
            identity.append("normalized_phone = @phone")
            params["phone"] = phone
        if not identity:
            return []

        lower, upper = (">=", "<=") if inclusive else (">", "<")
        conditions = [
            f"({' OR '.join(identity)})",
            f"timestamp {lower} @after",
            f"timestamp {upper} @before",
        ]
        if require_gclid:
            conditions.append("gclid IS NOT NULL")
        if client_id is not None:
            conditions.append("client_id = @client_id")
            params["client_id"] = client_id

        sql = (
            f"SELECT * FROM `{self._client.table_ref(CLICK_EVENTS_TABLE)}` "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY timestamp DESC"
        )
        return self._to_events(self._run(sql, params))

    def find_by_location_within_window(
        self,
        city: str | None,
        postal_code: str | None,
        after: datetime,
        before: datetime,
        require_gclid: bool = True,
        inclusive: bool = False,
    ) -> list[ClickEvent]:
        location = []
        params: dict[str, Any] = {"after": after, "before": before}
        if city:
            location.append("LOWER(geo_city) = LOWER(@city)")
            params["city"] = city
        if postal_code:
            location.append("geo_postal_code = @postal_code")
            params["postal_code"] = postal_code
        if not location:
            return []

        lower, upper = (">=", "<=") if inclusive else (">", "<")
        conditions = [
            f"({' OR '.join(location)})",
            f"timestamp {lower} @after",
            f"timestamp {upper} @before",
        ]
        if require_gclid:
            conditions.append("gclid IS NOT NULL")

        sql = (
            f"SELECT * FROM `{self._client.table_ref(CLICK_EVENTS_TABLE)}` "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY timestamp DESC"
        )
        return self._to_events(self._run(sql, params))

    def count_conversions_by_location(self, location: str) -> int:
        sql = (
            f"SELECT COUNT(*) AS total FROM `{self._client.table_ref(CONVERSIONS_TABLE)}` "
            "WHERE geo_location = @location"
        )
        rows = self._run(sql, {"location": location})
        return int(rows[0]["total"]) if rows else 0
