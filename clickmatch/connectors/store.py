"""Click event store contract and in-memory implementation.

The matching tiers never talk to a database directly. They go through a
ClickEventStore, which answers the handful of query shapes the tiers
need: identifier lookups, location lookups, and historical conversion
counts per location.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from clickmatch.conversions.schema import ClickEvent, ensure_utc

logger = logging.getLogger(__name__)


class ClickEventStore(ABC):
    """Abstract query interface over click events and conversion aggregates.

    Subclasses must implement:
    - find_by_identifier_within_window()
    - find_by_location_within_window()
    - count_conversions_by_location()

    Result lists are ordered by timestamp, most recent first.
    """

    @abstractmethod
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
        """Find clicks whose normalized email or normalized phone matches.

        Args:
            email: Normalized email (see normalize_email), or None.
            phone: Normalized phone (see normalize_phone), or None.
            after: Lower bound on the click timestamp.
            before: Upper bound on the click timestamp.
            require_gclid: Only return clicks that carry a gclid.
            client_id: Restrict to clicks from this tracking pixel.
            inclusive: Treat the bounds as inclusive instead of strict.

        Returns:
            Matching clicks, most recent first.
        """
        pass  # pragma: no cover

    @abstractmethod
    def find_by_location_within_window(
        self,
        city: str | None,
        postal_code: str | None,
        after: datetime,
        before: datetime,
        require_gclid: bool = True,
        inclusive: bool = False,
    ) -> list[ClickEvent]:
        """Find clicks whose geo city (case-insensitive) or postal code matches.

        Bounds are strict unless `inclusive` is set. Returns clicks most
        recent first.
        """
        pass  # pragma: no cover

    @abstractmethod
    def count_conversions_by_location(self, location: str) -> int:
        """Count historical conversions tagged with a location key."""
        pass  # pragma: no cover

    def count_recent_by_location(
        self,
        location: str,
        postal_code: str | None = None,
        since_days: int = 90,
        now: datetime | None = None,
    ) -> int:
        """Count gclid clicks at a location within the last `since_days`."""
        now = ensure_utc(now) if now else datetime.now(UTC)
        return len(
            self.find_by_location_within_window(
                city=location,
                postal_code=postal_code,
                after=now - timedelta(days=since_days),
                before=now,
                inclusive=True,
            )
        )


def _in_window(ts: datetime, after: datetime, before: datetime, inclusive: bool) -> bool:
    if inclusive:
        return after <= ts <= before
    return after < ts < before


class InMemoryClickEventStore(ClickEventStore):
    """ClickEventStore backed by Python lists.

    Used for tests, local runs and small uploads where click events have
    already been exported from the tracking database.

    Example:
        store = InMemoryClickEventStore(
            events=[ClickEvent(id="e1", timestamp=..., gclid="abc", geo_city="Austin")],
            conversions_by_location={"Austin": 12},
        )
    """

    def __init__(
        self,
        events: Iterable[ClickEvent] | None = None,
        conversions_by_location: dict[str, int] | None = None,
    ):
        self._events: list[ClickEvent] = list(events or [])
        self._conversions: dict[str, int] = defaultdict(int, conversions_by_location or {})

    def __len__(self) -> int:
        return len(self._events)

    def add(self, event: ClickEvent) -> None:
        """Add a click event."""
        self._events.append(event)

    def record_conversion(self, location: str, count: int = 1) -> None:
        """Add historical conversions for a location key."""
        self._conversions[location] += count

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
        if not email and not phone:
            return []

        after, before = ensure_utc(after), ensure_utc(before)
        matches = [
            event
            for event in self._events
            if (not require_gclid or event.gclid)
            and (client_id is None or event.client_id == client_id)
            and _in_window(event.timestamp, after, before, inclusive)
            and (
                (email and event.normalized_email == email)
                or (phone and event.normalized_phone == phone)
            )
        ]
        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches

    def find_by_location_within_window(
        self,
        city: str | None,
        postal_code: str | None,
        after: datetime,
        before: datetime,
        require_gclid: bool = True,
        inclusive: bool = False,
    ) -> list[ClickEvent]:
        if not city and not postal_code:
            return []

        city_key = city.lower() if city else None
        after, before = ensure_utc(after), ensure_utc(before)
        matches = [
            event
            for event in self._events
            if (not require_gclid or event.gclid)
            and _in_window(event.timestamp, after, before, inclusive)
            and (
                (city_key and event.geo_city and event.geo_city.lower() == city_key)
                or (postal_code and event.geo_postal_code == postal_code)
            )
        ]
        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches

    def count_conversions_by_location(self, location: str) -> int:
        return self._conversions.get(location, 0)
