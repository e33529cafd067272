"""Shared pytest fixtures for clickmatch tests."""

import random
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from clickmatch.connectors.store import InMemoryClickEventStore
from clickmatch.conversions.schema import ClickEvent, OfflinePurchase

PURCHASE_DATE = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def mock_bigquery_client():
    """Mock google.cloud.bigquery.Client for testing."""
    with patch("google.cloud.bigquery.Client") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


@pytest.fixture
def purchase_date():
    """Fixed purchase timestamp used across matcher tests."""
    return PURCHASE_DATE


@pytest.fixture
def make_click():
    """Factory for click events timestamped `days_before` the purchase date."""

    def _make(event_id: str = "evt-1", days_before: float = 1, **kwargs) -> ClickEvent:
        kwargs.setdefault("gclid", f"gclid-{event_id}")
        return ClickEvent(
            id=event_id,
            timestamp=PURCHASE_DATE - timedelta(days=days_before),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_purchase():
    """Factory for offline purchases on the fixed purchase date."""

    def _make(order_id: str = "ORD-1", purchase_amount: float = 100.0, **kwargs) -> OfflinePurchase:
        kwargs.setdefault("purchase_date", PURCHASE_DATE)
        return OfflinePurchase(order_id=order_id, purchase_amount=purchase_amount, **kwargs)

    return _make


@pytest.fixture
def empty_store():
    """Click event store with no events and no conversions."""
    return InMemoryClickEventStore()


@pytest.fixture
def seeded_rng():
    """Deterministic random source for the statistical tier."""
    return random.Random(42)


@pytest.fixture
def sample_upload_rows():
    """Raw upload rows using a mix of alias column names."""
    return [
        {
            "order_id": "ORD-001",
            "Email": "Jane.Doe@Gmail.com",
            "phone_number": "(512) 555-0100",
            "amount": "150.00",
            "date": "2025-03-01T12:00:00Z",
            "city": "Austin",
            "zip": "78701",
        },
        {
            "orderId": "ORD-002",
            "email": "bob@example.com",
            "value": 75.5,
            "purchase_date": "2025-03-02T09:30:00+00:00",
            "postal_code": "78702",
        },
    ]
