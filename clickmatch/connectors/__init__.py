"""
clickmatch connectors - data sources the matching engine reads from.

Provides:
- ClickEventStore contract with in-memory and BigQuery implementations
- Google Ads lead-form submission client

Usage:
    from clickmatch.connectors import BigQueryClickEventStore

    store = BigQueryClickEventStore(business_id="acme")
    events = store.find_by_location_within_window("Austin", "78701", after, before)
"""

from clickmatch.connectors.bigquery_store import BigQueryClickEventStore
from clickmatch.connectors.exceptions import (
    AuthenticationError,
    ConnectorError,
    LeadFormError,
    StoreQueryError,
    StoreTimeoutError,
)
from clickmatch.connectors.lead_forms import (
    GoogleAdsLeadFormClient,
    LeadFormConfig,
    LeadFormSource,
    LeadFormSubmission,
)
from clickmatch.connectors.store import ClickEventStore, InMemoryClickEventStore

__all__ = [
    # Stores
    "ClickEventStore",
    "InMemoryClickEventStore",
    "BigQueryClickEventStore",
    # Lead forms
    "GoogleAdsLeadFormClient",
    "LeadFormConfig",
    "LeadFormSource",
    "LeadFormSubmission",
    # Exceptions
    "ConnectorError",
    "StoreQueryError",
    "StoreTimeoutError",
    "AuthenticationError",
    "LeadFormError",
]
