"""
clickmatch BigQuery - business-scoped BigQuery access.

Usage:
    from clickmatch.bigquery import TenantBigQueryClient

    client = TenantBigQueryClient(business_id="acme")
    result = client.query("SELECT id FROM ...", params={"gclid": "abc"})
"""

from clickmatch.bigquery.client import BigQueryConfig, QueryResult, TenantBigQueryClient
from clickmatch.bigquery.validation import QueryValidator

__all__ = [
    "BigQueryConfig",
    "QueryResult",
    "QueryValidator",
    "TenantBigQueryClient",
]
