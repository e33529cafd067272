"""
TenantBigQueryClient - BigQuery client scoped to one business dataset.

Provides:
- Dataset-per-business isolation (clickmatch_{business_id})
- Read-only query validation
- Typed query parameters (strings, numbers, timestamps)
- Per-query timeout
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from google.cloud import bigquery
from pydantic import BaseModel

from clickmatch.bigquery.validation import QueryValidator


class BigQueryConfig(BaseModel):
    """Configuration for BigQuery client."""

    project_id: str | None = None
    credentials_path: str | None = None
    location: str = "US"
    max_results: int = 10_000
    timeout: float = 30.0  # seconds per query

    @classmethod
    def from_env(cls) -> BigQueryConfig:
        """Load configuration from environment variables."""
        return cls(
            project_id=os.getenv("GCP_PROJECT_ID") or os.getenv("CLICKMATCH_PROJECT_ID"),
            credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
            location=os.getenv("CLICKMATCH_BQ_LOCATION", "US"),
            timeout=float(os.getenv("CLICKMATCH_BQ_TIMEOUT", "30")),
        )


@dataclass
class QueryResult:
    """Result of a BigQuery query."""

    rows: list[dict[str, Any]]
    total_rows: int
    bytes_processed: int
    cache_hit: bool


class TenantBigQueryClient:
    """
    BigQuery client with automatic business isolation.

    Each business gets its own dataset: clickmatch_{business_id}. The
    business_id is checked as a dataset identifier on construction and a
    ValueError is raised for anything that could escape the quoted reference.

    Example:
        client = TenantBigQueryClient(business_id="acme")
        results = client.query(
            f"SELECT id FROM `{client.table_ref('click_events')}` WHERE gclid = @gclid LIMIT 1",
            params={"gclid": "Cj0KCQiA"},
        )
    """

    def __init__(
        self,
        business_id: str,
        config: BigQueryConfig | None = None,
    ):
        QueryValidator.sanitize_identifier(f"clickmatch_{business_id}")
        self.business_id = business_id
        self.config = config or BigQueryConfig.from_env()
        self._client: bigquery.Client | None = None

    @property
    def dataset_id(self) -> str:
        """Get the business's dataset ID."""
        return f"clickmatch_{self.business_id}"

    @property
    def client(self) -> bigquery.Client:
        """Lazy initialization of BigQuery client."""
        if self._client is None:
            self._client = bigquery.Client(
                project=self.config.project_id,
                location=self.config.location,
            )
        return self._client

    def table_ref(self, table: str) -> str:
        """Fully qualified `project.dataset.table` reference."""
        table = QueryValidator.sanitize_identifier(table)
        if self.config.project_id:
            return f"{self.config.project_id}.{self.dataset_id}.{table}"
        return f"{self.dataset_id}.{table}"

    def query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        max_results: int | None = None,
    ) -> QueryResult:
        """
        Execute a read-only query in the business dataset.

        Args:
            sql: SQL query string
            params: Query parameters for parameterized queries
            max_results: Maximum rows to return (default: 10,000)

        Returns:
            QueryResult with rows and metadata

        Raises:
            ValueError: If the query is not read-only
            TimeoutError: If the query does not finish within config.timeout
        """
        QueryValidator.validate(sql)

        job_config = bigquery.QueryJobConfig()
        if params:
            job_config.query_parameters = [
                bigquery.ScalarQueryParameter(name, self._infer_type(value), value)
                for name, value in params.items()
            ]

        query_job = self.client.query(sql, job_config=job_config, timeout=self.config.timeout)
        result = query_job.result(
            max_results=max_results or self.config.max_results,
            timeout=self.config.timeout,
        )

        rows = [dict(row.items()) for row in result]

        return QueryResult(
            rows=rows,
            total_rows=result.total_rows or len(rows),
            bytes_processed=query_job.total_bytes_processed or 0,
            cache_hit=query_job.cache_hit or False,
        )

    def _infer_type(self, value: Any) -> str:
        """Infer BigQuery type from Python value."""
        if isinstance(value, bool):
            return "BOOL"
        if isinstance(value, int):
            return "INT64"
        if isinstance(value, float):
            return "FLOAT64"
        if isinstance(value, datetime):
            return "TIMESTAMP"
        return "STRING"
