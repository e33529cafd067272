"""
QueryValidator - keeps attribution queries read-only.

The matching engine only ever reads click events and conversion
aggregates, so anything that writes or changes schema is rejected
before it reaches BigQuery.
"""

from __future__ import annotations

import re

# Statement keywords that modify data or schema
WRITE_KEYWORDS = (
    "DROP",
    "DELETE",
    "TRUNCATE",
    "UPDATE",
    "INSERT",
    "MERGE",
    "CREATE",
    "ALTER",
    "GRANT",
    "REVOKE",
)

_WRITE_PATTERN = re.compile(r"\b(" + "|".join(WRITE_KEYWORDS) + r")\s+", re.IGNORECASE)
_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_-]*$")


class QueryValidator:
    """Validates SQL and identifiers before execution."""

    @classmethod
    def validate(cls, sql: str) -> None:
        """
        Reject queries that are not plain reads.

        Args:
            sql: SQL query string

        Raises:
            ValueError: If the query is empty or contains a write keyword
        """
        if not sql or not sql.strip():
            raise ValueError("Query validation failed: empty query")

        match = _WRITE_PATTERN.search(sql)
        if match:
            raise ValueError(
                f"Query validation failed: {match.group(1).upper()} statements are not allowed"
            )

    @classmethod
    def sanitize_identifier(cls, identifier: str) -> str:
        """
        Check a table/dataset name before interpolating it into SQL.

        Raises:
            ValueError: If identifier contains invalid characters
        """
        if not _IDENTIFIER_PATTERN.match(identifier):
            raise ValueError(f"Invalid identifier: {identifier}")
        return identifier
