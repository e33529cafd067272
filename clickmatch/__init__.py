"""
clickmatch - Offline conversion attribution.

Matches uploaded offline purchases to previously captured ad clicks,
scores each match, and prepares enhanced conversion rows for upload.

Subpackages:
- clickmatch.conversions: schema, identifier normalization, matching tiers
- clickmatch.connectors: click event stores and the lead-form client
- clickmatch.bigquery: tenant-scoped BigQuery client
"""

__version__ = "0.1.0"
