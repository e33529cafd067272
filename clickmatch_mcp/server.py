"""
clickmatch MCP Server - Main entry point.

Tools:
- Attribution: match a purchase or a batch of purchases to ad clicks
- Enhancement: build Google Ads offline conversion rows for a business
- Identifiers: preview email/phone normalization
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from fastmcp import FastMCP

logger = logging.getLogger(__name__)

# Initialize server
mcp = FastMCP("clickmatch Attribution")


@contextmanager
def _attribution_engine(business_id: str):
    """
    Attribution engine over the business's BigQuery click events.

    The lead-form client, when configured, is closed on exit.

    Raises:
        ValueError: If business_id is not a valid dataset identifier
    """
    from clickmatch.config import MatchingConfig
    from clickmatch.connectors import (
        AuthenticationError,
        BigQueryClickEventStore,
        GoogleAdsLeadFormClient,
        LeadFormConfig,
    )
    from clickmatch.conversions import AttributionEngine

    store = BigQueryClickEventStore(business_id=business_id)

    lead_forms = None
    try:
        lead_forms = GoogleAdsLeadFormClient(LeadFormConfig.from_env())
    except AuthenticationError:
        logger.debug("Google Ads credentials not configured; lead-form tier disabled")

    try:
        yield AttributionEngine(store, config=MatchingConfig.from_env(), lead_form_source=lead_forms)
    finally:
        if lead_forms is not None:
            lead_forms.close()


# =============================================================================
# Attribution Tools
# =============================================================================


@mcp.tool()
def match_purchase(business_id: str, purchase: dict) -> dict:
    """
    Attribute one offline purchase to an ad click.

    Tries a direct email/phone match, then a lead-form match (when Google
    Ads credentials are configured), then a location + time proximity
    match, and finally a statistical location-based attribution.

    Args:
        business_id: Business whose click events to search
        purchase: Purchase with order_id, purchase_amount, purchase_date and
            optional email, phone, city, state, zip_code

    Returns:
        Match result with match_type, confidence, gclid and match_details
    """
    from clickmatch.conversions import OfflinePurchase

    try:
        offline_purchase = OfflinePurchase.from_dict(purchase)
    except ValueError as e:
        return {"error": str(e)}

    try:
        with _attribution_engine(business_id) as engine:
            return engine.match_purchase(offline_purchase).to_dict()
    except ValueError as e:
        return {"error": str(e)}


@mcp.tool()
def bulk_match_purchases(business_id: str, purchases: list[dict]) -> dict:
    """
    Attribute a batch of uploaded purchase rows.

    Rows may use common alias column names (Email, phone_number, zip,
    amount, date, orderId, ...). Invalid rows are reported and skipped.

    Args:
        business_id: Business whose click events to search
        purchases: Raw purchase rows

    Returns:
        Results in input order, summary counts, and any skipped rows
    """
    from clickmatch.conversions import PurchaseNormalizer

    if not purchases:
        return {"error": "No purchase data provided"}

    normalizer = PurchaseNormalizer()
    offline_purchases = normalizer.normalize(purchases)

    try:
        with _attribution_engine(business_id) as engine:
            batch = engine.bulk_match(offline_purchases)
    except ValueError as e:
        return {"error": str(e)}

    response = batch.to_dict()
    response["skipped_rows"] = [
        {"row_index": e.row_index, "error": e.message} for e in normalizer.errors
    ]
    return response


# =============================================================================
# Enhancement Tools
# =============================================================================


@mcp.tool()
def enhance_conversions(
    business_id: str,
    pixel_id: str,
    records: list[dict],
    conversion_name: str = "Offline Purchase",
) -> dict:
    """
    Build Google Ads offline conversion rows for uploaded purchases.

    Each row is matched against the business's own clicks (by pixel id).
    Rows with a fresh gclid become click conversions; other matched rows
    carry hashed identifiers for enhanced conversions.

    Args:
        business_id: Business identifier
        pixel_id: The business's tracking pixel id
        records: Raw purchase rows
        conversion_name: Conversion action name in Google Ads

    Returns:
        Columns, enhanced rows and match stats
    """
    from dataclasses import asdict

    from clickmatch.connectors import BigQueryClickEventStore
    from clickmatch.conversions import ConversionEnhancer

    if not records:
        return {"error": "No records provided"}

    try:
        store = BigQueryClickEventStore(business_id=business_id)
    except ValueError as e:
        return {"error": str(e)}

    enhancer = ConversionEnhancer(
        store=store,
        business_id=business_id,
        pixel_id=pixel_id,
        conversion_name=conversion_name,
    )
    result = enhancer.enhance(records)

    return {
        "columns": result.columns,
        "rows": result.rows,
        "stats": asdict(result.stats),
    }


# =============================================================================
# Identifier Tools
# =============================================================================


@mcp.tool()
def normalize_identifiers(email: str | None = None, phone: str | None = None) -> dict:
    """
    Show how an email and phone are normalized for matching.

    Args:
        email: Raw email address
        phone: Raw phone number

    Returns:
        Normalized values (None when invalid) and their SHA-256 hashes
    """
    from clickmatch.conversions import hash_identifier, normalize_email, normalize_phone

    normalized_email = normalize_email(email)
    normalized_phone = normalize_phone(phone)

    return {
        "email": normalized_email,
        "phone": normalized_phone,
        "hashed_email": hash_identifier(normalized_email) if normalized_email else None,
        "hashed_phone": hash_identifier(normalized_phone) if normalized_phone else None,
    }


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
