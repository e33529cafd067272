"""
clickmatch conversions - attribute offline purchases to ad clicks.

Provides:
- Schema for click events, purchases and match results
- Identifier normalization (email, phone) and hashing
- Upload row normalization
- Tiered attribution engine (exact, lead form, probable, statistical)
- Enhanced conversion preparation for Google Ads

Usage:
    from clickmatch.conversions import AttributionEngine, PurchaseNormalizer
    from clickmatch.connectors import BigQueryClickEventStore

    purchases = PurchaseNormalizer().normalize(upload_rows)
    engine = AttributionEngine(BigQueryClickEventStore(business_id="acme"))
    batch = engine.bulk_match(purchases)
"""

from clickmatch.conversions.attribution import AttributionEngine
from clickmatch.conversions.enhancement import (
    ClickMatch,
    ConversionEnhancer,
    EnhancementResult,
    EnhancementStats,
)
from clickmatch.conversions.identifiers import (
    hash_identifier,
    normalize_email,
    normalize_phone,
)
from clickmatch.conversions.matchers import (
    AttributionTier,
    ExactMatcher,
    FuzzyMatcher,
    LeadFormMatcher,
    StatisticalAttributor,
)
from clickmatch.conversions.normalizer import PurchaseNormalizer
from clickmatch.conversions.schema import (
    BulkMatchResult,
    BulkMatchSummary,
    ClickEvent,
    ExactMatchDetails,
    FuzzyMatchDetails,
    LeadFormMatchDetails,
    MatchResult,
    MatchType,
    OfflinePurchase,
    StatisticalMatchDetails,
)

__all__ = [
    # Schema
    "ClickEvent",
    "OfflinePurchase",
    "MatchType",
    "MatchResult",
    "ExactMatchDetails",
    "LeadFormMatchDetails",
    "FuzzyMatchDetails",
    "StatisticalMatchDetails",
    "BulkMatchSummary",
    "BulkMatchResult",
    # Identifiers
    "normalize_email",
    "normalize_phone",
    "hash_identifier",
    # Normalizers
    "PurchaseNormalizer",
    # Attribution
    "AttributionEngine",
    "AttributionTier",
    "ExactMatcher",
    "LeadFormMatcher",
    "FuzzyMatcher",
    "StatisticalAttributor",
    # Enhancement
    "ConversionEnhancer",
    "ClickMatch",
    "EnhancementResult",
    "EnhancementStats",
]
