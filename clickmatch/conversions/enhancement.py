"""
Enhanced conversions - prepare uploaded purchases for Google Ads import.

For one business, each uploaded row is matched against that business's
own click events (clicks whose client_id is the business's tracking pixel
id). A fresh gclid gives a click-attributed conversion; a matched click
without a usable gclid still lets the row go up as an enhanced conversion
with hashed customer identifiers.
"""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pandas as pd

from clickmatch.conversions.identifiers import hash_identifier, normalize_email, normalize_phone
from clickmatch.conversions.normalizer import PurchaseNormalizer
from clickmatch.conversions.schema import ensure_utc, parse_timestamp

if TYPE_CHECKING:
    from clickmatch.connectors.store import ClickEventStore

logger = logging.getLogger(__name__)

GCLID_MATCH = "gclid_match"
ENHANCED_ONLY = "enhanced_only"
NO_MATCH = "no_match"

# Column order expected by the Google Ads offline conversion import
GOOGLE_ADS_COLUMNS = [
    "Google Click ID",
    "Conversion Name",
    "Conversion Time",
    "Conversion Value",
    "Conversion Currency",
    "Order ID",
    "Email",
    "Phone",
    "First Name",
    "Last Name",
    "Street Address",
    "City",
    "State",
    "Postal Code",
    "Country",
    "Hashed Email",
    "Hashed Phone",
    "Hashed First Name",
    "Hashed Last Name",
    "Match Type",
    "Match Confidence",
    "Match Field",
    "Click Event ID",
]


@dataclass(frozen=True)
class ClickMatch:
    """Click event matched to an uploaded row for a business."""

    match_type: str  # GCLID_MATCH or ENHANCED_ONLY
    match_confidence: int
    click_event_id: str
    matched_field: str  # "email" or "phone"
    gclid: str | None = None


@dataclass
class EnhancementStats:
    """Match counts for an enhancement run."""

    total: int = 0
    gclid_matched: int = 0
    enhanced_only: int = 0
    no_match: int = 0


@dataclass
class EnhancementResult:
    """Enhanced rows plus match statistics."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    stats: EnhancementStats = field(default_factory=EnhancementStats)
    extra_columns: list[str] = field(default_factory=list)

    @property
    def columns(self) -> list[str]:
        return GOOGLE_ADS_COLUMNS + self.extra_columns

    def to_dataframe(self) -> pd.DataFrame:
        """Rows as a DataFrame in Google Ads column order."""
        return pd.DataFrame(self.rows, columns=self.columns)


def format_conversion_time(value: datetime) -> str:
    """Format a timestamp as Google Ads expects: 'YYYY-MM-DD HH:MM:SS+00:00'."""
    return ensure_utc(value).strftime("%Y-%m-%d %H:%M:%S+00:00")


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


class ConversionEnhancer:
    """
    Match uploaded rows to a business's clicks and build Google Ads rows.

    Example:
        enhancer = ConversionEnhancer(
            store=BigQueryClickEventStore(business_id="acme"),
            business_id="acme",
            pixel_id="px_acme_01",
        )
        result = enhancer.enhance(pd.read_csv("purchases.csv"))
        result.to_dataframe().to_csv("enhanced.csv", index=False)
    """

    LOOKBACK_DAYS = 90
    GCLID_CONFIDENCE = 100
    ENHANCED_ONLY_CONFIDENCE = 70

    def __init__(
        self,
        store: ClickEventStore,
        business_id: str,
        pixel_id: str | None,
        conversion_name: str = "Offline Purchase",
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.business_id = business_id
        self.pixel_id = pixel_id
        self.conversion_name = conversion_name
        self.now = now or (lambda: datetime.now(UTC))
        self._fields = PurchaseNormalizer()

    def find_click_match(
        self,
        email: str | None,
        phone: str | None,
        purchase_date: datetime,
    ) -> ClickMatch | None:
        """
        Find the business's click for normalized identifiers.

        Args:
            email: Normalized email
            phone: Normalized phone
            purchase_date: When the purchase happened

        Returns:
            ClickMatch, or None if nothing matched
        """
        if not self.pixel_id:
            logger.info(f"No pixel_id configured for business {self.business_id}")
            return None
        if not email and not phone:
            return None

        purchase_date = ensure_utc(purchase_date)
        try:
            events = self.store.find_by_identifier_within_window(
                email=email,
                phone=phone,
                after=purchase_date - timedelta(days=self.LOOKBACK_DAYS),
                before=purchase_date,
                require_gclid=False,
                client_id=self.pixel_id,
                inclusive=True,
            )
        except Exception as e:
            logger.warning(f"Click lookup failed for business {self.business_id}: {e}")
            return None

        if not events:
            return None

        events = sorted(events, key=lambda e: e.timestamp, reverse=True)
        now = self.now()

        # Prefer the newest click whose gclid can still be uploaded
        for event in events:
            if event.is_gclid_fresh(now):
                return ClickMatch(
                    match_type=GCLID_MATCH,
                    match_confidence=self.GCLID_CONFIDENCE,
                    click_event_id=event.id,
                    matched_field="email" if email and event.normalized_email == email else "phone",
                    gclid=event.gclid,
                )

        newest = events[0]
        return ClickMatch(
            match_type=ENHANCED_ONLY,
            match_confidence=self.ENHANCED_ONLY_CONFIDENCE,
            click_event_id=newest.id,
            matched_field="email" if email and newest.normalized_email == email else "phone",
        )

    def enhance_row(self, row: dict[str, Any]) -> tuple[dict[str, Any], ClickMatch | None]:
        """Build one Google Ads row from an uploaded row."""
        fields = self._fields.map_row(row)

        email = normalize_email(fields.get("email"))
        phone = normalize_phone(fields.get("phone"))

        try:
            purchase_date = parse_timestamp(fields.get("purchase_date"), "purchase_date")
        except ValueError:
            purchase_date = self.now()

        match = self.find_click_match(email, phone, purchase_date)

        first_name = fields.get("first_name")
        last_name = fields.get("last_name")
        order_id = fields.get("order_id") or (
            f"{self.business_id}_{int(self.now().timestamp() * 1000)}_{_random_suffix()}"
        )

        enhanced = {
            **row,
            "Google Click ID": (match.gclid if match else None) or "",
            "Conversion Name": self.conversion_name,
            "Conversion Time": format_conversion_time(purchase_date),
            "Conversion Value": fields.get("purchase_amount", ""),
            "Conversion Currency": fields.get("currency", "USD"),
            "Order ID": order_id,
            "Email": email or fields.get("email", ""),
            "Phone": phone or fields.get("phone", ""),
            "First Name": first_name or "",
            "Last Name": last_name or "",
            "Street Address": fields.get("street_address", ""),
            "City": fields.get("city", ""),
            "State": fields.get("state", ""),
            "Postal Code": fields.get("zip_code", ""),
            "Country": fields.get("country", "US"),
            "Hashed Email": hash_identifier(email) if email else "",
            "Hashed Phone": hash_identifier(phone) if phone else "",
            "Hashed First Name": hash_identifier(str(first_name).lower()) if first_name else "",
            "Hashed Last Name": hash_identifier(str(last_name).lower()) if last_name else "",
            "Match Type": match.match_type if match else NO_MATCH,
            "Match Confidence": match.match_confidence if match else 0,
            "Match Field": match.matched_field if match else "",
            "Click Event ID": match.click_event_id if match else "",
        }
        return enhanced, match

    def enhance(self, records: pd.DataFrame | list[dict[str, Any]]) -> EnhancementResult:
        """
        Enhance every uploaded row.

        Args:
            records: Upload rows as DataFrame or list of dicts

        Returns:
            EnhancementResult with Google Ads rows and match stats
        """
        df = records if isinstance(records, pd.DataFrame) else pd.DataFrame(records)
        df = df.astype(object).where(pd.notna(df), None)
        logger.info(f"Processing {len(df)} records for enhancement")

        result = EnhancementResult(stats=EnhancementStats(total=len(df)))
        # Upload columns not already represented by a Google Ads column
        consumed = {column for columns in self._fields.aliases.values() for column in columns}
        result.extra_columns = [
            column
            for column in df.columns
            if column not in consumed and column not in GOOGLE_ADS_COLUMNS
        ]

        for _, row in df.iterrows():
            enhanced, match = self.enhance_row(row.to_dict())
            result.rows.append(enhanced)

            if match and match.gclid:
                result.stats.gclid_matched += 1
            elif match and match.match_type == ENHANCED_ONLY:
                result.stats.enhanced_only += 1
            else:
                result.stats.no_match += 1

        logger.info(
            f"Enhancement complete for {self.business_id}: "
            f"{result.stats.gclid_matched} gclid, {result.stats.enhanced_only} enhanced only, "
            f"{result.stats.no_match} no match"
        )
        return result
