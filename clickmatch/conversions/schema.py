"""
Attribution schema - data model shared by the matching tiers.

Covers both sides of a match:
- ClickEvent: an ad click captured by the tracking pixel (read-only here)
- OfflinePurchase: one uploaded purchase row

And the engine's output:
- MatchResult with a tier-specific details variant
- BulkMatchSummary / BulkMatchResult for batch runs

All timestamps are timezone-aware datetimes in UTC. Naive values coming
from stores or uploads are interpreted as UTC.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from clickmatch.conversions.identifiers import normalize_email, normalize_phone


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime (naive means UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: Any, field_name: str = "timestamp") -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Raises:
        ValueError: If the value is missing or cannot be parsed.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError as e:
            raise ValueError(f"Invalid {field_name} format: {value}") from e
    raise ValueError(f"Missing or invalid {field_name}: {value!r}")


def _optional_timestamp(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    return parse_timestamp(value, field_name)


class MatchType(str, Enum):
    """Attribution tier that produced a match."""

    EXACT = "exact"
    LEAD_FORM = "google_lead_form"
    PROBABLE = "probable"
    STATISTICAL = "statistical"


@dataclass(frozen=True)
class ClickEvent:
    """
    An ad click captured by the tracking pixel.

    Click events are owned by the ingestion pipeline and never modified
    by the matching engine. Geo fields come from IP geolocation and are
    best-effort: any of them may be None.

    Example:
        event = ClickEvent(
            id="evt-001",
            timestamp=datetime(2025, 1, 5, tzinfo=UTC),
            gclid="Cj0KCQiA-abc",
            email="jane@example.com",
            geo_city="Austin",
        )
    """

    id: str
    timestamp: datetime

    # Identity captured from forms on the landing page
    email: str | None = None
    phone: str | None = None

    # Google click identifier
    gclid: str | None = None
    gclid_expires_at: datetime | None = None

    # Tracking pixel id of the business that owns the click
    client_id: str | None = None

    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None

    # Geolocation enrichment
    geo_city: str | None = None
    geo_region: str | None = None
    geo_postal_code: str | None = None
    geo_country: str | None = None

    raw_data: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        if self.gclid_expires_at is not None:
            object.__setattr__(self, "gclid_expires_at", ensure_utc(self.gclid_expires_at))

    @property
    def normalized_email(self) -> str | None:
        return normalize_email(self.email)

    @property
    def normalized_phone(self) -> str | None:
        return normalize_phone(self.phone)

    @property
    def has_contact(self) -> bool:
        """True if the click carries an email or phone."""
        return bool(self.email or self.phone)

    def is_gclid_fresh(self, now: datetime) -> bool:
        """True if the click has a gclid that has not expired at `now`."""
        if not self.gclid:
            return False
        return self.gclid_expires_at is None or self.gclid_expires_at > ensure_utc(now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "email": self.email,
            "phone": self.phone,
            "gclid": self.gclid,
            "gclid_expires_at": self.gclid_expires_at.isoformat() if self.gclid_expires_at else None,
            "client_id": self.client_id,
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "utm_term": self.utm_term,
            "utm_content": self.utm_content,
            "geo_city": self.geo_city,
            "geo_region": self.geo_region,
            "geo_postal_code": self.geo_postal_code,
            "geo_country": self.geo_country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClickEvent:
        """Create a ClickEvent from a store row.

        Raises:
            ValueError: If 'id' or 'timestamp' is missing or invalid.
        """
        if data.get("id") in (None, ""):
            raise ValueError("Missing required field: id")

        postal_code = data.get("geo_postal_code")
        return cls(
            id=str(data["id"]),
            timestamp=parse_timestamp(data.get("timestamp")),
            email=data.get("email"),
            phone=data.get("phone"),
            gclid=data.get("gclid"),
            gclid_expires_at=_optional_timestamp(data.get("gclid_expires_at"), "gclid_expires_at"),
            client_id=data.get("client_id"),
            utm_source=data.get("utm_source"),
            utm_medium=data.get("utm_medium"),
            utm_campaign=data.get("utm_campaign"),
            utm_term=data.get("utm_term"),
            utm_content=data.get("utm_content"),
            geo_city=data.get("geo_city"),
            geo_region=data.get("geo_region"),
            geo_postal_code=str(postal_code) if postal_code is not None else None,
            geo_country=data.get("geo_country"),
            raw_data=dict(data),
        )


@dataclass(frozen=True)
class OfflinePurchase:
    """
    One offline purchase to attribute.

    Example:
        purchase = OfflinePurchase(
            order_id="ORD-1001",
            purchase_amount=149.99,
            purchase_date=datetime(2025, 1, 15, 14, 30, tzinfo=UTC),
            email="jane@example.com",
            city="Austin",
            zip_code="78701",
        )
    """

    order_id: str
    purchase_amount: float
    purchase_date: datetime

    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None

    currency: str = "USD"

    def __post_init__(self) -> None:
        """Validate purchase attributes after initialization."""
        if not self.order_id:
            raise ValueError("Missing required field: order_id")
        if not math.isfinite(self.purchase_amount) or self.purchase_amount <= 0:
            raise ValueError(f"purchase_amount must be positive and finite, got {self.purchase_amount}")
        object.__setattr__(self, "purchase_date", ensure_utc(self.purchase_date))

    @property
    def normalized_email(self) -> str | None:
        return normalize_email(self.email)

    @property
    def normalized_phone(self) -> str | None:
        return normalize_phone(self.phone)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        data = asdict(self)
        data["purchase_date"] = self.purchase_date.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OfflinePurchase:
        """Create an OfflinePurchase from a dictionary of canonical fields.

        Args:
            data: Dictionary with order_id, purchase_amount, purchase_date
                and optional identity/location fields.

        Returns:
            OfflinePurchase instance.

        Raises:
            ValueError: If a required field is missing, purchase_amount is
                not a positive finite number, or purchase_date cannot be parsed.
        """
        for required in ("order_id", "purchase_amount", "purchase_date"):
            if data.get(required) in (None, ""):
                raise ValueError(f"Missing required field: {required}")

        try:
            amount = float(data["purchase_amount"])
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid purchase_amount: {data['purchase_amount']}") from e

        zip_code = data.get("zip_code")
        return cls(
            order_id=str(data["order_id"]),
            purchase_amount=amount,
            purchase_date=parse_timestamp(data["purchase_date"], "purchase_date"),
            email=data.get("email") or None,
            phone=str(data["phone"]) if data.get("phone") else None,
            first_name=data.get("first_name") or None,
            last_name=data.get("last_name") or None,
            street_address=data.get("street_address") or None,
            city=data.get("city") or None,
            state=data.get("state") or None,
            zip_code=str(zip_code) if zip_code not in (None, "") else None,
            country=data.get("country") or None,
            currency=data.get("currency") or "USD",
        )


@dataclass(frozen=True)
class ExactMatchDetails:
    """Which identifiers matched in a direct PII match."""

    email_match: bool = False
    phone_match: bool = False
    location_match: bool = False


@dataclass(frozen=True)
class LeadFormMatchDetails:
    """Lead-form submission that matched the purchase."""

    email_match: bool = False
    phone_match: bool = False
    submission_id: str | None = None
    campaign: str | None = None


@dataclass(frozen=True)
class FuzzyMatchDetails:
    """Signals behind a location + time proximity match."""

    location_match: bool = False
    postal_match: bool = False
    time_proximity: int = 0  # whole days between click and purchase
    has_contact: bool = False
    campaign_relevance: bool = False
    score: int = 0


@dataclass(frozen=True)
class StatisticalMatchDetails:
    """Aggregate figures behind a statistical attribution."""

    location: str
    total_clicks: int
    total_conversions: int
    conversion_rate: str  # e.g. "2.00%"
    attribution_probability: str  # e.g. "2%"


MatchDetails = ExactMatchDetails | LeadFormMatchDetails | FuzzyMatchDetails | StatisticalMatchDetails


@dataclass
class MatchResult:
    """Result of attributing a single purchase."""

    match_type: MatchType
    confidence: int
    attribution_method: str
    match_details: MatchDetails
    click_event: ClickEvent | None = None
    gclid: str | None = None

    def __post_init__(self) -> None:
        self.confidence = max(0, min(100, int(self.confidence)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "match_type": self.match_type.value,
            "confidence": self.confidence,
            "attribution_method": self.attribution_method,
            "match_details": asdict(self.match_details),
            "click_event": self.click_event.to_dict() if self.click_event else None,
            "gclid": self.gclid,
        }


@dataclass
class BulkMatchSummary:
    """Aggregate counts over a batch of matches."""

    total: int = 0
    exact_matches: int = 0
    lead_form_matches: int = 0
    probable_matches: int = 0
    statistical_matches: int = 0
    no_attribution: int = 0
    total_value: float = 0.0
    average_confidence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BulkMatchResult:
    """Results of a batch run, in input order, with their summary."""

    results: list[MatchResult] = field(default_factory=list)
    summary: BulkMatchSummary = field(default_factory=BulkMatchSummary)
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
            "cancelled": self.cancelled,
        }
