"""
Attribution tiers - strategies for tying a purchase to an ad click.

Tiers, in the order the engine tries them:
- ExactMatcher: normalized email/phone seen on a click (Direct PII Match)
- LeadFormMatcher: email/phone submitted through an ad lead form (optional)
- FuzzyMatcher: same city/postal code, scored by time proximity
- StatisticalAttributor: location conversion rate + weighted random click

Each tier returns a MatchResult or None. The statistical tier never
returns None, so the chain always terminates with a result. Store or API
failures inside a tier are logged and treated as "no candidate".
"""

from __future__ import annotations

import logging
import math
import random
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from clickmatch.config import MatchingConfig
from clickmatch.conversions.schema import (
    ClickEvent,
    ExactMatchDetails,
    FuzzyMatchDetails,
    LeadFormMatchDetails,
    MatchResult,
    MatchType,
    OfflinePurchase,
    StatisticalMatchDetails,
    ensure_utc,
)

if TYPE_CHECKING:
    from clickmatch.connectors.lead_forms import LeadFormSource
    from clickmatch.connectors.store import ClickEventStore

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

# Campaign name fragments that suggest a purchase-oriented campaign
RELEVANT_CAMPAIGN_TERMS = ("purchase", "sale")

UNKNOWN_LOCATION = "unknown"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with .5 rounding up."""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class PurchaseIdentity:
    """Normalized identifiers of a purchase, computed once per match."""

    email: str | None = None
    phone: str | None = None

    @classmethod
    def from_purchase(cls, purchase: OfflinePurchase) -> PurchaseIdentity:
        return cls(email=purchase.normalized_email, phone=purchase.normalized_phone)

    @property
    def is_empty(self) -> bool:
        return not self.email and not self.phone


class AttributionTier(ABC):
    """Base class for a single attribution strategy."""

    match_type: MatchType

    def __init__(self, config: MatchingConfig | None = None):
        self.config = config or MatchingConfig()

    @property
    def name(self) -> str:
        return self.match_type.value

    @abstractmethod
    def match(
        self,
        purchase: OfflinePurchase,
        identity: PurchaseIdentity,
    ) -> MatchResult | None:
        """Return a MatchResult, or None to fall through to the next tier."""
        pass  # pragma: no cover

    def prepare(self, purchases: Sequence[OfflinePurchase]) -> None:
        """Hook run once before a batch is matched."""


def _within(event: ClickEvent, after: datetime, before: datetime) -> bool:
    return bool(event.gclid) and after < event.timestamp < before


def _same_city(city: str | None, event: ClickEvent) -> bool:
    return bool(city and event.geo_city and event.geo_city.lower() == city.lower())


class ExactMatcher(AttributionTier):
    """
    Direct PII match.

    Looks for the most recent gclid click within the lookback window whose
    normalized email or phone equals the purchase's. Confidence is additive:
    email +50, phone +40, same city +10.
    """

    match_type = MatchType.EXACT

    EMAIL_POINTS = 50
    PHONE_POINTS = 40
    LOCATION_POINTS = 10

    def __init__(self, store: ClickEventStore, config: MatchingConfig | None = None):
        super().__init__(config)
        self.store = store

    def match(
        self,
        purchase: OfflinePurchase,
        identity: PurchaseIdentity,
    ) -> MatchResult | None:
        if identity.is_empty:
            return None

        before = purchase.purchase_date
        after = before - timedelta(days=self.config.exact_lookback_days)

        try:
            candidates = self.store.find_by_identifier_within_window(
                email=identity.email,
                phone=identity.phone,
                after=after,
                before=before,
            )
        except Exception as e:
            logger.warning(f"Exact match query failed for order {purchase.order_id}: {e}")
            return None

        candidates = [e for e in candidates if _within(e, after, before)]
        if not candidates:
            return None

        # Recency wins at this tier
        event = max(candidates, key=lambda e: e.timestamp)

        email_match = bool(identity.email and event.normalized_email == identity.email)
        phone_match = bool(identity.phone and event.normalized_phone == identity.phone)
        location_match = _same_city(purchase.city, event)

        confidence = 0
        if email_match:
            confidence += self.EMAIL_POINTS
        if phone_match:
            confidence += self.PHONE_POINTS
        if location_match:
            confidence += self.LOCATION_POINTS

        return MatchResult(
            match_type=MatchType.EXACT,
            confidence=confidence,
            click_event=event,
            gclid=event.gclid,
            attribution_method="Direct PII Match",
            match_details=ExactMatchDetails(
                email_match=email_match,
                phone_match=phone_match,
                location_match=location_match,
            ),
        )


class LeadFormMatcher(AttributionTier):
    """Match against ad-platform lead-form submissions at fixed confidence."""

    match_type = MatchType.LEAD_FORM

    def __init__(self, source: LeadFormSource, config: MatchingConfig | None = None):
        super().__init__(config)
        self.source = source

    def prepare(self, purchases: Sequence[OfflinePurchase]) -> None:
        """Fetch submissions for the whole batch window up front."""
        dates = [
            p.purchase_date for p in purchases if not PurchaseIdentity.from_purchase(p).is_empty
        ]
        if not dates:
            return

        after = min(dates) - timedelta(days=self.config.exact_lookback_days)
        try:
            self.source.prefetch(after, max(dates))
        except Exception as e:
            logger.warning(f"Lead-form prefetch failed, falling back to per-purchase lookups: {e}")

    def match(
        self,
        purchase: OfflinePurchase,
        identity: PurchaseIdentity,
    ) -> MatchResult | None:
        if identity.is_empty:
            return None

        before = purchase.purchase_date
        after = before - timedelta(days=self.config.exact_lookback_days)

        try:
            submission = self.source.find_submission(identity.email, identity.phone, after, before)
        except Exception as e:
            logger.warning(f"Lead-form lookup failed for order {purchase.order_id}: {e}")
            return None

        if submission is None:
            return None

        return MatchResult(
            match_type=MatchType.LEAD_FORM,
            confidence=self.config.lead_form_confidence,
            gclid=submission.gclid,
            attribution_method="Google Lead Form Match",
            match_details=LeadFormMatchDetails(
                email_match=bool(identity.email and submission.email == identity.email),
                phone_match=bool(identity.phone and submission.phone == identity.phone),
                submission_id=submission.submission_id,
                campaign=submission.campaign,
            ),
        )


@dataclass(frozen=True)
class _ScoredClick:
    event: ClickEvent
    details: FuzzyMatchDetails

    @property
    def score(self) -> int:
        return self.details.score


class FuzzyMatcher(AttributionTier):
    """
    Location + time proximity match.

    Candidates are gclid clicks from the purchase's city or postal code in
    a short window before the purchase. Each is scored on independent
    signals:

    - city match: +30
    - postal code match: +20
    - time proximity: 30 minus whole days between click and purchase (min 0)
    - click carries an email or phone: +10
    - utm_campaign mentions "purchase" or "sale": +10

    The best candidate wins; equal scores go to the most recent click, then
    the lowest event id. Winners below the minimum score are rejected and
    confidence is capped.
    """

    match_type = MatchType.PROBABLE

    CITY_POINTS = 30
    POSTAL_POINTS = 20
    MAX_TIME_POINTS = 30
    CONTACT_POINTS = 10
    CAMPAIGN_POINTS = 10

    def __init__(self, store: ClickEventStore, config: MatchingConfig | None = None):
        super().__init__(config)
        self.store = store

    def score(self, purchase: OfflinePurchase, event: ClickEvent) -> FuzzyMatchDetails:
        """Score one candidate click against a purchase."""
        score = 0

        location_match = _same_city(purchase.city, event)
        if location_match:
            score += self.CITY_POINTS

        postal_match = bool(purchase.zip_code and event.geo_postal_code == purchase.zip_code)
        if postal_match:
            score += self.POSTAL_POINTS

        days_between = (purchase.purchase_date - event.timestamp) // ONE_DAY
        score += max(0, self.MAX_TIME_POINTS - days_between)

        if event.has_contact:
            score += self.CONTACT_POINTS

        campaign = event.utm_campaign or ""
        campaign_relevance = any(term in campaign for term in RELEVANT_CAMPAIGN_TERMS)
        if campaign_relevance:
            score += self.CAMPAIGN_POINTS

        return FuzzyMatchDetails(
            location_match=location_match,
            postal_match=postal_match,
            time_proximity=days_between,
            has_contact=event.has_contact,
            campaign_relevance=campaign_relevance,
            score=score,
        )

    def match(
        self,
        purchase: OfflinePurchase,
        identity: PurchaseIdentity,
    ) -> MatchResult | None:
        if not purchase.city and not purchase.zip_code:
            return None

        before = purchase.purchase_date
        after = before - timedelta(days=self.config.fuzzy_lookback_days)

        try:
            candidates = self.store.find_by_location_within_window(
                city=purchase.city,
                postal_code=purchase.zip_code,
                after=after,
                before=before,
            )
        except Exception as e:
            logger.warning(f"Fuzzy match query failed for order {purchase.order_id}: {e}")
            return None

        scored = [
            _ScoredClick(event=event, details=self.score(purchase, event))
            for event in candidates
            if _within(event, after, before)
        ]
        if not scored:
            return None

        best = min(
            scored,
            key=lambda s: (-s.score, -s.event.timestamp.timestamp(), s.event.id),
        )

        if best.score < self.config.fuzzy_min_score:
            logger.debug(
                f"Best fuzzy candidate for order {purchase.order_id} scored {best.score}, "
                f"below {self.config.fuzzy_min_score}"
            )
            return None

        return MatchResult(
            match_type=MatchType.PROBABLE,
            confidence=min(best.score, self.config.fuzzy_confidence_cap),
            click_event=best.event,
            gclid=best.event.gclid,
            attribution_method="Location + Time Proximity Match",
            match_details=best.details,
        )


class StatisticalAttributor(AttributionTier):
    """
    Statistical location-based attribution (terminal tier).

    Estimates the chance that a purchase came from ads using the location's
    historical conversion rate over recent click volume, capped low, and
    picks a representative click at random with more weight on recent
    clicks. Always returns a result.

    Args:
        store: Click event store
        config: Matching configuration
        rng: Random source for the weighted pick (seed it in tests)
        now: Clock for the rolling lookback window
    """

    match_type = MatchType.STATISTICAL

    def __init__(
        self,
        store: ClickEventStore,
        config: MatchingConfig | None = None,
        rng: random.Random | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        super().__init__(config)
        self.store = store
        self.rng = rng or random.Random()
        self.now = now or (lambda: datetime.now(UTC))

    def weighted_pick(self, candidates: list[ClickEvent]) -> ClickEvent | None:
        """
        Pick one click, weighting by recency rank.

        Candidates must be ordered most recent first. The click at rank r
        (zero-based) of N gets weight N - r.
        """
        if not candidates:
            return None

        n = len(candidates)
        total_weight = n * (n + 1) / 2
        draw = self.rng.random() * total_weight

        for rank, event in enumerate(candidates):
            draw -= n - rank
            if draw <= 0:
                return event
        return candidates[-1]

    def match(
        self,
        purchase: OfflinePurchase,
        identity: PurchaseIdentity,
    ) -> MatchResult:
        location = purchase.city or purchase.zip_code or UNKNOWN_LOCATION

        now = ensure_utc(self.now())
        since = now - timedelta(days=self.config.statistical_lookback_days)

        try:
            candidates = self.store.find_by_location_within_window(
                city=location,
                postal_code=purchase.zip_code,
                after=since,
                before=now,
                inclusive=True,
            )
        except Exception as e:
            logger.warning(f"Statistical click query failed for location {location}: {e}")
            candidates = []

        try:
            total_conversions = self.store.count_conversions_by_location(location)
        except Exception as e:
            logger.warning(f"Conversion count query failed for location {location}: {e}")
            total_conversions = 0

        candidates = sorted(
            (e for e in candidates if e.gclid),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        total_clicks = len(candidates)

        if total_clicks > 0:
            conversion_rate = total_conversions / total_clicks
        else:
            conversion_rate = self.config.default_conversion_rate

        probability = min(conversion_rate * 100, self.config.statistical_confidence_cap)
        selected = self.weighted_pick(candidates)

        return MatchResult(
            match_type=MatchType.STATISTICAL,
            confidence=round_half_up(probability),
            click_event=selected,
            gclid=selected.gclid if selected else None,
            attribution_method="Statistical Location-Based Attribution",
            match_details=StatisticalMatchDetails(
                location=location,
                total_clicks=total_clicks,
                total_conversions=total_conversions,
                conversion_rate=f"{conversion_rate * 100:.2f}%",
                attribution_probability=f"{round_half_up(probability)}%",
            ),
        )
