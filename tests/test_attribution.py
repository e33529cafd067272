"""Tests for the attribution engine."""

import threading
from datetime import UTC, datetime
from unittest.mock import MagicMock

from clickmatch.config import MatchingConfig
from clickmatch.connectors.lead_forms import LeadFormSubmission
from clickmatch.connectors.store import InMemoryClickEventStore
from clickmatch.conversions.attribution import AttributionEngine
from clickmatch.conversions.matchers import ExactMatcher, FuzzyMatcher, LeadFormMatcher
from clickmatch.conversions.schema import (
    ExactMatchDetails,
    MatchResult,
    MatchType,
    StatisticalMatchDetails,
)


def _statistical(confidence=2):
    return MatchResult(
        match_type=MatchType.STATISTICAL,
        confidence=confidence,
        attribution_method="Statistical Location-Based Attribution",
        match_details=StatisticalMatchDetails(
            location="unknown",
            total_clicks=0,
            total_conversions=0,
            conversion_rate="2.00%",
            attribution_probability=f"{confidence}%",
        ),
    )


def _exact(confidence=50):
    return MatchResult(
        match_type=MatchType.EXACT,
        confidence=confidence,
        attribution_method="Direct PII Match",
        match_details=ExactMatchDetails(email_match=True),
    )


class TestEngineSetup:
    """Test tier wiring."""

    def test_default_tiers(self, empty_store):
        """Test exact and fuzzy tiers without a lead-form source."""
        engine = AttributionEngine(empty_store)

        assert [type(t) for t in engine.tiers] == [ExactMatcher, FuzzyMatcher]
        assert engine.config == MatchingConfig()

    def test_lead_form_tier_between_exact_and_fuzzy(self, empty_store):
        """Test the lead-form tier slots in second."""
        engine = AttributionEngine(empty_store, lead_form_source=MagicMock())

        assert [type(t) for t in engine.tiers] == [ExactMatcher, LeadFormMatcher, FuzzyMatcher]


class TestMatchPurchase:
    """Test single-purchase attribution."""

    def test_always_returns_result(self, make_purchase, empty_store, seeded_rng):
        """Test an empty store still yields a statistical result."""
        engine = AttributionEngine(empty_store, rng=seeded_rng)

        result = engine.match_purchase(make_purchase(email="nobody@example.com"))

        assert result.match_type == MatchType.STATISTICAL
        assert result.confidence == 2

    def test_exact_wins_over_fuzzy(self, make_click, make_purchase):
        """Test earlier tiers short-circuit later ones."""
        store = InMemoryClickEventStore([
            make_click("pii", days_before=40, email="jane@example.com"),
            make_click("geo", days_before=1, geo_city="Austin"),
        ])
        engine = AttributionEngine(store)

        result = engine.match_purchase(make_purchase(email="jane@example.com", city="Austin"))

        assert result.match_type == MatchType.EXACT
        assert result.click_event.id == "pii"

    def test_falls_through_to_fuzzy(self, make_click, make_purchase):
        """Test a purchase with no identity match uses location."""
        store = InMemoryClickEventStore([make_click("geo", days_before=1, geo_city="Austin")])
        engine = AttributionEngine(store)

        result = engine.match_purchase(make_purchase(email="jane@example.com", city="Austin"))

        assert result.match_type == MatchType.PROBABLE
        assert result.confidence == 59

    def test_lead_form_beats_fuzzy(self, make_click, make_purchase):
        """Test a lead-form hit is used before location matching."""
        store = InMemoryClickEventStore([make_click("geo", days_before=1, geo_city="Austin")])
        source = MagicMock()
        source.find_submission.return_value = LeadFormSubmission(
            submission_id="sub-1",
            submitted_at=datetime(2025, 2, 1, tzinfo=UTC),
            gclid="lead-gclid",
            email="jane@example.com",
        )
        engine = AttributionEngine(store, lead_form_source=source)

        result = engine.match_purchase(make_purchase(email="jane@example.com", city="Austin"))

        assert result.match_type == MatchType.LEAD_FORM
        assert result.confidence == 90
        assert result.gclid == "lead-gclid"

    def test_exact_beats_lead_form(self, make_click, make_purchase):
        """Test the lead-form source is not consulted after an exact match."""
        store = InMemoryClickEventStore([make_click("pii", days_before=1, email="jane@example.com")])
        source = MagicMock()
        engine = AttributionEngine(store, lead_form_source=source)

        result = engine.match_purchase(make_purchase(email="jane@example.com"))

        assert result.match_type == MatchType.EXACT
        source.find_submission.assert_not_called()

    def test_failing_store_still_attributes(self, make_purchase):
        """Test store failures degrade every tier to the statistical default."""
        store = MagicMock()
        store.find_by_identifier_within_window.side_effect = TimeoutError("slow")
        store.find_by_location_within_window.side_effect = TimeoutError("slow")
        store.count_conversions_by_location.side_effect = TimeoutError("slow")
        engine = AttributionEngine(store)

        result = engine.match_purchase(make_purchase(email="jane@example.com", city="Austin"))

        assert result.match_type == MatchType.STATISTICAL
        assert result.confidence == 2
        assert result.match_details.location == "Austin"


class TestBulkMatch:
    """Test batch attribution."""

    def test_empty_batch(self, empty_store):
        """Test an empty batch gives zero counts."""
        batch = AttributionEngine(empty_store).bulk_match([])

        assert batch.results == []
        assert batch.summary.total == 0
        assert batch.summary.average_confidence == 0
        assert batch.cancelled is False

    def test_lead_form_source_prefetched_once(self, make_purchase, empty_store):
        """Test the lead-form window is loaded once per batch, before matching."""
        source = MagicMock()
        source.find_submission.return_value = None
        purchases = [make_purchase(f"ORD-{i}", email=f"buyer{i}@example.com") for i in range(5)]

        AttributionEngine(empty_store, lead_form_source=source).bulk_match(purchases, max_workers=3)

        source.prefetch.assert_called_once()
        assert source.find_submission.call_count == 5

    def test_all_statistical_on_empty_store(self, make_purchase, empty_store, seeded_rng):
        """Test summary counts when nothing matches."""
        purchases = [
            make_purchase("A", 100.0, email="a@example.com"),
            make_purchase("B", 50.5, zip_code="78701"),
            make_purchase("C", 25.25),
        ]

        batch = AttributionEngine(empty_store, rng=seeded_rng).bulk_match(purchases)

        summary = batch.summary
        assert summary.total == 3
        assert summary.statistical_matches == 3
        assert summary.exact_matches == 0
        assert summary.probable_matches == 0
        assert summary.no_attribution == 3
        assert summary.total_value == 175.75
        assert summary.average_confidence == 2

    def test_mixed_tiers_summary(self, make_click, make_purchase):
        """Test per-tier counts and the mean confidence."""
        store = InMemoryClickEventStore([
            make_click("pii", days_before=3, email="jane@example.com", phone="5125550100", geo_city="Austin"),
            make_click("geo", days_before=1, geo_city="Dallas"),
        ])
        purchases = [
            make_purchase("A", email="jane@example.com", phone="512-555-0100", city="Austin"),
            make_purchase("B", city="Dallas"),
            make_purchase("C"),
        ]

        batch = AttributionEngine(store).bulk_match(purchases)

        assert [r.match_type for r in batch.results] == [
            MatchType.EXACT,
            MatchType.PROBABLE,
            MatchType.STATISTICAL,
        ]
        assert batch.summary.exact_matches == 1
        assert batch.summary.probable_matches == 1
        assert batch.summary.statistical_matches == 1
        assert batch.summary.no_attribution == 1
        # (100 + 59 + 2) / 3 = 53.67
        assert batch.summary.average_confidence == 54

    def test_concurrent_preserves_order(self, make_click, make_purchase):
        """Test results come back in input order with several workers."""
        store = InMemoryClickEventStore([
            make_click(f"e{i}", days_before=1, email=f"user{i}@example.com") for i in range(20)
        ])
        purchases = [make_purchase(f"ORD-{i}", email=f"user{i}@example.com") for i in range(20)]

        batch = AttributionEngine(store).bulk_match(purchases, max_workers=4)

        assert [r.click_event.id for r in batch.results] == [f"e{i}" for i in range(20)]
        assert batch.summary.exact_matches == 20

    def test_max_workers_from_config(self, make_purchase, empty_store):
        """Test the default worker count comes from config."""
        engine = AttributionEngine(empty_store, config=MatchingConfig(max_workers=3))

        batch = engine.bulk_match([make_purchase(f"ORD-{i}") for i in range(5)])

        assert batch.summary.total == 5

    def test_cancel_before_start(self, make_purchase, empty_store):
        """Test a pre-set cancel event matches nothing."""
        cancel = threading.Event()
        cancel.set()

        batch = AttributionEngine(empty_store).bulk_match(
            [make_purchase("A"), make_purchase("B")], cancel_event=cancel
        )

        assert batch.cancelled is True
        assert batch.results == []
        assert batch.summary.total == 0

    def test_cancel_midway_sequential(self, make_purchase, empty_store):
        """Test cancelling keeps only completed purchases."""
        cancel = threading.Event()
        engine = AttributionEngine(empty_store)
        calls = []

        def match_then_cancel(purchase):
            calls.append(purchase.order_id)
            if len(calls) == 2:
                cancel.set()
            return _statistical()

        engine.match_purchase = match_then_cancel
        purchases = [make_purchase(f"ORD-{i}") for i in range(5)]

        batch = engine.bulk_match(purchases, cancel_event=cancel)

        assert batch.cancelled is True
        assert calls == ["ORD-0", "ORD-1"]
        assert len(batch.results) == 2
        assert batch.summary.total == 2
        assert batch.summary.total_value == 200.0

    def test_cancel_midway_concurrent(self, make_purchase, empty_store):
        """Test cancelling with workers stops new submissions and drains in-flight work."""
        cancel = threading.Event()
        engine = AttributionEngine(empty_store)
        lock = threading.Lock()
        calls = []

        def match_then_cancel(purchase):
            with lock:
                calls.append(purchase.order_id)
                if len(calls) == 3:
                    cancel.set()
            return _exact()

        engine.match_purchase = match_then_cancel
        purchases = [make_purchase(f"ORD-{i}") for i in range(50)]

        batch = engine.bulk_match(purchases, max_workers=2, cancel_event=cancel)

        assert batch.cancelled is True
        assert len(batch.results) == len(calls)
        assert len(calls) < 50
        assert batch.summary.exact_matches == len(calls)
