"""
Attribution - decide which ad click (if any) caused an offline purchase.

The engine runs an ordered list of tiers until one produces a result:

1. Exact (Direct PII Match)
2. Google lead form (only when a lead-form source is configured)
3. Probable (Location + Time Proximity Match)
4. Statistical (always produces a result)

so every purchase gets a MatchResult, possibly with very low confidence.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import TYPE_CHECKING

from clickmatch.config import MatchingConfig
from clickmatch.conversions.matchers import (
    AttributionTier,
    ExactMatcher,
    FuzzyMatcher,
    LeadFormMatcher,
    PurchaseIdentity,
    StatisticalAttributor,
    round_half_up,
)
from clickmatch.conversions.schema import (
    BulkMatchResult,
    BulkMatchSummary,
    MatchResult,
    MatchType,
    OfflinePurchase,
)

if TYPE_CHECKING:
    from clickmatch.connectors.lead_forms import LeadFormSource
    from clickmatch.connectors.store import ClickEventStore

logger = logging.getLogger(__name__)


class AttributionEngine:
    """
    Attribution matching engine.

    Stateless apart from store reads, so one engine can serve many
    purchases, including concurrently.

    Example:
        store = BigQueryClickEventStore(business_id="acme")
        engine = AttributionEngine(store)

        result = engine.match_purchase(purchase)
        print(result.match_type, result.confidence, result.gclid)

        batch = engine.bulk_match(purchases, max_workers=4)
        print(batch.summary.exact_matches, batch.summary.total_value)
    """

    def __init__(
        self,
        store: ClickEventStore,
        config: MatchingConfig | None = None,
        lead_form_source: LeadFormSource | None = None,
        rng: random.Random | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Click event store used by every tier
            config: Matching configuration (defaults to MatchingConfig())
            lead_form_source: Optional lead-form lookup; enables that tier
            rng: Random source for the statistical tier
            now: Clock for the statistical tier's rolling window
        """
        self.store = store
        self.config = config or MatchingConfig()

        tiers: list[AttributionTier] = [ExactMatcher(store, self.config)]
        if lead_form_source is not None:
            tiers.append(LeadFormMatcher(lead_form_source, self.config))
        tiers.append(FuzzyMatcher(store, self.config))

        self.tiers: list[AttributionTier] = tiers
        self.fallback = StatisticalAttributor(store, self.config, rng=rng, now=now)

    def match_purchase(self, purchase: OfflinePurchase) -> MatchResult:
        """
        Attribute a single purchase.

        Args:
            purchase: Purchase to attribute

        Returns:
            The first tier's result; the statistical tier if none match
        """
        identity = PurchaseIdentity.from_purchase(purchase)

        for tier in self.tiers:
            result = tier.match(purchase, identity)
            if result is not None:
                logger.debug(
                    f"Order {purchase.order_id}: {tier.name} match "
                    f"(confidence {result.confidence})"
                )
                return result

        result = self.fallback.match(purchase, identity)
        logger.debug(
            f"Order {purchase.order_id}: statistical attribution "
            f"(confidence {result.confidence})"
        )
        return result

    def bulk_match(
        self,
        purchases: Sequence[OfflinePurchase],
        max_workers: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BulkMatchResult:
        """
        Attribute a batch of purchases.

        Results keep the input order. With more than one worker, purchases
        are matched concurrently, at most `max_workers` at a time.

        Setting `cancel_event` stops new purchases from being started.
        Matches already running finish, and the result then holds only the
        purchases that completed (still in input order) with
        `cancelled=True`.

        Args:
            purchases: Purchases to attribute
            max_workers: Concurrent matches (default: config.max_workers)
            cancel_event: Optional cancellation signal

        Returns:
            BulkMatchResult with per-purchase results and summary
        """
        workers = max(1, max_workers or self.config.max_workers)
        logger.info(f"Matching {len(purchases)} purchases with {workers} worker(s)")

        for tier in self.tiers:
            tier.prepare(purchases)

        if workers == 1:
            completed, cancelled = self._match_sequential(purchases, cancel_event)
        else:
            completed, cancelled = self._match_concurrent(purchases, workers, cancel_event)

        indexes = sorted(completed)
        matched = [purchases[i] for i in indexes]
        results = [completed[i] for i in indexes]
        summary = self.summarize(matched, results)

        if cancelled:
            logger.warning(f"Bulk match cancelled after {len(results)} of {len(purchases)} purchases")
        logger.info(
            f"Bulk match complete: {summary.exact_matches} exact, "
            f"{summary.lead_form_matches} lead form, {summary.probable_matches} probable, "
            f"{summary.statistical_matches} statistical"
        )
        return BulkMatchResult(results=results, summary=summary, cancelled=cancelled)

    def _match_sequential(
        self,
        purchases: Sequence[OfflinePurchase],
        cancel_event: threading.Event | None,
    ) -> tuple[dict[int, MatchResult], bool]:
        completed: dict[int, MatchResult] = {}
        for index, purchase in enumerate(purchases):
            if cancel_event is not None and cancel_event.is_set():
                return completed, True
            completed[index] = self.match_purchase(purchase)
        return completed, False

    def _match_concurrent(
        self,
        purchases: Sequence[OfflinePurchase],
        workers: int,
        cancel_event: threading.Event | None,
    ) -> tuple[dict[int, MatchResult], bool]:
        completed: dict[int, MatchResult] = {}
        pending: dict[Future[MatchResult], int] = {}
        cancelled = False
        next_index = 0

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clickmatch") as executor:
            while next_index < len(purchases) or pending:
                # Keep at most `workers` matches in flight
                while next_index < len(purchases) and len(pending) < workers:
                    if cancel_event is not None and cancel_event.is_set():
                        cancelled = True
                        break
                    future = executor.submit(self.match_purchase, purchases[next_index])
                    pending[future] = next_index
                    next_index += 1

                if cancelled and not pending:
                    break
                if not pending:
                    continue

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    completed[pending.pop(future)] = future.result()

                if cancelled:
                    # Drain in-flight work, start nothing new
                    for future in list(pending):
                        completed[pending.pop(future)] = future.result()
                    break

        return completed, cancelled

    def summarize(
        self,
        purchases: Sequence[OfflinePurchase],
        results: Sequence[MatchResult],
    ) -> BulkMatchSummary:
        """
        Aggregate a batch of results.

        Args:
            purchases: Matched purchases
            results: Their results, in the same order

        Returns:
            BulkMatchSummary with per-tier counts, value and mean confidence
        """
        summary = BulkMatchSummary(total=len(results))
        confidence_total = 0

        for purchase, result in zip(purchases, results, strict=True):
            summary.total_value += purchase.purchase_amount
            confidence_total += result.confidence

            if result.match_type == MatchType.EXACT:
                summary.exact_matches += 1
            elif result.match_type == MatchType.LEAD_FORM:
                summary.lead_form_matches += 1
            elif result.match_type == MatchType.PROBABLE:
                summary.probable_matches += 1
            elif result.match_type == MatchType.STATISTICAL:
                summary.statistical_matches += 1

            if result.confidence < self.config.low_confidence_threshold:
                summary.no_attribution += 1

        if results:
            summary.average_confidence = round_half_up(confidence_total / len(results))
        return summary
