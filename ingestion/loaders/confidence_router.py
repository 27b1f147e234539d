"""
Route one extraction result to auto-accept, review with draft, or review only.

Outcomes form a closed set:
- AutoAccepted: active listings, no review items
- QueuedWithDraft: pending_review listings, one review item per listing
- QueuedWithoutDraft: a single review item and no listing
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
from core.config import settings
from ingestion.transformers.normalizer import ListingNormalizer
from models.base import Intent, ListingStatus, ReviewReason, ReviewStatus
from models.listing import Listing
from models.raw_message import RawMessage
from models.review import ReviewQueueItem
from schemas.extraction import ExtractionResult
from schemas.review import (
    LowConfidenceSuggestion,
    UnknownIntentSuggestion,
    BelowThresholdSuggestion,
    NoItemsSuggestion,
    dump_suggestion,
)
import logging

logger = logging.getLogger(__name__)


@dataclass
class AutoAccepted:
    listings: List[Listing]
    outcome: str = field(default="auto_accepted", init=False)


@dataclass
class QueuedWithDraft:
    listings: List[Listing]
    review_items: List[ReviewQueueItem]
    outcome: str = field(default="queued_with_draft", init=False)


@dataclass
class QueuedWithoutDraft:
    review_item: ReviewQueueItem
    outcome: str = field(default="queued_without_draft", init=False)


RoutingOutcome = Union[AutoAccepted, QueuedWithDraft, QueuedWithoutDraft]


class ConfidenceRouter:
    """
    Turn an ExtractionResult into listings and/or review items.

    Thresholds default to settings; rows are added and flushed but the
    caller owns the commit.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        normalizer: ListingNormalizer,
        auto_threshold: Optional[float] = None,
        review_threshold: Optional[float] = None,
        expiry_days: Optional[int] = None,
    ):
        self.db = db_session
        self.normalizer = normalizer
        self.auto_threshold = settings.CONFIDENCE_AUTO_THRESHOLD if auto_threshold is None else auto_threshold
        self.review_threshold = settings.CONFIDENCE_REVIEW_THRESHOLD if review_threshold is None else review_threshold
        self.expiry_days = settings.LISTING_EXPIRY_DAYS if expiry_days is None else expiry_days

    async def route(self, raw: RawMessage, extraction: ExtractionResult) -> RoutingOutcome:
        confidence = extraction.confidence

        if confidence < self.review_threshold:
            return await self._queue_without_draft(raw, extraction, ReviewReason.BELOW_THRESHOLD)

        if not extraction.items:
            return await self._queue_without_draft(raw, extraction, ReviewReason.NO_ITEMS)

        if confidence >= self.auto_threshold:
            if extraction.intent != Intent.UNKNOWN:
                return await self._auto_accept(raw, extraction)
            return await self._queue_with_draft(raw, extraction, ReviewReason.UNKNOWN_INTENT)

        return await self._queue_with_draft(raw, extraction, ReviewReason.LOW_CONFIDENCE)

    # --------------------------------------------------
    # Outcomes
    # --------------------------------------------------

    async def _auto_accept(self, raw: RawMessage, extraction: ExtractionResult) -> AutoAccepted:
        listings = []
        for item in extraction.items:
            listing = await self.normalizer.build_listing(
                raw, item, extraction, ListingStatus.ACTIVE, self.expiry_days
            )
            self.db.add(listing)
            listings.append(listing)
        await self.db.flush()

        logger.info(
            f"Message {raw.id}: auto-accepted {len(listings)} listing(s) "
            f"at confidence {extraction.confidence:.2f}"
        )
        return AutoAccepted(listings=listings)

    async def _queue_with_draft(
        self,
        raw: RawMessage,
        extraction: ExtractionResult,
        reason: ReviewReason,
    ) -> QueuedWithDraft:
        listings = []
        for item in extraction.items:
            listing = await self.normalizer.build_listing(
                raw, item, extraction, ListingStatus.PENDING_REVIEW, self.expiry_days
            )
            self.db.add(listing)
            listings.append(listing)
        await self.db.flush()

        suggestion_cls = UnknownIntentSuggestion if reason == ReviewReason.UNKNOWN_INTENT else LowConfidenceSuggestion
        review_items = []
        for index, listing in enumerate(listings):
            review_item = ReviewQueueItem(
                raw_message_id=raw.id,
                listing_id=listing.id,
                reason=reason,
                llm_explanation=self._explain(reason, extraction),
                suggested_values=dump_suggestion(suggestion_cls(extraction=extraction, item_index=index)),
                status=ReviewStatus.PENDING,
            )
            self.db.add(review_item)
            review_items.append(review_item)
        await self.db.flush()

        logger.info(
            f"Message {raw.id}: queued {len(listings)} draft listing(s) for review "
            f"({reason.value}, confidence {extraction.confidence:.2f})"
        )
        return QueuedWithDraft(listings=listings, review_items=review_items)

    async def _queue_without_draft(
        self,
        raw: RawMessage,
        extraction: ExtractionResult,
        reason: ReviewReason,
    ) -> QueuedWithoutDraft:
        suggestion_cls = NoItemsSuggestion if reason == ReviewReason.NO_ITEMS else BelowThresholdSuggestion
        review_item = ReviewQueueItem(
            raw_message_id=raw.id,
            listing_id=None,
            reason=reason,
            llm_explanation=self._explain(reason, extraction),
            suggested_values=dump_suggestion(suggestion_cls(extraction=extraction)),
            status=ReviewStatus.PENDING,
        )
        self.db.add(review_item)
        await self.db.flush()

        logger.info(
            f"Message {raw.id}: queued for review without listing "
            f"({reason.value}, confidence {extraction.confidence:.2f})"
        )
        return QueuedWithoutDraft(review_item=review_item)

    def _explain(self, reason: ReviewReason, extraction: ExtractionResult) -> str:
        confidence = f"{extraction.confidence:.2f}"
        intent = extraction.intent.value

        if reason == ReviewReason.LOW_CONFIDENCE:
            text = (
                f"Extraction confidence {confidence} "
                f"is below auto-accept threshold {self.auto_threshold:.2f}. Intent: {intent}"
            )
        elif reason == ReviewReason.UNKNOWN_INTENT:
            text = (
                f"Extraction confidence {confidence} met the auto-accept threshold but the intent "
                f"could not be classified as sell or want."
            )
        elif reason == ReviewReason.NO_ITEMS:
            text = f"Extraction (score: {confidence}, intent: {intent}) did not identify any items."
        else:
            text = (
                f"Extraction confidence {confidence} is below review threshold "
                f"{self.review_threshold:.2f}; no listing was created. Intent: {intent}"
            )

        if extraction.error:
            text += f" Extraction error: {extraction.error}"
        return text
