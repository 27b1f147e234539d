"""
Review queue workflow: list, resolve, skip and assisted re-extraction.

The pending -> resolved|skipped transition is a compare-and-swap UPDATE
guarded on status='pending'; when no row is affected another reviewer got
there first and InvalidStateTransition is raised.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    ExternalServiceError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from core.config import settings
from ingestion.extractors.llm_extractor import ExtractionEngine
from ingestion.transformers.normalizer import ListingNormalizer
from models.base import ListingStatus, ReviewStatus
from models.listing import Listing
from models.raw_message import RawMessage
from models.review import ReviewQueueItem
from schemas.extraction import ExtractedItem, ExtractionResult
from schemas.review import (
    BelowThresholdSuggestion,
    LowConfidenceSuggestion,
    ResolvedResolution,
    ReviewCorrections,
    SkippedResolution,
    dump_suggestion,
    load_suggestion,
)
from services.audit import AuditService

logger = logging.getLogger(__name__)

# Sold, deleted and expired listings never return to active through review
RESOLVABLE_LISTING_STATUSES = (ListingStatus.PENDING_REVIEW, ListingStatus.ACTIVE)


class ReviewService:
    def __init__(
        self,
        db_session: AsyncSession,
        normalizer: ListingNormalizer,
        engine: Optional[ExtractionEngine] = None,
        notifier=None,
        audit: Optional[AuditService] = None,
        expiry_days: Optional[int] = None,
    ):
        self.db = db_session
        self.normalizer = normalizer
        self.engine = engine
        self.notifier = notifier
        self.audit = audit or AuditService(db_session)
        self.expiry_days = settings.LISTING_EXPIRY_DAYS if expiry_days is None else expiry_days

    async def get(self, item_id: int) -> ReviewQueueItem:
        item = await self.db.get(ReviewQueueItem, item_id)
        if item is None:
            raise NotFoundError(
                f"Review item {item_id} not found",
                context={"entity": "review_queue", "entity_id": item_id}
            )
        return item

    async def list_pending(self, page: int = 1, page_size: int = 50) -> Tuple[List[ReviewQueueItem], int]:
        """Pending items, oldest first."""
        total = (await self.db.execute(
            select(func.count()).select_from(ReviewQueueItem).where(ReviewQueueItem.status == ReviewStatus.PENDING)
        )).scalar() or 0
        result = await self.db.execute(
            select(ReviewQueueItem)
            .where(ReviewQueueItem.status == ReviewStatus.PENDING)
            .order_by(ReviewQueueItem.created_at, ReviewQueueItem.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    def _require_pending(self, item: ReviewQueueItem):
        if item.status != ReviewStatus.PENDING:
            raise InvalidStateTransition(
                f"Review item {item.id} is already {item.status.value}",
                context={"review_item_id": item.id, "current_status": item.status.value}
            )

    async def _claim(self, item: ReviewQueueItem, target: ReviewStatus, actor: str, now: datetime):
        """Atomically move the item out of pending or raise."""
        item_id = item.id
        result = await self.db.execute(
            update(ReviewQueueItem)
            .where(ReviewQueueItem.id == item_id, ReviewQueueItem.status == ReviewStatus.PENDING)
            .values(status=target, resolved_by=actor, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise InvalidStateTransition(
                f"Review item {item_id} was already handled",
                context={"review_item_id": item_id, "target_status": target.value}
            )
        item.status = target
        item.resolved_by = actor
        item.resolved_at = now

    # --------------------------------------------------
    # Resolve
    # --------------------------------------------------

    async def resolve(
        self,
        item_id: int,
        corrections: Optional[ReviewCorrections],
        actor: str,
        ip_address: Optional[str] = None,
    ) -> ReviewQueueItem:
        """
        Accept a pending item, applying non-null corrections.

        The item's listing becomes active; when the item had no listing one
        is created from the suggested extraction plus corrections.
        A draft that was sold, deleted or expired meanwhile is refused.
        """
        corrections = corrections or ReviewCorrections()
        item = await self.get(item_id)
        self._require_pending(item)

        now = datetime.utcnow()
        await self._claim(item, ReviewStatus.RESOLVED, actor, now)

        try:
            if item.listing_id is not None:
                listing = await self.db.get(Listing, item.listing_id)
                if listing is None:
                    raise NotFoundError(
                        f"Listing {item.listing_id} referenced by review item {item.id} not found",
                        context={"entity": "listings", "entity_id": item.listing_id}
                    )
                if listing.status not in RESOLVABLE_LISTING_STATUSES:
                    raise InvalidStateTransition(
                        f"Listing {listing.id} is {listing.status.value} and cannot be activated",
                        context={"review_item_id": item.id, "listing_id": listing.id,
                                 "current_status": listing.status.value}
                    )
                before = await self.normalizer.snapshot(listing)
                await self.normalizer.apply_corrections(listing, corrections)
            else:
                before = None
                listing = await self._create_listing(item, corrections)

            listing.status = ListingStatus.ACTIVE
            listing.needs_human_review = False
            listing.reviewed_by = actor
            listing.reviewed_at = now
            await self.db.flush()

            item.resolution = ResolvedResolution(
                listing_id=listing.id,
                corrections=corrections.provided(),
            ).model_dump(mode="json")

            await self.audit.log(
                actor, "review.resolve", "review_item", item.id,
                before=before,
                after=await self.normalizer.snapshot(listing),
                ip_address=ip_address,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Review item {item.id} resolved by {actor} (listing {listing.id})")

        if self.notifier is not None:
            try:
                await self.notifier.match_and_dispatch(listing)
            except Exception as e:
                logger.error(f"Notification after resolving review item {item_id} failed: {e}")
                await self.db.rollback()
                item = await self.get(item_id)

        return item

    async def _create_listing(self, item: ReviewQueueItem, corrections: ReviewCorrections) -> Listing:
        raw = await self.db.get(RawMessage, item.raw_message_id)
        if raw is None:
            raise NotFoundError(
                f"Raw message {item.raw_message_id} not found",
                context={"entity": "raw_messages", "entity_id": item.raw_message_id}
            )

        suggestion = load_suggestion(item.suggested_values)
        extraction = suggestion.extraction if suggestion else ExtractionResult()
        index = suggestion.item_index if suggestion and suggestion.item_index is not None else 0
        extracted = extraction.items[index] if index < len(extraction.items) else ExtractedItem()

        if not (corrections.item_description or extracted.description or (raw.body or "").strip()):
            raise ValidationError(
                "An item description is required to create a listing",
                context={"review_item_id": item.id, "field_name": "item_description"}
            )

        listing = await self.normalizer.build_listing(
            raw, extracted, extraction, ListingStatus.ACTIVE, self.expiry_days
        )
        await self.normalizer.apply_corrections(listing, corrections)
        self.db.add(listing)
        await self.db.flush()
        item.listing_id = listing.id
        return listing

    # --------------------------------------------------
    # Skip
    # --------------------------------------------------

    async def skip(
        self,
        item_id: int,
        actor: str,
        note: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> ReviewQueueItem:
        """Close a pending item without touching its listing."""
        item = await self.get(item_id)
        self._require_pending(item)

        await self._claim(item, ReviewStatus.SKIPPED, actor, datetime.utcnow())
        item.resolution = SkippedResolution(note=note).model_dump(mode="json")
        await self.audit.log(
            actor, "review.skip", "review_item", item.id,
            before={"status": ReviewStatus.PENDING.value},
            after={"status": ReviewStatus.SKIPPED.value},
            ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(f"Review item {item.id} skipped by {actor}")
        return item

    # --------------------------------------------------
    # Assist
    # --------------------------------------------------

    async def assist(
        self,
        item_id: int,
        hint: str,
        actor: str,
        ip_address: Optional[str] = None,
    ) -> ReviewQueueItem:
        """
        Refine a pending item's suggestion with a reviewer hint.

        The item stays pending; its suggested values are replaced with the
        hinted extraction.
        """
        if not hint or not hint.strip():
            raise ValidationError("A hint is required", context={"field_name": "hint"})

        item = await self.get(item_id)
        self._require_pending(item)

        raw = await self.db.get(RawMessage, item.raw_message_id)
        if raw is None or not (raw.body or "").strip():
            raise ValidationError(
                "Review item has no message text to re-extract",
                context={"review_item_id": item.id}
            )

        suggestion = load_suggestion(item.suggested_values)
        if suggestion is None:
            suggestion_cls = LowConfidenceSuggestion if item.listing_id else BelowThresholdSuggestion
            suggestion = suggestion_cls(extraction=ExtractionResult())
        previous = suggestion.extraction.model_dump(mode="json", exclude={"error"})

        result = await self.engine.extract_with_hint(raw.body, previous, hint)
        if result.is_failure:
            raise ExternalServiceError(
                "Assisted extraction failed; suggestion left unchanged",
                context={"review_item_id": item.id, "error": result.error}
            )

        refined = suggestion.model_copy(update={"extraction": result, "hint": hint.strip()})
        item.suggested_values = dump_suggestion(refined)

        await self.audit.log(
            actor, "review.assist", "review_item", item.id,
            before=previous,
            after=result.model_dump(mode="json", exclude={"error"}),
            ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(
            f"Review item {item.id} refined by {actor}: intent={result.intent.value} "
            f"confidence={result.confidence:.2f}"
        )
        return item
