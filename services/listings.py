"""
Listing maintenance: lookup, search, assisted retry, soft delete, expiry
and sold tracking.
"""

import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ExternalServiceError, NotFoundError, ValidationError
from ingestion.extractors.llm_extractor import ExtractionEngine
from ingestion.transformers.normalizer import ListingNormalizer
from models.base import Intent, ListingStatus, ReviewStatus
from models.listing import Listing
from models.raw_message import RawMessage
from models.review import ReviewQueueItem
from schemas.api import ListingQueryParams
from schemas.review import SkippedResolution
from services.audit import AuditService

logger = logging.getLogger(__name__)

SOLD_REPLY_RE = re.compile(r"^\s*sold[.!]*\s*$", re.IGNORECASE)


def is_sold_reply(raw: RawMessage) -> bool:
    return bool(raw.quoted_external_id) and bool(SOLD_REPLY_RE.match(raw.body or ""))


class ListingService:
    def __init__(
        self,
        db_session: AsyncSession,
        normalizer: ListingNormalizer,
        engine: Optional[ExtractionEngine] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db_session
        self.normalizer = normalizer
        self.engine = engine
        self.audit = audit or AuditService(db_session)

    async def get(self, listing_id: int) -> Listing:
        listing = await self.db.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError(
                f"Listing {listing_id} not found",
                context={"entity": "listings", "entity_id": listing_id}
            )
        return listing

    async def search(self, params: ListingQueryParams) -> Tuple[List[Listing], int]:
        filters = [Listing.deleted_at.is_(None)]
        if params.intent:
            filters.append(Listing.intent == params.intent)
        if params.status:
            filters.append(Listing.status == params.status)
        if params.category_id:
            filters.append(Listing.category_id == params.category_id)
        if params.manufacturer_id:
            filters.append(Listing.manufacturer_id == params.manufacturer_id)
        if params.part_number:
            filters.append(func.lower(Listing.part_number) == params.part_number.lower())
        if params.search:
            pattern = f"%{params.search.lower()}%"
            filters.append(or_(
                func.lower(Listing.item_description).like(pattern),
                func.lower(Listing.part_number).like(pattern),
            ))

        total = (await self.db.execute(
            select(func.count()).select_from(Listing).where(*filters)
        )).scalar() or 0

        order = Listing.created_at.asc() if params.sort_order == "asc" else Listing.created_at.desc()
        result = await self.db.execute(
            select(Listing)
            .where(*filters)
            .order_by(order, Listing.id)
            .offset((params.page - 1) * params.page_size)
            .limit(params.page_size)
        )
        return list(result.scalars().all()), total

    async def retry_extraction(
        self,
        listing_id: int,
        hint: Optional[str],
        actor: str,
        ip_address: Optional[str] = None,
    ) -> Listing:
        """
        Re-run extraction for an existing listing.

        Only fields the new extraction returned are overwritten: item fields
        that are non-null (and resolve, for references), intent when it is
        not unknown, confidence when items came back. Identity and the raw
        message link never change.
        """
        listing = await self.get(listing_id)
        text = listing.original_text
        if not text or not text.strip():
            raise ValidationError(
                "Listing has no original text to re-extract",
                context={"listing_id": listing_id}
            )

        before = await self.normalizer.snapshot(listing)
        if hint and hint.strip():
            result = await self.engine.extract_with_hint(text, before, hint)
        else:
            result = await self.engine.extract(text)

        if result.is_failure:
            raise ExternalServiceError(
                "Re-extraction failed; listing left unchanged",
                context={"listing_id": listing_id, "error": result.error}
            )

        changes = {}
        if result.items:
            changes.update(await self.normalizer.apply_item(listing, result.items[0]))
            listing.confidence_score = result.confidence
            changes["confidence_score"] = result.confidence
        if result.intent != Intent.UNKNOWN:
            listing.intent = result.intent
            changes["intent"] = result.intent.value

        await self.normalizer.refresh_price(listing)
        after = await self.normalizer.snapshot(listing)

        await self.audit.log(
            actor, "listing.retry_extraction", "listing", listing.id,
            before=before, after=after, ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(f"Listing {listing.id} re-extracted by {actor}; changed {sorted(changes)}")
        return listing

    async def soft_delete(self, listing_id: int, actor: str, ip_address: Optional[str] = None) -> Listing:
        listing = await self.get(listing_id)
        if listing.status == ListingStatus.DELETED:
            return listing

        previous = listing.status.value
        listing.status = ListingStatus.DELETED
        listing.deleted_at = datetime.utcnow()
        listing.deleted_by = actor
        await self._close_pending_reviews([listing.id], actor, "Listing deleted", listing.deleted_at)

        await self.audit.log(
            actor, "listing.delete", "listing", listing.id,
            before={"status": previous}, after={"status": ListingStatus.DELETED.value},
            ip_address=ip_address,
        )
        await self.db.commit()
        logger.info(f"Listing {listing.id} soft-deleted by {actor}")
        return listing

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Move active listings past expires_at to expired."""
        now = now or datetime.utcnow()
        result = await self.db.execute(
            update(Listing)
            .where(
                Listing.status == ListingStatus.ACTIVE,
                Listing.expires_at.is_not(None),
                Listing.expires_at < now,
            )
            .values(status=ListingStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} listing(s)")
        return result.rowcount or 0

    async def mark_sold_from_reply(self, reply: RawMessage) -> List[Listing]:
        """
        Mark listings from the quoted message as sold.

        Only active or pending_review listings are affected. The replier is
        recorded as buyer when they are not the original sender.
        """
        result = await self.db.execute(
            select(RawMessage).where(RawMessage.external_id == reply.quoted_external_id)
        )
        original = result.scalars().first()
        if original is None:
            logger.info(f"Sold reply {reply.id} quotes unknown message {reply.quoted_external_id}")
            return []

        result = await self.db.execute(
            select(Listing).where(
                Listing.raw_message_id == original.id,
                Listing.status.in_([ListingStatus.ACTIVE, ListingStatus.PENDING_REVIEW]),
            )
        )
        listings = list(result.scalars().all())
        now = datetime.utcnow()
        for listing in listings:
            listing.status = ListingStatus.SOLD
            listing.sold_at = now
            listing.sold_message_id = reply.id
            if reply.sender_id and reply.sender_id != original.sender_id:
                listing.buyer_name = reply.sender_name or reply.sender_id

        if listings:
            await self._close_pending_reviews(
                [listing.id for listing in listings], "system", f"Listing sold (reply {reply.id})", now
            )
            logger.info(f"Marked {len(listings)} listing(s) sold from reply {reply.id}")
        return listings

    async def _close_pending_reviews(self, listing_ids: List[int], actor: str, note: str, now: datetime) -> int:
        """Skip pending review items whose listing has left the review lifecycle."""
        result = await self.db.execute(
            update(ReviewQueueItem)
            .where(
                ReviewQueueItem.listing_id.in_(listing_ids),
                ReviewQueueItem.status == ReviewStatus.PENDING,
            )
            .values(
                status=ReviewStatus.SKIPPED,
                resolved_by=actor,
                resolved_at=now,
                resolution=SkippedResolution(note=note).model_dump(mode="json"),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount:
            logger.info(f"Closed {result.rowcount} pending review item(s): {note}")
        return result.rowcount or 0
