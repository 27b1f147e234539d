"""
Cross-post detection: the same offer posted from different messages.

Two listings are cross-posts when they come from different raw messages,
share a part number (case-insensitive) and price, and share the sender name
or sender phone. Read-only; never suppresses notifications.
"""

from typing import Dict, List
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import NotFoundError
from models.base import ListingStatus
from models.listing import Listing
import logging

logger = logging.getLogger(__name__)


class CrossPostDetector:
    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    def _signature_query(self, listing: Listing):
        sender_clauses = []
        if listing.sender_name:
            sender_clauses.append(Listing.sender_name == listing.sender_name)
        if listing.sender_phone:
            sender_clauses.append(Listing.sender_phone == listing.sender_phone)
        if not listing.part_number or not sender_clauses:
            return None

        price_clause = Listing.price.is_(None) if listing.price is None else Listing.price == listing.price

        return (
            select(Listing)
            .where(
                Listing.id != listing.id,
                Listing.raw_message_id != listing.raw_message_id,
                Listing.deleted_at.is_(None),
                Listing.status != ListingStatus.DELETED,
                func.lower(Listing.part_number) == listing.part_number.lower(),
                price_clause,
                or_(*sender_clauses),
            )
            .order_by(Listing.created_at.desc(), Listing.id.desc())
        )

    async def find_cross_posts(self, listing_id: int) -> List[Listing]:
        listing = await self.db.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError(
                f"Listing {listing_id} not found",
                context={"entity": "listings", "entity_id": listing_id}
            )

        query = self._signature_query(listing)
        if query is None:
            return []
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_cross_posts(self, listings: List[Listing]) -> Dict[int, int]:
        """Cross-post counts for a page of listings."""
        counts = {}
        for listing in listings:
            query = self._signature_query(listing)
            if query is None:
                counts[listing.id] = 0
                continue
            result = await self.db.execute(
                select(func.count()).select_from(query.order_by(None).subquery())
            )
            counts[listing.id] = result.scalar() or 0
        return counts
