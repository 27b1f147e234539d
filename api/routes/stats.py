"""
Pipeline statistics endpoint
"""
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from api.dependencies import get_db, get_request_id
from schemas.api import StatsResponse
from models.base import ReviewStatus
from models.jargon import JargonEntry
from models.listing import Listing
from models.notification import NotificationRule
from models.raw_message import RawMessage
from models.review import ReviewQueueItem
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


async def count(db: AsyncSession, model, *filters) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*filters))
    return result.scalar() or 0


@router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Get pipeline statistics.

    Returns:
    - Message totals, including unprocessed and failed
    - Listing counts by status and intent
    - Pending reviews, unverified jargon and active rules
    """
    request_id = get_request_id(request)

    logger.info(f"[{request_id}] GET /stats")

    # ========== Messages ==========

    total_messages = await count(db, RawMessage)
    unprocessed = await count(db, RawMessage, RawMessage.processed.is_(False))
    failed = await count(
        db, RawMessage, RawMessage.processed.is_(True), RawMessage.processing_error.isnot(None)
    )

    # ========== Listings ==========

    by_status = await db.execute(
        select(Listing.status, func.count()).group_by(Listing.status)
    )
    listings_by_status = {status.value: n for status, n in by_status.all()}

    by_intent = await db.execute(
        select(Listing.intent, func.count()).group_by(Listing.intent)
    )
    listings_by_intent = {intent.value: n for intent, n in by_intent.all()}

    # ========== Curation ==========

    pending_reviews = await count(db, ReviewQueueItem, ReviewQueueItem.status == ReviewStatus.PENDING)
    unverified_jargon = await count(db, JargonEntry, JargonEntry.verified.is_(False))
    active_rules = await count(db, NotificationRule, NotificationRule.is_active.is_(True))

    logger.info(
        f"[{request_id}] Stats: {total_messages} messages, {unprocessed} unprocessed, "
        f"{pending_reviews} pending reviews"
    )

    return StatsResponse(
        timestamp=datetime.utcnow(),
        total_messages=total_messages,
        unprocessed_messages=unprocessed,
        failed_messages=failed,
        listings_by_status=listings_by_status,
        listings_by_intent=listings_by_intent,
        pending_reviews=pending_reviews,
        unverified_jargon=unverified_jargon,
        active_rules=active_rules,
        request_id=request_id
    )
