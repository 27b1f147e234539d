"""
Review queue endpoints
"""

import logging
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_actor, get_client_ip, get_context, get_db, get_request_id
from ingestion.context import PipelineContext
from models.raw_message import RawMessage
from models.review import ReviewQueueItem
from schemas.api import (
    AssistRequest,
    PaginatedResponse,
    ReviewItemResponse,
    SkipRequest,
    build_pagination,
)
from schemas.review import ReviewCorrections

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/review", tags=["Review"])


async def to_responses(db: AsyncSession, items: List[ReviewQueueItem]) -> List[ReviewItemResponse]:
    """Attach the original message text so reviewers see what was extracted"""
    message_ids = {item.raw_message_id for item in items}
    bodies = {}
    if message_ids:
        result = await db.execute(
            select(RawMessage.id, RawMessage.body).where(RawMessage.id.in_(message_ids))
        )
        bodies = {row.id: row.body for row in result}

    responses = []
    for item in items:
        response = ReviewItemResponse.model_validate(item)
        response.original_text = bodies.get(item.raw_message_id)
        responses.append(response)
    return responses


@router.get("", response_model=PaginatedResponse[ReviewItemResponse])
async def list_pending(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Pending review items, oldest first"""
    items, total = await context.review(db).list_pending(page=page, page_size=page_size)
    return PaginatedResponse[ReviewItemResponse](
        data=await to_responses(db, items),
        pagination=build_pagination(page, page_size, total),
        request_id=get_request_id(request),
    )


@router.get("/{item_id}", response_model=ReviewItemResponse)
async def get_review_item(
    item_id: int,
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    item = await context.review(db).get(item_id)
    return (await to_responses(db, [item]))[0]


@router.post("/{item_id}/resolve", response_model=ReviewItemResponse)
async def resolve_item(
    item_id: int,
    request: Request,
    corrections: Optional[ReviewCorrections] = Body(None),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Accept the item, applying any non-null corrections to its listing"""
    item = await context.review(db).resolve(
        item_id, corrections, actor=actor, ip_address=get_client_ip(request)
    )
    return (await to_responses(db, [item]))[0]


@router.post("/{item_id}/skip", response_model=ReviewItemResponse)
async def skip_item(
    item_id: int,
    request: Request,
    payload: Optional[SkipRequest] = Body(None),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    note = payload.note if payload else None
    item = await context.review(db).skip(
        item_id, actor=actor, note=note, ip_address=get_client_ip(request)
    )
    return (await to_responses(db, [item]))[0]


@router.post("/{item_id}/assist", response_model=ReviewItemResponse)
async def assist_item(
    item_id: int,
    payload: AssistRequest,
    request: Request,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Re-extract the item's message with a reviewer hint; the item stays pending"""
    item = await context.review(db).assist(
        item_id, payload.hint, actor=actor, ip_address=get_client_ip(request)
    )
    return (await to_responses(db, [item]))[0]
