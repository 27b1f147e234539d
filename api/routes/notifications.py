"""
Notification rule endpoints
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_actor, get_context, get_db, get_request_id
from ingestion.context import PipelineContext
from schemas.api import (
    NotificationRuleCreate,
    NotificationRuleResponse,
    NotificationRuleUpdate,
    PaginatedResponse,
    build_pagination,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications/rules", tags=["Notifications"])


@router.get("", response_model=PaginatedResponse[NotificationRuleResponse])
async def list_rules(
    request: Request,
    owner: Optional[str] = Query(None, description="Filter by rule owner"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    rules, total = await context.rules(db).list(owner=owner, page=page, page_size=page_size)
    return PaginatedResponse[NotificationRuleResponse](
        data=[NotificationRuleResponse.model_validate(rule) for rule in rules],
        pagination=build_pagination(page, page_size, total),
        request_id=get_request_id(request),
    )


@router.post("", response_model=NotificationRuleResponse, status_code=201)
async def create_rule(
    payload: NotificationRuleCreate,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """
    Store a plain-language rule such as "want SS pipe under $15".

    The text is parsed once into intent, keywords, categories and price
    bounds; matching later uses only the parsed fields.
    """
    rule = await context.rules(db).create(
        owner=actor,
        rule_text=payload.rule_text,
        notify_channel=payload.notify_channel,
        notify_target=payload.notify_target,
    )
    return NotificationRuleResponse.model_validate(rule)


@router.patch("/{rule_id}", response_model=NotificationRuleResponse)
async def update_rule(
    rule_id: int,
    payload: NotificationRuleUpdate,
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    rule = await context.rules(db).set_active(rule_id, payload.is_active)
    return NotificationRuleResponse.model_validate(rule)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: int,
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    await context.rules(db).delete(rule_id)
    return Response(status_code=204)
