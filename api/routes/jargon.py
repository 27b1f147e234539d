"""
Jargon dictionary endpoints
"""

from typing import Optional
from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_actor, get_client_ip, get_context, get_db, get_request_id
from ingestion.context import PipelineContext
from schemas.api import (
    JargonCreateRequest,
    JargonEntryResponse,
    JargonVerifyRequest,
    PaginatedResponse,
    build_pagination,
)

router = APIRouter(prefix="/jargon", tags=["Jargon"])


@router.get("", response_model=PaginatedResponse[JargonEntryResponse])
async def list_jargon(
    request: Request,
    verified: Optional[bool] = Query(None, description="Filter by verification state"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Dictionary entries, most used first"""
    entries, total = await context.jargon(db).list(verified=verified, page=page, page_size=page_size)
    return PaginatedResponse[JargonEntryResponse](
        data=[JargonEntryResponse.model_validate(entry) for entry in entries],
        pagination=build_pagination(page, page_size, total),
        request_id=get_request_id(request),
    )


@router.post("", response_model=JargonEntryResponse, status_code=201)
async def create_jargon(
    payload: JargonCreateRequest,
    request: Request,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Add a curated entry; it is verified immediately"""
    entry = await context.jargon(db).create(
        payload.acronym,
        payload.expansion,
        actor=actor,
        industry=payload.industry,
        ip_address=get_client_ip(request),
    )
    return JargonEntryResponse.model_validate(entry)


@router.post("/{entry_id}/verify", response_model=JargonEntryResponse)
async def verify_jargon(
    entry_id: int,
    request: Request,
    payload: Optional[JargonVerifyRequest] = Body(None),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    expansion = payload.expansion if payload else None
    entry = await context.jargon(db).verify(
        entry_id, actor=actor, expansion=expansion, ip_address=get_client_ip(request)
    )
    return JargonEntryResponse.model_validate(entry)
