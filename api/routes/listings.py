"""
Listing retrieval, cross-post lookup, assisted retry and soft delete
"""

import logging
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_actor, get_client_ip, get_context, get_db, get_request_id
from ingestion.context import PipelineContext
from models.base import Intent, ListingStatus
from models.listing import Listing
from schemas.api import (
    ListingQueryParams,
    ListingResponse,
    PaginatedResponse,
    RetryExtractionRequest,
    build_pagination,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/listings", tags=["Listings"])


async def to_responses(db: AsyncSession, context: PipelineContext, listings: List[Listing]) -> List[ListingResponse]:
    counts = await context.crossposts(db).count_cross_posts(listings)
    responses = []
    for listing in listings:
        response = ListingResponse.model_validate(listing)
        response.cross_post_count = counts.get(listing.id, 0)
        responses.append(response)
    return responses


@router.get("", response_model=PaginatedResponse[ListingResponse])
async def list_listings(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    intent: Optional[Intent] = Query(None, description="Filter by intent"),
    status: Optional[ListingStatus] = Query(None, description="Filter by status"),
    category_id: Optional[int] = Query(None, description="Filter by category"),
    manufacturer_id: Optional[int] = Query(None, description="Filter by manufacturer"),
    part_number: Optional[str] = Query(None, description="Filter by part number"),
    search: Optional[str] = Query(None, description="Search in description and part number"),
    sort_order: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$", description="Sort by creation time: asc or desc"),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """
    Retrieve paginated and filtered listings.

    Each listing carries the number of cross-posts found for it.
    """
    request_id = get_request_id(request)
    params = ListingQueryParams(
        page=page,
        page_size=page_size,
        intent=intent,
        status=status,
        category_id=category_id,
        manufacturer_id=manufacturer_id,
        part_number=part_number,
        search=search,
        sort_order=sort_order,
    )
    logger.info(
        f"[{request_id}] GET /listings - page={page}, page_size={page_size}, "
        f"filters: intent={intent}, status={status}, search={search}"
    )

    items, total = await context.listings(db).search(params)
    return PaginatedResponse[ListingResponse](
        data=await to_responses(db, context, items),
        pagination=build_pagination(page, page_size, total),
        request_id=request_id,
    )


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    listing = await context.listings(db).get(listing_id)
    return (await to_responses(db, context, [listing]))[0]


@router.get("/{listing_id}/cross-posts", response_model=List[ListingResponse])
async def get_cross_posts(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Listings from other messages sharing this listing's sender, part number and price"""
    matches = await context.crossposts(db).find_cross_posts(listing_id)
    return await to_responses(db, context, matches)


@router.post("/{listing_id}/retry", response_model=ListingResponse)
async def retry_extraction(
    listing_id: int,
    request: Request,
    payload: Optional[RetryExtractionRequest] = Body(None),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Re-run extraction for a listing, optionally guided by a hint"""
    hint = payload.hint if payload else None
    listing = await context.listings(db).retry_extraction(
        listing_id, hint, actor=actor, ip_address=get_client_ip(request)
    )
    return (await to_responses(db, context, [listing]))[0]


@router.delete("/{listing_id}", response_model=ListingResponse)
async def delete_listing(
    listing_id: int,
    request: Request,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
):
    """Soft delete: the row stays with status deleted"""
    listing = await context.listings(db).soft_delete(
        listing_id, actor=actor, ip_address=get_client_ip(request)
    )
    return (await to_responses(db, context, [listing]))[0]
