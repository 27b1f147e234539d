"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime
from models.base import Intent, ListingStatus, ReviewStatus, ReviewReason, JargonSource, NotifyChannel

T = TypeVar("T")


# ============================================================================
# Pagination
# ============================================================================

class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool


class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    pagination: PaginationMeta
    request_id: Optional[str] = None


def build_pagination(page: int, page_size: int, total_items: int) -> PaginationMeta:
    total_pages = (total_items + page_size - 1) // page_size if total_items else 0
    return PaginationMeta(
        page=page,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_previous=page > 1,
    )


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    workers_running: bool = False
    queue_depth: int = 0
    unprocessed_messages: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    # Declared last so the validator sees the fields above
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"
        if not values.get("workers_running", False):
            return "degraded"
        return "healthy"


# ============================================================================
# Listing Schemas
# ============================================================================

class ListingQueryParams(BaseModel):
    """Query parameters for the listings endpoint"""
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=500)
    intent: Optional[Intent] = None
    status: Optional[ListingStatus] = None
    category_id: Optional[int] = None
    manufacturer_id: Optional[int] = None
    part_number: Optional[str] = None
    search: Optional[str] = Field(None, description="Search in description and part number")
    sort_order: str = Field(default="desc")

    @validator("sort_order")
    def validate_sort_order(cls, v):
        if v.lower() not in ["asc", "desc"]:
            raise ValueError("sort_order must be 'asc' or 'desc'")
        return v.lower()


class ListingResponse(BaseModel):
    id: int
    raw_message_id: int
    conversation_id: Optional[int] = None
    intent: Intent
    confidence_score: float
    item_description: str
    category_id: Optional[int] = None
    manufacturer_id: Optional[int] = None
    unit_id: Optional[int] = None
    condition_id: Optional[int] = None
    part_number: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    price_currency: Optional[str] = None
    exchange_rate_to_usd: Optional[float] = None
    price_usd: Optional[float] = None
    sender_name: Optional[str] = None
    sender_phone: Optional[str] = None
    status: ListingStatus
    needs_human_review: bool
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    sold_at: Optional[datetime] = None
    created_at: datetime
    cross_post_count: int = 0

    class Config:
        from_attributes = True


class RetryExtractionRequest(BaseModel):
    hint: Optional[str] = Field(None, description="Natural-language correction for the extractor")


# ============================================================================
# Review Queue Schemas
# ============================================================================

class ReviewItemResponse(BaseModel):
    id: int
    raw_message_id: int
    listing_id: Optional[int] = None
    reason: ReviewReason
    llm_explanation: str
    suggested_values: Optional[Dict[str, Any]] = None
    status: ReviewStatus
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[Dict[str, Any]] = None
    created_at: datetime
    original_text: Optional[str] = None

    class Config:
        from_attributes = True


class AssistRequest(BaseModel):
    hint: str = Field(..., min_length=1)


class SkipRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


# ============================================================================
# Jargon Schemas
# ============================================================================

class JargonEntryResponse(BaseModel):
    id: int
    acronym: str
    expansion: str
    industry: Optional[str] = None
    source: JargonSource
    confidence: float
    usage_count: int
    verified: bool
    created_at: datetime

    class Config:
        from_attributes = True


class JargonCreateRequest(BaseModel):
    acronym: str = Field(..., min_length=1, max_length=50)
    expansion: str = Field(..., min_length=1, max_length=255)
    industry: Optional[str] = None


class JargonVerifyRequest(BaseModel):
    expansion: Optional[str] = Field(None, description="Corrected expansion to store on verify")


# ============================================================================
# Notification Rule Schemas
# ============================================================================

class NotificationRuleCreate(BaseModel):
    rule_text: str = Field(..., min_length=3)
    notify_channel: NotifyChannel = NotifyChannel.LOG
    notify_target: Optional[str] = None


class NotificationRuleUpdate(BaseModel):
    is_active: bool


class NotificationRuleResponse(BaseModel):
    id: int
    owner: str
    rule_text: str
    parsed_intent: Optional[Intent] = None
    parsed_keywords: Optional[List[str]] = None
    parsed_category_ids: Optional[List[int]] = None
    parsed_price_min: Optional[float] = None
    parsed_price_max: Optional[float] = None
    notify_channel: NotifyChannel
    notify_target: Optional[str] = None
    is_active: bool
    last_triggered: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# Statistics Schemas
# ============================================================================

class StatsResponse(BaseModel):
    timestamp: datetime
    total_messages: int
    unprocessed_messages: int
    failed_messages: int
    listings_by_status: Dict[str, int]
    listings_by_intent: Dict[str, int]
    pending_reviews: int
    unverified_jargon: int
    active_rules: int
    request_id: Optional[str] = None
