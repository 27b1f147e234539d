"""
Pydantic schemas for data validation and serialization.

Schemas:
    inbound: Normalized webhook message record
    extraction: Structured extraction result returned by the language model
    review: Tagged suggested-values and resolution records for the review queue
    api: API endpoint request/response schemas

Usage:
    from schemas.inbound import InboundMessage
    from schemas.extraction import ExtractionResult, ExtractedItem
    from schemas.review import load_suggestion, ReviewCorrections
"""

__all__ = [
    "InboundMessage",
    "WebhookPayload",
    "ExtractionResult",
    "ExtractedItem",
    "SuggestedValues",
    "Resolution",
    "ReviewCorrections",
    "ListingResponse",
    "ReviewItemResponse",
    "HealthCheckResponse",
    "StatsResponse",
]
