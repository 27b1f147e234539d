"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base, portable column types and shared enums
    raw_message: Conversations and archived inbound messages
    listing: Structured trade listings
    review: Human review queue
    reference: Categories, manufacturers, units, conditions
    jargon: Learned and curated trade jargon
    notification: Natural-language alert rules
    audit: Append-only audit trail

Database Schema:
    All models inherit from Base. JSON columns use JSONB on PostgreSQL and
    plain JSON elsewhere so the same metadata runs under SQLite in tests.
    Relations are plain foreign-key columns; services load related rows
    with explicit selects.

Usage:
    from models import RawMessage, Listing, ReviewQueueItem
    from models.base import Intent, ListingStatus, ReviewStatus
"""

from models.base import (
    Base,
    Intent,
    ListingStatus,
    ReviewStatus,
    ReviewReason,
    JargonSource,
    NotifyChannel,
)
from models.raw_message import Conversation, RawMessage
from models.reference import Category, Manufacturer, Unit, Condition
from models.listing import Listing
from models.review import ReviewQueueItem
from models.jargon import JargonEntry
from models.notification import NotificationRule
from models.audit import AuditLogEntry

__all__ = [
    "Base",
    "Intent",
    "ListingStatus",
    "ReviewStatus",
    "ReviewReason",
    "JargonSource",
    "NotifyChannel",
    "Conversation",
    "RawMessage",
    "Category",
    "Manufacturer",
    "Unit",
    "Condition",
    "Listing",
    "ReviewQueueItem",
    "JargonEntry",
    "NotificationRule",
    "AuditLogEntry",
]
