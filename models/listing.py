from sqlalchemy import (
    Column, String, BigInteger, Text, DateTime, ForeignKey, Boolean,
    Float, Enum, Index, CheckConstraint
)
from datetime import datetime
from models.base import Base, BigIntPK, Intent, ListingStatus


class Listing(Base):
    """
    Structured trade listing extracted from one raw message.

    Created by the confidence router or by review resolution. Never
    physically deleted: soft delete sets status=deleted and deleted_at/by.
    """
    __tablename__ = "listings"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # Provenance
    raw_message_id = Column(BigInteger, ForeignKey("raw_messages.id"), nullable=False, index=True)
    conversation_id = Column(BigInteger, ForeignKey("conversations.id"), nullable=True, index=True)

    # Extraction
    intent = Column(Enum(Intent, name="listing_intent"), nullable=False, default=Intent.UNKNOWN)
    confidence_score = Column(Float, nullable=False, default=0.0)
    item_description = Column(Text, nullable=False)

    # Normalized references
    category_id = Column(BigInteger, ForeignKey("categories.id"), nullable=True, index=True)
    manufacturer_id = Column(BigInteger, ForeignKey("manufacturers.id"), nullable=True, index=True)
    unit_id = Column(BigInteger, ForeignKey("units.id"), nullable=True)
    condition_id = Column(BigInteger, ForeignKey("conditions.id"), nullable=True)

    part_number = Column(String(120), nullable=True, index=True)
    quantity = Column(Float, nullable=True)
    price = Column(Float, nullable=True)
    price_currency = Column(String(3), nullable=True)
    exchange_rate_to_usd = Column(Float, nullable=True)
    price_usd = Column(Float, nullable=True)

    # Denormalized sender info for cross-post detection
    original_text = Column(Text, nullable=True)
    sender_name = Column(String(255), nullable=True)
    sender_phone = Column(String(100), nullable=True)

    # Lifecycle
    status = Column(Enum(ListingStatus, name="listing_status"), nullable=False, default=ListingStatus.ACTIVE, index=True)
    needs_human_review = Column(Boolean, nullable=False, default=False)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(String(255), nullable=True)

    sold_at = Column(DateTime, nullable=True)
    sold_message_id = Column(BigInteger, ForeignKey("raw_messages.id"), nullable=True)
    buyer_name = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_listings_confidence_range"
        ),
        Index("idx_listings_crosspost", "part_number", "price"),
        Index("idx_listings_status_expires", "status", "expires_at"),
    )
