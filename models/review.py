from sqlalchemy import Column, String, BigInteger, Text, DateTime, ForeignKey, Enum, Index
from datetime import datetime
from models.base import Base, BigIntPK, JSONType, ReviewStatus, ReviewReason


class ReviewQueueItem(Base):
    """
    Human review task for a medium or low confidence extraction.

    listing_id is null when the extraction fell below the review threshold.
    suggested_values and resolution hold tagged records from
    ``schemas.review``; status moves pending -> resolved|skipped once.
    """
    __tablename__ = "review_queue"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    raw_message_id = Column(BigInteger, ForeignKey("raw_messages.id"), nullable=False, index=True)
    listing_id = Column(BigInteger, ForeignKey("listings.id"), nullable=True, index=True)

    reason = Column(Enum(ReviewReason, name="review_reason"), nullable=False)
    llm_explanation = Column(Text, nullable=False)
    suggested_values = Column(JSONType, nullable=True)

    status = Column(Enum(ReviewStatus, name="review_status"), nullable=False, default=ReviewStatus.PENDING)
    resolved_by = Column(String(255), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_review_queue_status_created", "status", "created_at"),
    )
