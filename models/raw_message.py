from sqlalchemy import Column, String, BigInteger, Text, DateTime, ForeignKey, Boolean, Index
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class Conversation(Base):
    """
    Chat or group a message was posted in.

    Resolved-or-created by the archive on first sight of its external id.
    """
    __tablename__ = "conversations"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    external_id = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class RawMessage(Base):
    """
    Archived inbound chat message.

    Purpose:
    - Immutable record of what was received
    - Durable outbox: rows with processed=False are still owed a pipeline run
    - Source text for assisted re-extraction

    Only processed, processed_at, processing_error, media_local_path and
    embedding change after insert.
    """
    __tablename__ = "raw_messages"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    external_id = Column(String(255), nullable=False, unique=True)

    conversation_id = Column(BigInteger, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(String(100), nullable=True, index=True)
    sender_name = Column(String(255), nullable=True)

    body = Column(Text, nullable=True)
    message_type = Column(String(20), nullable=False, default="text")
    media_url = Column(Text, nullable=True)
    media_mime_type = Column(String(100), nullable=True)
    media_local_path = Column(String(500), nullable=True)
    quoted_external_id = Column(String(255), nullable=True, index=True)
    forwarded = Column(Boolean, nullable=False, default=False)

    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Processing tracking
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    processing_error = Column(Text, nullable=True)

    embedding = Column(JSONType, nullable=True)
    raw_payload = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_raw_messages_unprocessed", "processed", "received_at"),
        Index("idx_raw_messages_conversation_sent", "conversation_id", "sent_at"),
    )
