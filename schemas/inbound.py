"""
Normalized inbound-message record handed to the archive by the webhook.
"""

from pydantic import BaseModel, Field
from typing import Optional, List


class InboundMessage(BaseModel):
    """One chat message as delivered by the messaging provider"""
    external_id: str = Field(..., alias="externalId")
    conversation_external_id: str = Field(..., alias="conversationExternalId")
    conversation_name: Optional[str] = Field(None, alias="conversationName")
    sender_id: Optional[str] = Field(None, alias="senderId")
    sender_name: Optional[str] = Field(None, alias="senderName")
    body: Optional[str] = None
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    media_mime_type: Optional[str] = Field(None, alias="mediaMimeType")
    quoted_external_id: Optional[str] = Field(None, alias="quotedExternalId")
    sent_at_epoch_seconds: Optional[int] = Field(None, alias="sentAtEpochSeconds")
    forwarded: bool = False

    class Config:
        populate_by_name = True


class WebhookPayload(BaseModel):
    """Batch of inbound messages"""
    messages: List[InboundMessage] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    received: int
    archived: int
    duplicates: int
    request_id: Optional[str] = None
