"""
Message archive: idempotent persistence of inbound messages.

The external id is the idempotency key. A repeat delivery, or the loser of
a concurrent insert race, is reported as "already archived" and never as
an error. First-time archival commits, fetches media best-effort and then
hands the message id to the pipeline.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DuplicateError, MediaDownloadError, ValidationError
from ingestion.media import MediaDownloader
from models.raw_message import Conversation, RawMessage
from schemas.inbound import InboundMessage

logger = logging.getLogger(__name__)


@dataclass
class ArchiveResult:
    raw_message: RawMessage
    created: bool

    @property
    def status(self) -> str:
        return "archived" if self.created else "already_archived"


def message_type_for(mime_type: Optional[str], media_url: Optional[str]) -> str:
    if not media_url:
        return "text"
    prefix = (mime_type or "").split("/")[0].lower()
    if prefix in ("image", "video", "audio"):
        return prefix
    return "document"


class MessageArchive:
    def __init__(
        self,
        db_session: AsyncSession,
        media_downloader: Optional[MediaDownloader] = None,
        pipeline=None,
    ):
        self.db = db_session
        self.media_downloader = media_downloader
        self.pipeline = pipeline

    async def _find_existing(self, external_id: str) -> Optional[RawMessage]:
        result = await self.db.execute(
            select(RawMessage).where(RawMessage.external_id == external_id)
        )
        return result.scalars().first()

    async def _resolve_conversation(self, record: InboundMessage) -> Conversation:
        result = await self.db.execute(
            select(Conversation).where(Conversation.external_id == record.conversation_external_id)
        )
        conversation = result.scalars().first()
        if conversation is None:
            conversation = Conversation(
                external_id=record.conversation_external_id,
                name=record.conversation_name,
            )
            self.db.add(conversation)
            await self.db.flush()
            logger.info(f"Registered conversation {record.conversation_external_id}")
        return conversation

    def _build_message(self, record: InboundMessage, conversation_id: int) -> RawMessage:
        sent_at = (
            datetime.utcfromtimestamp(record.sent_at_epoch_seconds)
            if record.sent_at_epoch_seconds
            else datetime.utcnow()
        )
        return RawMessage(
            external_id=record.external_id,
            conversation_id=conversation_id,
            sender_id=record.sender_id,
            sender_name=record.sender_name,
            body=record.body,
            message_type=message_type_for(record.media_mime_type, record.media_url),
            media_url=record.media_url,
            media_mime_type=record.media_mime_type,
            quoted_external_id=record.quoted_external_id,
            forwarded=record.forwarded,
            sent_at=sent_at,
            received_at=datetime.utcnow(),
            processed=False,
            raw_payload=record.model_dump(mode="json", by_alias=True),
        )

    async def archive(self, record: InboundMessage) -> ArchiveResult:
        """
        Persist ``record`` once.

        Raises:
            ValidationError: externalId or conversationExternalId is blank
        """
        if not (record.external_id or "").strip():
            raise ValidationError("externalId is required", context={"field_name": "externalId"})
        if not (record.conversation_external_id or "").strip():
            raise ValidationError(
                "conversationExternalId is required",
                context={"field_name": "conversationExternalId", "external_id": record.external_id}
            )

        existing = await self._find_existing(record.external_id)
        if existing is not None:
            logger.info(f"Message {record.external_id} already archived")
            return ArchiveResult(raw_message=existing, created=False)

        raw = None
        # Second attempt covers losing a race on conversation creation
        for attempt in range(2):
            try:
                conversation = await self._resolve_conversation(record)
                raw = self._build_message(record, conversation.id)
                self.db.add(raw)
                await self.db.commit()
                break
            except IntegrityError as e:
                await self.db.rollback()
                existing = await self._find_existing(record.external_id)
                if existing is not None:
                    logger.info(f"Message {record.external_id} archived concurrently; treating as duplicate")
                    return ArchiveResult(raw_message=existing, created=False)
                if attempt == 1:
                    raise DuplicateError(
                        "Could not archive message after constraint conflict",
                        context={"external_id": record.external_id},
                        original_exception=e
                    )

        logger.info(f"Archived message {raw.external_id} as id={raw.id}")

        if raw.media_url and self.media_downloader is not None:
            await self._download_media(raw)

        if self.pipeline is not None:
            self.pipeline.submit(raw.id)

        return ArchiveResult(raw_message=raw, created=True)

    async def _download_media(self, raw: RawMessage):
        try:
            raw.media_local_path = await self.media_downloader.download(
                raw.media_url, raw.conversation_id, raw.id, raw.media_mime_type
            )
            await self.db.commit()
        except MediaDownloadError as e:
            logger.warning(f"Media for message {raw.id} not stored: {e}")
