"""
Inbound message webhook
"""

import hashlib
import hmac
import json
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_context, get_db, get_pool, get_request_id
from core.config import settings
from ingestion.context import PipelineContext
from schemas.inbound import WebhookPayload, WebhookResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def signature_valid(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """HMAC-SHA256 hex digest of the raw body, compared in constant time"""
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    return hmac.compare_digest(expected, provided.lower())


@router.post("/messages", response_model=WebhookResponse)
async def receive_messages(
    request: Request,
    db: AsyncSession = Depends(get_db),
    context: PipelineContext = Depends(get_context),
    pool=Depends(get_pool),
):
    """
    Archive a batch of inbound messages and queue them for processing.

    Archiving commits before the response; extraction runs on the worker
    pool. Redelivered messages are counted as duplicates.
    """
    request_id = get_request_id(request)
    body = await request.body()

    if settings.WEBHOOK_SECRET:
        if not signature_valid(settings.WEBHOOK_SECRET, body, request.headers.get("x-webhook-signature")):
            logger.warning(f"[{request_id}] Rejected webhook with bad signature")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = WebhookPayload.model_validate(json.loads(body or b"{}"))
    except (ValueError, PydanticValidationError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid webhook payload: {e}")

    archive = context.archive(db, pipeline=pool)
    archived = 0
    duplicates = 0
    for record in payload.messages:
        result = await archive.archive(record)
        if result.created:
            archived += 1
        else:
            duplicates += 1

    logger.info(
        f"[{request_id}] Webhook received {len(payload.messages)} message(s): "
        f"{archived} archived, {duplicates} duplicate(s)"
    )
    return WebhookResponse(
        received=len(payload.messages),
        archived=archived,
        duplicates=duplicates,
        request_id=request_id,
    )
