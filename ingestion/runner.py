# ============================================================================
# File: ingestion/runner.py
# Description: Per-message pipeline orchestrator with failure isolation
# ============================================================================
"""
Pipeline Runner - sequences the stages for one archived message.

Stages, strictly in order:
    embed -> jargon-expand -> extract -> route -> learn -> notify

- Embedding, learning and notification failures are logged and recorded
  but never stop the message
- Extraction never raises; a failed call routes as zero confidence
- Each stage commits on its own, so a later failure never unwinds an
  earlier one
- Any unexpected error marks the message processed with the error kept
  in processing_error
"""

from datetime import datetime
from typing import Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ingestion.context import PipelineContext
from ingestion.loaders.confidence_router import AutoAccepted, QueuedWithDraft, QueuedWithoutDraft
from models.listing import Listing
from models.raw_message import RawMessage
from services.listings import is_sold_reply

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class PipelineRunner:
    """
    Per-message pipeline orchestrator.

    Responsibilities:
    - Skip messages that are missing or already processed
    - Short-circuit empty bodies and "sold" replies
    - Run the extraction stages and route the result
    - Record per-message failures instead of propagating them
    """

    def __init__(self, db_session: AsyncSession, context: PipelineContext):
        self.db = db_session
        self.context = context

    async def process(self, message_id: int) -> Dict[str, Any]:
        """
        Run the full pipeline for one message.

        Returns:
            Dictionary with run details:
            - status: "success", "skipped" or "failed"
            - outcome: routing outcome or short-circuit reason
            - listings_created / review_items_created / terms_learned / notifications_sent
            - error_details: non-fatal stage failures (if any)
        """
        raw = await self.db.get(RawMessage, message_id)
        if raw is None:
            logger.warning(f"Message {message_id} not found; skipping")
            return {"status": "skipped", "message_id": message_id, "reason": "not_found"}
        if raw.processed:
            logger.debug(f"Message {message_id} already processed; skipping")
            return {"status": "skipped", "message_id": message_id, "reason": "already_processed"}

        logger.info(f"Pipeline started for message {message_id}")
        error_details: List[Dict[str, Any]] = []
        result: Dict[str, Any] = {
            "status": "success",
            "message_id": message_id,
            "listings_created": 0,
            "review_items_created": 0,
            "terms_learned": 0,
            "notifications_sent": 0,
        }

        try:
            body = (raw.body or "").strip()

            if not body:
                await self._mark_processed(message_id)
                result["outcome"] = "empty_body"
                logger.info(f"Message {message_id} has no text; marked processed")
                return result

            # --------------------------------------------------
            # SHORT-CIRCUIT: "Sold" reply to an earlier listing
            # --------------------------------------------------
            if is_sold_reply(raw):
                sold = await self.context.listings(self.db).mark_sold_from_reply(raw)
                await self._mark_processed(message_id)
                result["outcome"] = "sold_reply"
                result["listings_sold"] = len(sold)
                return result

            # --------------------------------------------------
            # PHASE 1: EMBEDDING (non-fatal)
            # --------------------------------------------------
            try:
                raw.embedding = await self.context.embedding_generator().generate(body)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                self._record(error_details, "embedding", e)

            # --------------------------------------------------
            # PHASE 2: JARGON EXPANSION
            # --------------------------------------------------
            jargon = await self.context.reference.verified_jargon(self.db)
            expanded = self.context.expander.expand(body, jargon)
            if expanded != body:
                logger.debug(f"Message {message_id} expanded with {len(jargon)} verified terms")

            # --------------------------------------------------
            # PHASE 3: EXTRACTION (never raises)
            # --------------------------------------------------
            extraction = await self.context.extraction_engine(self.db).extract(expanded)

            # --------------------------------------------------
            # PHASE 4: CONFIDENCE ROUTING
            # --------------------------------------------------
            raw = await self.db.get(RawMessage, message_id)
            outcome = await self.context.router(self.db).route(raw, extraction)
            await self.db.commit()

            result["outcome"] = outcome.outcome
            active_listing_ids = []
            if isinstance(outcome, AutoAccepted):
                result["listings_created"] = len(outcome.listings)
                active_listing_ids = [listing.id for listing in outcome.listings]
            elif isinstance(outcome, QueuedWithDraft):
                result["listings_created"] = len(outcome.listings)
                result["review_items_created"] = len(outcome.review_items)
            elif isinstance(outcome, QueuedWithoutDraft):
                result["review_items_created"] = 1

            # --------------------------------------------------
            # PHASE 5: JARGON LEARNING (non-fatal)
            # --------------------------------------------------
            if extraction.unknown_terms:
                try:
                    learned = await self.context.jargon(self.db).learn(
                        extraction.unknown_terms, context_example=body
                    )
                    result["terms_learned"] = len(learned)
                except Exception as e:
                    await self.db.rollback()
                    self._record(error_details, "jargon_learning", e)

            # --------------------------------------------------
            # PHASE 6: NOTIFICATION (non-fatal)
            # --------------------------------------------------
            notifier = self.context.notifier(self.db)
            for listing_id in active_listing_ids:
                try:
                    listing = await self.db.get(Listing, listing_id)
                    matched = await notifier.match_and_dispatch(listing)
                    result["notifications_sent"] += len(matched)
                except Exception as e:
                    await self.db.rollback()
                    self._record(error_details, "notification", e)

            # --------------------------------------------------
            # PHASE 7: MARK PROCESSED
            # --------------------------------------------------
            extraction_error = f"Extraction failed: {extraction.error}" if extraction.is_failure else None
            await self._mark_processed(message_id, error=extraction_error)

            if error_details:
                result["error_details"] = error_details

            logger.info(
                f"Pipeline finished for message {message_id}: {result['outcome']} - "
                f"listings={result['listings_created']} reviews={result['review_items_created']} "
                f"notified={result['notifications_sent']}"
            )
            return result

        except Exception as e:
            logger.exception(f"Pipeline failed for message {message_id}")
            await self.db.rollback()
            await self._mark_failed(message_id, e)
            return {
                "status": "failed",
                "message_id": message_id,
                "error_type": type(e).__name__,
                "error_message": str(e),
            }

    @staticmethod
    def _record(error_details: List[Dict[str, Any]], phase: str, error: Exception):
        detail = {
            "phase": phase,
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        error_details.append(detail)
        logger.warning(f"{phase} failed (non-fatal): {error}", extra={"error_context": detail})

    async def _mark_processed(self, message_id: int, error: str = None):
        raw = await self.db.get(RawMessage, message_id)
        raw.processed = True
        raw.processed_at = datetime.utcnow()
        raw.processing_error = error[:MAX_ERROR_LENGTH] if error else None
        await self.db.commit()

    async def _mark_failed(self, message_id: int, error: Exception):
        try:
            raw = await self.db.get(RawMessage, message_id)
            if raw is None:
                return
            raw.processed = True
            raw.processed_at = datetime.utcnow()
            raw.processing_error = f"{type(error).__name__}: {error}"[:MAX_ERROR_LENGTH]
            await self.db.commit()
        except Exception:
            logger.exception(f"Could not record failure for message {message_id}")
            await self.db.rollback()
