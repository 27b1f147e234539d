import logging
from datetime import datetime, timedelta
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from core.config import settings
from core.database import async_session_maker
from ingestion.context import PipelineContext
from ingestion.worker_pool import PipelineWorkerPool
from models.raw_message import RawMessage

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """
    Periodic jobs around the pipeline.

    recover_unprocessed: re-queues messages still marked unprocessed after
    the grace period, so nothing archived is lost across crashes or a full
    queue.
    expire_listings: moves active listings past expires_at to expired.
    """

    def __init__(
        self,
        pool: PipelineWorkerPool,
        context: PipelineContext,
        session_factory=None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.pool = pool
        self.context = context
        self.SessionLocal = session_factory or async_session_maker

    async def recover_unprocessed(self, now: Optional[datetime] = None) -> int:
        """Job to re-queue unprocessed messages"""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=settings.RECOVERY_GRACE_SECONDS)
        queued = 0
        async with self.SessionLocal() as session:
            try:
                result = await session.execute(
                    select(RawMessage.id)
                    .where(RawMessage.processed.is_(False), RawMessage.received_at <= cutoff)
                    .order_by(RawMessage.received_at)
                    .limit(settings.RECOVERY_BATCH_SIZE)
                )
                for message_id in result.scalars().all():
                    if self.pool.submit(message_id):
                        queued += 1
            except Exception as e:
                logger.error(f"Scheduler: recovery sweep failed - {e}")
                return 0

        if queued:
            logger.info(f"Scheduler: re-queued {queued} unprocessed message(s)")
        return queued

    async def expire_listings(self) -> int:
        """Job to expire stale listings"""
        async with self.SessionLocal() as session:
            try:
                return await self.context.listings(session).expire_stale()
            except Exception as e:
                logger.error(f"Scheduler: listing expiry failed - {e}")
                return 0

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.recover_unprocessed,
            trigger=IntervalTrigger(minutes=settings.RECOVERY_INTERVAL_MINUTES),
            id="recover_unprocessed",
            replace_existing=True
        )
        self.scheduler.add_job(
            self.expire_listings,
            trigger=IntervalTrigger(minutes=settings.EXPIRY_INTERVAL_MINUTES),
            id="expire_listings",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info("Pipeline scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Pipeline scheduler stopped")
