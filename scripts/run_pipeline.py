"""
Script to drain unprocessed messages through the pipeline without the API.

Useful after downtime or when catching up on a backlog: every archived
message still marked unprocessed is run once, oldest first.
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy import select
from core.database import async_session_maker, engine
from core.logging import setup_logging
from ingestion.context import PipelineContext
from ingestion.runner import PipelineRunner
from models.raw_message import RawMessage

logger = logging.getLogger(__name__)


async def run_pipeline(limit: int):
    """Run the pipeline for up to ``limit`` unprocessed messages"""
    context = PipelineContext()

    async with async_session_maker() as session:
        result = await session.execute(
            select(RawMessage.id)
            .where(RawMessage.processed.is_(False))
            .order_by(RawMessage.received_at)
            .limit(limit)
        )
        message_ids = list(result.scalars().all())

    logger.info(f"Found {len(message_ids)} unprocessed message(s)")

    summary = {"success": 0, "skipped": 0, "failed": 0}
    for message_id in message_ids:
        async with async_session_maker() as session:
            outcome = await PipelineRunner(session, context).process(message_id)
        summary[outcome["status"]] = summary.get(outcome["status"], 0) + 1

    logger.info("=" * 60)
    logger.info("PIPELINE CATCH-UP SUMMARY")
    logger.info("=" * 60)
    for status, n in summary.items():
        logger.info(f"{status}: {n}")

    await engine.dispose()
    return summary


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Process archived messages that are still unprocessed")
    parser.add_argument("--limit", type=int, default=500, help="Maximum messages to process")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this run")
    args = parser.parse_args()

    setup_logging(args.log_level)
    summary = asyncio.run(run_pipeline(args.limit))
    sys.exit(1 if summary.get("failed") else 0)
