"""
Message ingestion and extraction pipeline.

Modules:
    archive: Idempotent persistence of inbound messages
    media: Best-effort attachment download
    context: Shared clients and per-session service factories
    runner: Per-message pipeline orchestrator
    worker_pool: Bounded asyncio worker pool feeding the runner
    scheduler: APScheduler jobs for recovery and listing expiry

Subpackages:
    extractors: Language-model client, embeddings and structured extraction
    transformers: Jargon expansion and listing normalization
    loaders: Confidence routing into listings and review items

Architecture:
    webhook -> archive (commit) -> worker pool -> runner:
        embed -> jargon-expand -> extract -> route -> learn -> notify

    Unprocessed rows double as a durable outbox: anything not finished is
    re-queued by the recovery sweep.

Usage:
    from ingestion.context import PipelineContext
    from ingestion.runner import PipelineRunner

    context = PipelineContext()
    async with async_session_maker() as session:
        result = await PipelineRunner(session, context).process(message_id)
"""

__all__ = [
    "MessageArchive",
    "PipelineContext",
    "PipelineRunner",
    "PipelineWorkerPool",
    "PipelineScheduler",
]
