"""
Shared FastAPI dependencies
"""

from typing import AsyncGenerator, Optional
from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker
from ingestion.context import PipelineContext
from ingestion.worker_pool import PipelineWorkerPool

ANONYMOUS_ACTOR = "anonymous"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


def get_context(request: Request) -> PipelineContext:
    return request.app.state.pipeline_context


def get_pool(request: Request) -> Optional[PipelineWorkerPool]:
    return getattr(request.app.state, "worker_pool", None)


def get_actor(x_actor: Optional[str] = Header(None)) -> str:
    """Reviewer identity taken from the X-Actor header"""
    return (x_actor or "").strip() or ANONYMOUS_ACTOR


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)
