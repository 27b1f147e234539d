"""
Bounded asyncio worker pool that runs the pipeline off the request path.

Messages are processed strictly sequentially within one pipeline run, with
no ordering across messages. A message id already queued or running is not
queued twice. When the queue is full the id is dropped here and picked up
later by the recovery sweep, since the row stays processed=False.
"""

import asyncio
import logging
from typing import List, Optional, Set

from core.config import settings
from ingestion.context import PipelineContext
from ingestion.runner import PipelineRunner

logger = logging.getLogger(__name__)


class PipelineWorkerPool:
    def __init__(
        self,
        session_factory,
        context: PipelineContext,
        workers: Optional[int] = None,
        queue_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.context = context
        self.workers = workers or settings.PIPELINE_WORKERS
        self.queue_size = queue_size or settings.PIPELINE_QUEUE_SIZE
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        self._in_flight: Set[int] = set()

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not all(t.done() for t in self._tasks)

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self):
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"pipeline-worker-{n}")
            for n in range(self.workers)
        ]
        logger.info(f"Pipeline worker pool started with {self.workers} workers")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Pipeline worker pool stopped")

    def submit(self, message_id: int) -> bool:
        """Queue a message id; returns False when it was not queued."""
        if self._queue is None or not self.running:
            logger.warning(f"Worker pool not running; message {message_id} left for recovery")
            return False
        if message_id in self._in_flight:
            return False
        try:
            self._queue.put_nowait(message_id)
        except asyncio.QueueFull:
            logger.warning(f"Pipeline queue full; message {message_id} left for recovery")
            return False
        self._in_flight.add(message_id)
        return True

    async def join(self):
        """Wait until every queued message has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, worker_id: int):
        while True:
            message_id = await self._queue.get()
            try:
                await self._process(message_id)
            except Exception:
                logger.exception(f"Worker {worker_id} failed on message {message_id}")
            finally:
                self._in_flight.discard(message_id)
                self._queue.task_done()

    async def _process(self, message_id: int):
        async with self.session_factory() as session:
            await PipelineRunner(session, self.context).process(message_id)
