"""
Embedding generator for archived message bodies
"""

import logging
from typing import List

from ingestion.extractors.llm_client import LLMClient

logger = logging.getLogger(__name__)

# Roughly the input limit of the small embedding models
MAX_EMBEDDING_CHARS = 8000


class EmbeddingGenerator:
    def __init__(self, llm_client: LLMClient):
        self.llm = llm_client

    async def generate(self, text: str) -> List[float]:
        """Embed ``text``; raises the client's errors, callers decide if fatal."""
        vector = await self.llm.embed(text[:MAX_EMBEDDING_CHARS])
        logger.debug(f"Generated embedding with {len(vector)} dimensions")
        return vector
