"""
Extraction engine: message text -> ExtractionResult.

Builds the prompt from the live reference vocabulary and verified jargon,
makes one low-temperature JSON-mode call and parses the answer strictly.
Failures of any kind come back as a zero-confidence result, never as an
exception.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import LLMResponseError
from ingestion.extractors.llm_client import LLMClient
from ingestion.extractors.prompts import build_extraction_system_prompt, build_hint_user_prompt
from schemas.extraction import ExtractionResult
from services.reference_data import ReferenceDataProvider

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    return _FENCE_RE.sub("", (content or "").strip()).strip()


def parse_extraction(content: str) -> ExtractionResult:
    """
    Strictly parse a model response into an ExtractionResult.

    Raises:
        LLMResponseError: Not JSON, not an object, or fails validation
    """
    cleaned = strip_code_fences(content)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise LLMResponseError(
            "Model response is not valid JSON",
            context={"response_preview": cleaned[:200]},
            original_exception=e
        )

    if not isinstance(payload, dict):
        raise LLMResponseError(
            "Model response is not a JSON object",
            context={"response_type": type(payload).__name__}
        )

    payload.pop("error", None)
    try:
        return ExtractionResult.model_validate(payload)
    except PydanticValidationError as e:
        raise LLMResponseError(
            "Model response failed schema validation",
            context={"errors": e.error_count()},
            original_exception=e
        )


class ExtractionEngine:
    """Prompted extraction against the current vocabulary"""

    def __init__(self, db_session: AsyncSession, llm_client: LLMClient, reference: ReferenceDataProvider):
        self.db = db_session
        self.llm = llm_client
        self.reference = reference

    async def _vocabulary(self) -> Dict[str, Any]:
        return {
            "categories": await self.reference.categories(self.db),
            "manufacturers": await self.reference.manufacturers(self.db),
            "units": await self.reference.units(self.db),
            "conditions": await self.reference.conditions(self.db),
            "jargon": await self.reference.verified_jargon(self.db),
        }

    async def extract(self, text: str) -> ExtractionResult:
        """Extract intent, items, unknown terms and confidence from ``text``."""
        if not text or not text.strip():
            return ExtractionResult.failed("empty text")

        try:
            system_prompt = build_extraction_system_prompt(await self._vocabulary())
            content = await self.llm.complete_json(system_prompt, text)
            result = parse_extraction(content)
        except Exception as e:
            logger.warning(f"Extraction failed: {e}")
            return ExtractionResult.failed(str(e))

        logger.info(
            f"Extracted intent={result.intent.value} items={len(result.items)} "
            f"confidence={result.confidence:.2f}"
        )
        return result

    async def extract_with_hint(
        self,
        text: str,
        previous_snapshot: Optional[Dict[str, Any]],
        hint: str,
    ) -> ExtractionResult:
        """Re-extract ``text`` guided by a reviewer correction and the prior values."""
        if not text or not text.strip():
            return ExtractionResult.failed("empty text")
        if not hint or not hint.strip():
            return await self.extract(text)

        try:
            system_prompt = build_extraction_system_prompt(await self._vocabulary())
            user_prompt = build_hint_user_prompt(text, previous_snapshot or {}, hint)
            content = await self.llm.complete_json(system_prompt, user_prompt)
            result = parse_extraction(content)
        except Exception as e:
            logger.warning(f"Hinted extraction failed: {e}")
            return ExtractionResult.failed(str(e))

        logger.info(
            f"Hinted extraction intent={result.intent.value} items={len(result.items)} "
            f"confidence={result.confidence:.2f}"
        )
        return result
