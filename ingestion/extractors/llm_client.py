"""
Language-model client with retry, backoff and circuit breaker.

Wraps the OpenAI async SDK for:
- JSON-mode chat completions (extraction, rule parsing)
- Text embeddings

The SDK's own retries are disabled; transient failures (timeouts, connection
errors, 429, 5xx) are retried here with exponential backoff, and repeated
failures open a circuit breaker so a provider outage fails fast.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, TypeVar

import openai
from openai import AsyncOpenAI

from core.config import settings
from core.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    LLMResponseError,
    LLMServiceError,
    RateLimitError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LLMClient:
    """
    Thin resilience layer over ``AsyncOpenAI``.

    Attributes:
        model: Chat model used for extraction
        embedding_model: Model used for embeddings
        max_retries: Maximum number of attempts per call
        retry_delay: Initial retry delay in seconds, doubled per attempt
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        embedding_model: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.model = model or settings.EXTRACTION_MODEL
        self.embedding_model = embedding_model or settings.EMBEDDING_MODEL
        self.max_retries = max_retries if max_retries is not None else settings.MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.RETRY_DELAY_SECONDS
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = 60  # seconds

    @property
    def client(self) -> AsyncOpenAI:
        # Built lazily so the app can start without a key configured
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL,
                max_retries=0,
                timeout=self.timeout,
            )
        return self._client

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info("LLM circuit breaker reset")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"LLM circuit breaker opened after {self._circuit_breaker_failures} failures. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _call_with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``call`` with retry logic and exponential backoff.

        Raises:
            CircuitOpenError: Breaker is open, no call made
            AuthenticationError: Provider rejected the credentials
            RateLimitError: Still rate limited after the last attempt
            ServiceUnavailableError: Transient failure persisted across retries
            LLMServiceError: Any other provider error
        """
        if self._is_circuit_open():
            raise CircuitOpenError(
                "LLM circuit breaker is open",
                context={
                    "operation": operation,
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            delay = self.retry_delay * (2 ** attempt)
            try:
                logger.debug(f"{operation} attempt {attempt + 1}/{self.max_retries}")
                result = await call()
                self._record_success()
                return result

            except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
                self._record_failure()
                raise AuthenticationError(
                    "LLM provider rejected credentials",
                    context={"operation": operation, "status_code": e.status_code},
                    original_exception=e
                )

            except openai.RateLimitError as e:
                last_exception = e
                retry_after = self._retry_after(e) or delay
                logger.warning(f"{operation} rate limited. Retrying after {retry_after} seconds")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(retry_after)
                    continue
                self._record_failure()
                raise RateLimitError(
                    "LLM rate limit exceeded",
                    context={"operation": operation, "retry_count": attempt + 1},
                    original_exception=e,
                    retry_after=retry_after
                )

            except (openai.APIConnectionError, openai.InternalServerError) as e:
                # APITimeoutError is a subclass of APIConnectionError
                last_exception = e
                logger.warning(
                    f"{operation} failed ({type(e).__name__}), "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    continue

            except openai.APIStatusError as e:
                self._record_failure()
                raise LLMServiceError(
                    f"LLM request rejected with status {e.status_code}",
                    context={"operation": operation, "status_code": e.status_code},
                    original_exception=e
                )

        self._record_failure()
        raise ServiceUnavailableError(
            f"{operation} failed after {self.max_retries} attempts",
            context={"operation": operation, "retry_count": self.max_retries},
            original_exception=last_exception
        )

    @staticmethod
    def _retry_after(error: openai.RateLimitError) -> Optional[float]:
        try:
            value = error.response.headers.get("retry-after")
            return float(value) if value else None
        except (AttributeError, TypeError, ValueError):
            return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
    ) -> str:
        """Run one JSON-mode chat completion and return the raw content."""
        temperature = settings.EXTRACTION_TEMPERATURE if temperature is None else temperature

        async def call():
            return await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=temperature,
            )

        response = await self._call_with_retry("chat_completion", call)
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMResponseError(
                "LLM returned an empty response",
                context={"model": self.model}
            )
        if response.usage:
            logger.debug(
                f"chat_completion tokens: prompt={response.usage.prompt_tokens} "
                f"completion={response.usage.completion_tokens}"
            )
        return content

    async def embed(self, text: str) -> List[float]:
        """Return the embedding vector for ``text``."""

        async def call():
            return await self.client.embeddings.create(
                model=self.embedding_model,
                input=text,
            )

        response = await self._call_with_retry("embedding", call)
        if not response.data:
            raise LLMResponseError(
                "Embedding response contained no vectors",
                context={"model": self.embedding_model}
            )
        return list(response.data[0].embedding)
