"""
Nestmate — Embedding generator contract and Gemini adapter.

The matching engine embeds text only for ad-hoc queries (natural-language
roommate search).  Candidate and requester vectors always come from the
vector index, never from this service.
"""

from __future__ import annotations

from typing import Protocol

import google.generativeai as genai
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.services.errors import EmbeddingServiceError

logger = structlog.get_logger("nestmate.embedding_service")


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


def _is_retryable_api_error(exc: BaseException) -> bool:
    """Return True on rate limiting (429) or transient server errors (500/503)."""
    exc_str = str(exc).lower()
    if "429" in exc_str or "resource_exhausted" in exc_str:
        return True
    if "500" in exc_str or "503" in exc_str or "unavailable" in exc_str:
        return True
    return False


class GeminiEmbeddingProvider:
    """``EmbeddingProvider`` over the Gemini embedding API."""

    def __init__(self, model: str | None = None, retry_attempts: int | None = None) -> None:
        settings = get_settings()
        self.model: str = model or settings.EMBEDDING_MODEL
        self.retry_attempts: int = retry_attempts or settings.BACKEND_RETRY_ATTEMPTS
        if settings.GEMINI_API_KEY:
            genai.configure(api_key=settings.GEMINI_API_KEY)
        else:
            logger.warning("embedding_provider_not_configured", missing="GEMINI_API_KEY")

    async def embed(self, text: str) -> list[float]:
        """Embed ``text`` as a retrieval query.

        Raises
        ------
        EmbeddingServiceError
            If the API fails after retries or returns no embedding.
        """
        if not text or not text.strip():
            raise EmbeddingServiceError("Cannot embed empty text")

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable_api_error),
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                reraise=True,
            ):
                with attempt:
                    result = await genai.embed_content_async(
                        model=self.model,
                        content=text,
                        task_type="retrieval_query",
                    )
        except RetryError as retry_err:
            raise EmbeddingServiceError("Embedding API retries exhausted") from retry_err
        except Exception as exc:
            logger.error("embedding_call_failed", model=self.model, error=str(exc))
            raise EmbeddingServiceError(f"Embedding API call failed: {exc}") from exc

        embedding = result.get("embedding") if isinstance(result, dict) else None
        if not embedding:
            raise EmbeddingServiceError("Embedding API returned no embedding")

        logger.debug("text_embedded", model=self.model, dimension=len(embedding))
        return list(embedding)
