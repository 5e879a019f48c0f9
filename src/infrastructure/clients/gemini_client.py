# src/infrastructure/clients/gemini_client.py
"""
Gemini Text Generation Client
Async client for the Generative Language `generateContent` REST endpoint.

Features:
- Token bucket throttling with adaptive backoff on 429
- Type-safe response parsing with Pydantic
- Provider failures mapped onto the service error taxonomy

The client performs a single attempt per call. Retries, timeouts and
fallbacks belong to the pipeline stages that own each call.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from src.app.config import LLMSettings, get_config
from src.infrastructure.clients.rate_limiter import RateLimiter
from src.services.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    RateLimitExceededError,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "gemini"


# ============================================================================
# Response Models (Type-Safe Data Containers)
# ============================================================================


class ContentPart(BaseModel):
    text: Optional[str] = None


class CandidateContent(BaseModel):
    parts: List[ContentPart] = Field(default_factory=list)
    role: Optional[str] = None


class Candidate(BaseModel):
    """One generated candidate"""

    model_config = ConfigDict(populate_by_name=True)

    content: Optional[CandidateContent] = None
    finish_reason: Optional[str] = Field(alias="finishReason", default=None)


class UsageMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt_token_count: int = Field(alias="promptTokenCount", default=0)
    candidates_token_count: int = Field(alias="candidatesTokenCount", default=0)
    total_token_count: int = Field(alias="totalTokenCount", default=0)


class GenerateContentResponse(BaseModel):
    """Complete generateContent response"""

    model_config = ConfigDict(populate_by_name=True)

    candidates: List[Candidate] = Field(default_factory=list)
    usage_metadata: Optional[UsageMetadata] = Field(alias="usageMetadata", default=None)

    @property
    def text(self) -> str:
        """Concatenated text parts of the first candidate"""
        if not self.candidates or self.candidates[0].content is None:
            return ""
        return "".join(part.text or "" for part in self.candidates[0].content.parts)


# ============================================================================
# Main API Client
# ============================================================================


class GeminiClient:
    """
    Gemini generateContent client

    Satisfies the TextGenerator protocol used by the sentiment and
    summary stages.

    Usage:
        async with GeminiClient(api_key) as client:
            text = await client.generate("Summarize ...")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Gemini client

        Args:
            api_key: Generative Language API key
            model: Model name, e.g. gemini-1.5-flash
            base_url: API base URL
            timeout: HTTP timeout in seconds
            rate_limiter: Optional outbound throttle
            http_client: Optional preconfigured client (tests use MockTransport)
        """
        if not api_key:
            raise ConfigurationError("Gemini API key not configured")

        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.client = http_client or httpx.AsyncClient(
            timeout=timeout, limits=httpx.Limits(max_keepalive_connections=5)
        )
        self.request_count = 0

        logger.info(f"✅ Gemini client initialized (model={model})")

    async def __aenter__(self) -> "GeminiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def _build_body(
        self, prompt: str, temperature: Optional[float], max_output_tokens: Optional[int]
    ) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_output_tokens is not None:
            generation_config["maxOutputTokens"] = max_output_tokens

        body: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if generation_config:
            body["generationConfig"] = generation_config
        return body

    async def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        """
        Generate text for a prompt

        Args:
            prompt: Full prompt text
            temperature: Sampling temperature
            max_output_tokens: Response length cap

        Returns:
            Generated text

        Raises:
            RateLimitExceededError: On HTTP 429
            ExternalServiceError: On other HTTP/network failures or empty output
        """
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        body = self._build_body(prompt, temperature, max_output_tokens)
        self.request_count += 1

        try:
            response = await self.client.post(
                self.endpoint, params={"key": self.api_key}, json=body
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if self.rate_limiter is not None:
                self.rate_limiter.report_error(status)

            if status == 429:
                retry_after = e.response.headers.get("retry-after")
                logger.warning("⚠️ Gemini rate limit hit")
                raise RateLimitExceededError(
                    SERVICE_NAME, float(retry_after) if retry_after else None
                ) from e

            logger.error(f"❌ Gemini API error {status}: {e.response.text[:200]}")
            raise ExternalServiceError(
                SERVICE_NAME,
                f"HTTP {status}",
                status_code=status,
                retryable=status >= 500 or status == 408,
            ) from e

        except httpx.RequestError as e:
            logger.warning(f"⚠️ Gemini network error: {e}")
            raise ExternalServiceError(SERVICE_NAME, f"network error: {e}") from e

        if self.rate_limiter is not None:
            self.rate_limiter.report_success()

        try:
            parsed = GenerateContentResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise ExternalServiceError(SERVICE_NAME, f"malformed response: {e}") from e

        text = parsed.text.strip()
        if not text:
            raise ExternalServiceError(SERVICE_NAME, "empty response from provider")

        return text


# ============================================================================
# Factory
# ============================================================================


def create_text_generator(settings: Optional[LLMSettings] = None) -> GeminiClient:
    """
    Build a Gemini client from configuration

    The API key falls back to GOOGLE_API_KEY when GEMINI_API_KEY is unset.

    Raises:
        ConfigurationError: When no API key is available
    """
    settings = settings or get_config().llm
    api_key = settings.api_key or os.getenv("GOOGLE_API_KEY", "")

    rate_limiter = RateLimiter(
        calls_per_second=settings.requests_per_second,
        burst_capacity=settings.burst_capacity,
    )

    return GeminiClient(
        api_key=api_key,
        model=settings.model,
        base_url=settings.base_url,
        timeout=settings.request_timeout,
        rate_limiter=rate_limiter,
    )
