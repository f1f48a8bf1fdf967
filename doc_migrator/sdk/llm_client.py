"""
Guarded LLM client wrapper.

Wraps an OpenAI-compatible chat completions endpoint (Anthropic's by
default) with classified retries and token usage extraction.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config.loader import DEFAULT_BASE_URL
from ..core.token_counter import TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_TOKENS = 2048
OVERLOADED_STATUS = 529


def is_retryable_error(error: BaseException) -> bool:
    """True for rate limits, overload, server errors and connection failures."""
    if isinstance(error, openai.APIConnectionError):
        return True
    if isinstance(error, openai.RateLimitError):
        return True
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        return status == OVERLOADED_STATUS or 500 <= status < 600
    return False


@dataclass(frozen=True)
class LLMResponse:
    """Text and usage of one completion."""
    text: str
    usage: TokenUsage
    model: str
    request_id: Optional[str] = None


class GuardedLLMClient:
    """Chat completion client with retry and usage accounting.

    Retryable failures are retried with exponential backoff; anything
    else propagates unchanged on the first attempt.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize the client.

        Args:
            api_key: API key for the endpoint
            model: Model name (required)
            base_url: OpenAI-compatible endpoint
            max_retries: Retries after the first attempt
            retry_delay: Base delay in seconds for exponential backoff
            client: Preconfigured AsyncOpenAI client

        Raises:
            ValueError: If model is missing/empty or retry settings are negative
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if retry_delay < 0:
            raise ValueError("retry_delay cannot be negative")

        self.model = model
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        # Retries are handled here, not by the SDK
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = DEFAULT_MAX_TOKENS,
        **kwargs: Any,
    ) -> LLMResponse:
        """Create a chat completion.

        Raises:
            ValueError: If messages is empty or the response has no usage
            openai.OpenAIError: Non-retryable errors, or the last retryable one
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=max_tokens,
                    **kwargs,
                )

        usage = response.usage
        if not usage:
            raise ValueError("LLM response missing usage information")

        cached = 0
        details = getattr(usage, "prompt_tokens_details", None)
        if details is not None and getattr(details, "cached_tokens", None):
            cached = details.cached_tokens

        text = response.choices[0].message.content if response.choices else None
        return LLMResponse(
            text=text or "",
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens - cached,
                output_tokens=usage.completion_tokens,
                cache_read_tokens=cached,
            ),
            model=response.model or self.model,
            request_id=response.id,
        )
