"""
Thin wrapper around the Anthropic Messages API.

Translates SDK exceptions into ProviderError subclasses so the resilience
controller and the explanation service never see SDK types, and retries
transient failures (429, 5xx, connection problems) with exponential backoff.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import anthropic
import httpx
from anthropic import Anthropic

from fundmatch.core.config import settings
from fundmatch.core.exceptions import (
    MalformedResponseError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from fundmatch.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 529}


@dataclass
class ProviderResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class TextGenerator(Protocol):
    def generate(self, system: str, prompt: str) -> ProviderResponse: ...


def is_transient(error: Exception) -> bool:
    """Worth retrying: provider 429/5xx, or the request never got an answer."""
    if isinstance(error, ProviderError) and error.status_code in RETRYABLE_STATUS_CODES:
        return True
    return isinstance(error.__cause__, anthropic.APIConnectionError)


def map_provider_error(error: anthropic.AnthropicError) -> ProviderError:
    """SDK exception -> engine exception."""
    # APITimeoutError subclasses APIConnectionError, so check it first
    if isinstance(error, anthropic.APITimeoutError):
        return ProviderTimeoutError(f"Request to Claude API timed out: {error}")
    if isinstance(error, anthropic.APIConnectionError):
        return ProviderUnavailableError(f"Could not connect to Claude API: {error}")
    if isinstance(error, anthropic.RateLimitError):
        return ProviderRateLimitError(f"Anthropic API rate limit exceeded: {error}", status_code=429)
    if isinstance(error, anthropic.AuthenticationError):
        return ProviderUnavailableError(
            f"Anthropic API authentication failed. Please check your ANTHROPIC_API_KEY: {error}",
            status_code=401,
        )
    if isinstance(error, anthropic.APIStatusError):
        return ProviderUnavailableError(f"Claude API error: {error}", status_code=error.status_code)
    return ProviderUnavailableError(f"Claude API call failed: {error}")


class AIProviderClient:
    """Generates text with Claude. Implements TextGenerator."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        client: Optional[Anthropic] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model or settings.AI_MODEL
        self.max_tokens = max_tokens or settings.AI_MAX_TOKENS
        self.temperature = temperature if temperature is not None else settings.AI_TEMPERATURE
        timeout_seconds = timeout_seconds or settings.AI_REQUEST_TIMEOUT_SECONDS
        max_retries = max_retries if max_retries is not None else settings.AI_MAX_RETRIES

        self.client = client
        if self.client is None:
            api_key = api_key or settings.ANTHROPIC_API_KEY
            if api_key:
                # Retries are ours, not the SDK's, so each attempt is logged and backed off the same way
                self.client = Anthropic(
                    api_key=api_key,
                    timeout=httpx.Timeout(timeout_seconds, connect=5.0),
                    max_retries=0,
                )
            else:
                logger.warning("ANTHROPIC_API_KEY not set - explanations will use fallback content")

        self._create_with_retry = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=1.0,
            exponential_base=2.0,
            exceptions=(ProviderError,),
            should_retry=is_transient,
            sleep=sleep,
        )(self._create_once)

    def generate(self, system: str, prompt: str) -> ProviderResponse:
        """
        One completion.

        Raises:
            ProviderUnavailableError: no API key, or a non-retryable API error
            ProviderRateLimitError / ProviderTimeoutError: after retries are exhausted
            MalformedResponseError: response had no text block
        """
        if self.client is None:
            raise ProviderUnavailableError("Anthropic API key required. Set ANTHROPIC_API_KEY environment variable.")
        return self._create_with_retry(system, prompt)

    def _create_once(self, system: str, prompt: str) -> ProviderResponse:
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ]
            )
        except anthropic.AnthropicError as e:
            raise map_provider_error(e) from e

        if not message.content or getattr(message.content[0], "text", None) is None:
            raise MalformedResponseError("Claude response contained no text block")

        usage = getattr(message, "usage", None)
        return ProviderResponse(
            text=message.content[0].text.strip(),
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )
