"""
AI provider client tests (Anthropic SDK replaced by a stub client object).
"""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from fundmatch.core.config import settings
from fundmatch.core.exceptions import (
    MalformedResponseError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from fundmatch.services.ai_client import AIProviderClient, is_transient, map_provider_error


pytestmark = pytest.mark.unit

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def status_error(cls, status_code):
    return cls("provider error", response=httpx.Response(status_code, request=REQUEST), body=None)


def message(text="<summary>요약</summary>", input_tokens=120, output_tokens=80):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


class StubAnthropic:
    """Replays a list of outcomes (message objects or exceptions) from messages.create."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.messages = SimpleNamespace(create=self._create)

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(stub, sleeps, max_retries=2):
    return AIProviderClient(client=stub, max_retries=max_retries, sleep=sleeps.append, model="claude-test")


class TestGenerate:

    def test_success_returns_text_and_usage(self):
        stub = StubAnthropic(message(text="  <summary>요약</summary>  "))
        client = make_client(stub, [])

        response = client.generate("system prompt", "user prompt")

        assert response.text == "<summary>요약</summary>"
        assert (response.input_tokens, response.output_tokens) == (120, 80)
        request = stub.requests[0]
        assert request["model"] == "claude-test"
        assert request["system"] == "system prompt"
        assert request["messages"] == [{"role": "user", "content": "user prompt"}]

    def test_rate_limit_is_retried_with_backoff(self):
        sleeps = []
        stub = StubAnthropic(*[status_error(anthropic.RateLimitError, 429) for _ in range(3)])
        client = make_client(stub, sleeps)

        with pytest.raises(ProviderRateLimitError) as exc_info:
            client.generate("s", "p")

        assert sleeps == [1.0, 2.0]
        assert len(stub.requests) == 3
        assert exc_info.value.status_code == 429

    def test_transient_error_then_success(self):
        sleeps = []
        stub = StubAnthropic(status_error(anthropic.APIStatusError, 503), message())
        client = make_client(stub, sleeps)

        assert client.generate("s", "p").input_tokens == 120
        assert sleeps == [1.0]

    def test_authentication_error_is_not_retried(self):
        sleeps = []
        stub = StubAnthropic(status_error(anthropic.AuthenticationError, 401))
        client = make_client(stub, sleeps)

        with pytest.raises(ProviderUnavailableError) as exc_info:
            client.generate("s", "p")

        assert sleeps == []
        assert exc_info.value.status_code == 401

    def test_timeouts_exhaust_retries(self):
        sleeps = []
        stub = StubAnthropic(anthropic.APITimeoutError(request=REQUEST), anthropic.APITimeoutError(request=REQUEST))
        client = make_client(stub, sleeps, max_retries=1)

        with pytest.raises(ProviderTimeoutError):
            client.generate("s", "p")

        assert sleeps == [1.0]

    def test_empty_content_is_malformed(self):
        stub = StubAnthropic(SimpleNamespace(content=[], usage=None))
        client = make_client(stub, [])

        with pytest.raises(MalformedResponseError):
            client.generate("s", "p")

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "")

        client = AIProviderClient(api_key="")

        assert client.client is None
        with pytest.raises(ProviderUnavailableError):
            client.generate("s", "p")


class TestErrorMapping:

    def test_mapping(self):
        assert isinstance(map_provider_error(anthropic.APITimeoutError(request=REQUEST)), ProviderTimeoutError)
        assert isinstance(
            map_provider_error(anthropic.APIConnectionError(request=REQUEST)), ProviderUnavailableError
        )
        mapped = map_provider_error(status_error(anthropic.APIStatusError, 500))
        assert isinstance(mapped, ProviderUnavailableError)
        assert mapped.status_code == 500

    def test_is_transient(self):
        assert is_transient(ProviderUnavailableError("overloaded", status_code=529)) is True
        assert is_transient(ProviderUnavailableError("bad request", status_code=400)) is False
        assert is_transient(MalformedResponseError("no text")) is False
