"""
Tests for llm_runner.openai_client module.

Tests cover:
- OpenAIChatClient initialization and validation
- Successful completions with reply and usage parsing
- Retry logic on transient failures (429, 5xx, timeouts)
- Immediate failure on non-retryable errors (400, 401, 403, 404)
- Error mapping into the LLMProviderError hierarchy
- API keys never logged

Retry waits are set to zero so retry tests run instantly.
"""

import json
import logging

import httpx
import pytest

from llm_rank_watcher.exceptions import (
    LLMAuthenticationError,
    LLMProviderError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
)
from llm_rank_watcher.llm_runner.models import CompletionResult
from llm_rank_watcher.llm_runner.openai_client import OPENAI_API_URL, OpenAIChatClient

COMPLETION_ARGS = {
    "system_prompt": "Answer with a numbered Top 3.",
    "user_prompt": "Best CRM?\n\nBrand to measure: Acme.\nCompetitors: Globex.",
    "model": "gpt-4o-mini",
    "temperature": 0.2,
    "max_tokens": 800,
}


def _ok_body(content="1. Acme\n2. Globex", usage=None):
    return {
        "model": "gpt-4o-mini-2024-07-18",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": usage
        if usage is not None
        else {"prompt_tokens": 40, "completion_tokens": 20, "total_tokens": 60},
    }


@pytest.fixture
def client():
    return OpenAIChatClient("sk-test123", max_attempts=3, min_wait=0, max_wait=0)


class TestInit:
    def test_stores_key_and_url(self):
        client = OpenAIChatClient("sk-test123")
        assert client.api_key == "sk-test123"
        assert client.api_url == OPENAI_API_URL

    @pytest.mark.parametrize("api_key", ["", "   "])
    def test_empty_api_key(self, api_key):
        with pytest.raises(ValueError, match="api_key cannot be empty"):
            OpenAIChatClient(api_key)

    def test_init_never_logs_api_key(self, caplog):
        caplog.set_level(logging.DEBUG)
        OpenAIChatClient("sk-secret123")
        assert "sk-secret123" not in caplog.text


class TestCompleteSuccess:
    @pytest.mark.asyncio
    async def test_parses_reply_and_usage(self, client, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=_ok_body())

        result = await client.complete(**COMPLETION_ARGS)

        assert isinstance(result, CompletionResult)
        assert result.text == "1. Acme\n2. Globex"
        assert result.tokens_used == 60
        assert result.prompt_tokens == 40
        assert result.completion_tokens == 20
        assert result.model_name == "gpt-4o-mini-2024-07-18"
        assert result.provider == "openai"
        assert result.timestamp_utc.endswith("Z")

    @pytest.mark.asyncio
    async def test_sends_payload_and_headers(self, client, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=_ok_body())

        await client.complete(**COMPLETION_ARGS)

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer sk-test123"
        assert request.headers["Content-Type"] == "application/json"

        data = json.loads(request.read())
        assert data["model"] == "gpt-4o-mini"
        assert data["temperature"] == 0.2
        assert data["max_tokens"] == 800
        assert data["messages"] == [
            {"role": "system", "content": COMPLETION_ARGS["system_prompt"]},
            {"role": "user", "content": COMPLETION_ARGS["user_prompt"]},
        ]

    @pytest.mark.asyncio
    async def test_null_content_is_empty_reply(self, client, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=_ok_body(content=None))

        result = await client.complete(**COMPLETION_ARGS)

        assert result.text == ""

    @pytest.mark.asyncio
    async def test_missing_usage_counts_zero(self, client, httpx_mock, caplog):
        body = _ok_body()
        del body["usage"]
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=body)

        result = await client.complete(**COMPLETION_ARGS)

        assert result.tokens_used == 0
        assert "missing 'usage'" in caplog.text

    @pytest.mark.asyncio
    async def test_custom_api_url(self, httpx_mock):
        url = "https://gateway.example.com/v1/chat/completions"
        httpx_mock.add_response(method="POST", url=url, json=_ok_body())

        client = OpenAIChatClient("sk-test123", api_url=url, min_wait=0, max_wait=0)
        result = await client.complete(**COMPLETION_ARGS)

        assert result.text.startswith("1. Acme")


class TestCompleteValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt", ["", "   "])
    async def test_empty_prompt(self, client, prompt):
        with pytest.raises(ValueError, match="Prompt cannot be empty"):
            await client.complete(**{**COMPLETION_ARGS, "user_prompt": prompt})

    @pytest.mark.asyncio
    async def test_prompt_too_long(self, client):
        with pytest.raises(ValueError, match="exceeds maximum length"):
            await client.complete(**{**COMPLETION_ARGS, "user_prompt": "x" * 100_001})


class TestCompleteErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors_not_retried(self, client, httpx_mock, status):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=status,
            json={"error": {"message": "Incorrect API key provided"}},
        )

        with pytest.raises(LLMAuthenticationError, match="Incorrect API key"):
            await client.complete(**COMPLETION_ARGS)

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404])
    async def test_client_errors_not_retried(self, client, httpx_mock, status):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=status,
            json={"error": {"message": "The model does not exist"}},
        )

        with pytest.raises(LLMResponseError, match="non-retryable"):
            await client.complete(**COMPLETION_ARGS)

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_retried_then_raised(self, client, httpx_mock):
        for _ in range(3):
            httpx_mock.add_response(
                method="POST",
                url=OPENAI_API_URL,
                status_code=429,
                json={"error": {"message": "Rate limit reached"}},
            )

        with pytest.raises(LLMRateLimitError, match="Rate limit reached"):
            await client.complete(**COMPLETION_ARGS)

        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, client, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, status_code=503)
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=_ok_body())

        result = await client.complete(**COMPLETION_ARGS)

        assert result.text.startswith("1. Acme")
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, client, httpx_mock):
        for _ in range(3):
            httpx_mock.add_response(method="POST", url=OPENAI_API_URL, status_code=500)

        with pytest.raises(LLMResponseError, match="status=500"):
            await client.complete(**COMPLETION_ARGS)

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self, client, httpx_mock):
        for _ in range(3):
            httpx_mock.add_exception(httpx.ReadTimeout("read timed out"))

        with pytest.raises(LLMTimeoutError):
            await client.complete(**COMPLETION_ARGS)

        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, client, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, text="<html>oops</html>")

        with pytest.raises(LLMResponseError, match="parse OpenAI response JSON"):
            await client.complete(**COMPLETION_ARGS)

    @pytest.mark.asyncio
    async def test_empty_choices(self, client, httpx_mock):
        httpx_mock.add_response(
            method="POST", url=OPENAI_API_URL, json={"choices": [], "usage": {}}
        )

        with pytest.raises(LLMResponseError, match="empty 'choices'"):
            await client.complete(**COMPLETION_ARGS)

    @pytest.mark.asyncio
    async def test_missing_choices(self, client, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json={"id": "x"})

        with pytest.raises(LLMResponseError, match="Invalid OpenAI response structure"):
            await client.complete(**COMPLETION_ARGS)

    @pytest.mark.asyncio
    async def test_errors_share_provider_base(self, client, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, status_code=401, json={})

        with pytest.raises(LLMProviderError):
            await client.complete(**COMPLETION_ARGS)

    @pytest.mark.asyncio
    async def test_errors_never_log_api_key(self, client, httpx_mock, caplog):
        caplog.set_level(logging.DEBUG)
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=401,
            json={"error": {"message": "Invalid key"}},
        )

        with pytest.raises(LLMAuthenticationError):
            await client.complete(**COMPLETION_ARGS)

        assert "sk-test123" not in caplog.text
