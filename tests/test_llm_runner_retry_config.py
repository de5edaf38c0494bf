"""
Tests for llm_runner.retry_config module.
"""

import httpx
import pytest

from llm_rank_watcher.exceptions import LLMAuthenticationError
from llm_rank_watcher.llm_runner.retry_config import (
    MAX_ATTEMPTS,
    NO_RETRY_STATUS_CODES,
    RETRY_STATUS_CODES,
    create_retry_decorator,
)


def _status_error(status):
    request = httpx.Request("POST", "https://api.example.com")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestConstants:
    def test_retry_and_no_retry_codes_disjoint(self):
        assert not RETRY_STATUS_CODES & NO_RETRY_STATUS_CODES

    def test_rate_limit_is_retried(self):
        assert 429 in RETRY_STATUS_CODES

    def test_auth_errors_not_retried(self):
        assert {401, 403} <= NO_RETRY_STATUS_CODES


class TestCreateRetryDecorator:
    @pytest.mark.asyncio
    async def test_retries_transient_errors_then_succeeds(self):
        attempts = []

        @create_retry_decorator(min_wait=0, max_wait=0)
        async def call():
            attempts.append(1)
            if len(attempts) < MAX_ATTEMPTS:
                raise _status_error(503)
            return "ok"

        assert await call() == "ok"
        assert len(attempts) == MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        attempts = []

        @create_retry_decorator(max_attempts=2, min_wait=0, max_wait=0)
        async def call():
            attempts.append(1)
            raise httpx.ConnectError("refused")

        with pytest.raises(httpx.ConnectError):
            await call()
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_other_exceptions_not_retried(self):
        attempts = []

        @create_retry_decorator(min_wait=0, max_wait=0)
        async def call():
            attempts.append(1)
            raise LLMAuthenticationError("bad key")

        with pytest.raises(LLMAuthenticationError):
            await call()
        assert len(attempts) == 1
