"""
OpenAI Chat Completions client for LLM Rank Watcher.

Implements the CompletionService protocol over httpx.AsyncClient with
tenacity retries on transient failures.

Key features:
- Retry on transient failures (429, 5xx, network errors) with exponential backoff
- Fail fast on permanent errors (400, 401, 403, 404)
- httpx errors translated to the LLMProviderError hierarchy
- Security: NEVER logs API keys

Example:
    >>> client = OpenAIChatClient(api_key="sk-...")
    >>> result = await client.complete(
    ...     "Answer with a numbered Top 3.", "Best CRM for small teams?",
    ...     model="gpt-4o-mini", temperature=0.2, max_tokens=800,
    ... )
    >>> result.tokens_used
    412
"""

import logging
from typing import Any

import httpx

from llm_rank_watcher.config.constants import MAX_PROMPT_LENGTH
from llm_rank_watcher.exceptions import (
    LLMAuthenticationError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
)
from llm_rank_watcher.llm_runner.models import CompletionResult
from llm_rank_watcher.llm_runner.retry_config import (
    MAX_ATTEMPTS,
    MAX_WAIT_SECONDS,
    MIN_WAIT_SECONDS,
    NO_RETRY_STATUS_CODES,
    REQUEST_TIMEOUT,
    create_retry_decorator,
)
from llm_rank_watcher.utils.time import utc_timestamp

# Suppress HTTPX request logging to prevent test interference
httpx_logger = logging.getLogger("httpx")
httpx_logger.setLevel(logging.WARNING)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"

AUTH_STATUS_CODES = frozenset([401, 403])

logger = logging.getLogger(__name__)


class OpenAIChatClient:
    """
    OpenAI Chat Completions client with async retry logic.

    Attributes:
        api_key: OpenAI API key for authentication (NEVER logged)
        api_url: Endpoint URL, overridable for compatible gateways

    Retry behavior:
        - Max attempts: 3 (from retry_config.MAX_ATTEMPTS)
        - Backoff: exponential starting at 1s, max 60s
        - Timeout: 60s per attempt (from retry_config.REQUEST_TIMEOUT)
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = OPENAI_API_URL,
        max_attempts: int = MAX_ATTEMPTS,
        min_wait: float = MIN_WAIT_SECONDS,
        max_wait: float = MAX_WAIT_SECONDS,
    ):
        """
        Initialize the client.

        Raises:
            ValueError: If api_key is empty
        """
        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.api_key = api_key
        self.api_url = api_url
        self._post = create_retry_decorator(max_attempts, min_wait, max_wait)(
            self._post_once
        )

        logger.info(f"Initialized OpenAI chat client for {api_url}")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        """
        Send one chat completion request.

        Args:
            system_prompt: System message (Top 3 format instructions)
            user_prompt: Prompt text with brand and competitor list
            model: Model identifier (e.g., "gpt-4o-mini")
            temperature: Sampling temperature
            max_tokens: Completion token cap

        Returns:
            CompletionResult with reply text and token usage

        Raises:
            ValueError: If user_prompt is empty or too long
            LLMAuthenticationError: On 401/403 (never retried)
            LLMRateLimitError: On 429 after all retries
            LLMTimeoutError: On HTTP timeout after all retries
            LLMResponseError: On other HTTP errors or a malformed body
        """
        if not user_prompt or user_prompt.isspace():
            raise ValueError("Prompt cannot be empty")

        if len(user_prompt) > MAX_PROMPT_LENGTH:
            raise ValueError(
                f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH:,} characters "
                f"(received {len(user_prompt):,} characters). "
                f"Please shorten your prompt to stay within the limit."
            )

        payload = {
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

        logger.debug(f"Sending request to OpenAI: model={model}")

        try:
            response = await self._post(payload)

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = self._extract_error_detail(e.response)
            logger.error(
                f"OpenAI API HTTP error: status={status}, model={model}, detail={detail}"
            )
            if status == 429:
                raise LLMRateLimitError(
                    f"OpenAI rate limit exceeded: model={model}, detail={detail}"
                ) from e
            raise LLMResponseError(
                f"OpenAI API error: status={status}, model={model}, detail={detail}"
            ) from e

        except httpx.TimeoutException as e:
            logger.error(f"OpenAI API timeout: model={model}, error={e}")
            raise LLMTimeoutError(f"OpenAI request timed out: model={model}") from e

        except httpx.HTTPError as e:
            logger.error(f"OpenAI API connection error: model={model}, error={e}")
            raise LLMResponseError(
                f"OpenAI connection error: model={model}, error={e}"
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise LLMResponseError(f"Failed to parse OpenAI response JSON: {e}") from e

        text = self._extract_reply_text(data)
        tokens_used, prompt_tokens, completion_tokens = self._extract_token_usage(data)

        return CompletionResult(
            text=text,
            tokens_used=tokens_used,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            model_name=str(data.get("model") or model),
            provider="openai",
            timestamp_utc=utc_timestamp(),
        )

    async def _post_once(self, payload: dict[str, Any]) -> httpx.Response:
        """
        Single HTTP attempt, wrapped by the retry decorator in __init__.

        Permanent failures raise non-httpx exceptions so they escape the
        retry loop on the first attempt.
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            response = await client.post(self.api_url, json=payload, headers=headers)

        if response.status_code in NO_RETRY_STATUS_CODES:
            detail = self._extract_error_detail(response)
            logger.error(
                f"OpenAI API error (non-retryable): status={response.status_code}, "
                f"model={payload['model']}, detail={detail}"
            )
            if response.status_code in AUTH_STATUS_CODES:
                raise LLMAuthenticationError(
                    f"OpenAI rejected the API key: status={response.status_code}, "
                    f"detail={detail}"
                )
            raise LLMResponseError(
                f"OpenAI API error (non-retryable): status={response.status_code}, "
                f"model={payload['model']}, detail={detail}"
            )

        # 429 and 5xx raise HTTPStatusError, which the decorator retries
        response.raise_for_status()
        return response

    def _extract_reply_text(self, data: dict[str, Any]) -> str:
        """
        Extract the first choice's message content.

        A null content (e.g. a refusal) is treated as an empty reply, which
        extracts to an unstructured outcome rather than failing the run.

        Raises:
            LLMResponseError: If choices or message are missing
        """
        try:
            choices = data["choices"]
            if not choices:
                raise LLMResponseError("OpenAI response has empty 'choices' array")
            message = choices[0]["message"]
        except (KeyError, TypeError, IndexError) as e:
            raise LLMResponseError(f"Invalid OpenAI response structure: {e}") from e

        content = message.get("content") if isinstance(message, dict) else None
        return (content or "").strip()

    def _extract_token_usage(self, data: dict[str, Any]) -> tuple[int, int, int]:
        """
        Extract (total, prompt, completion) token counts.

        Returns (0, 0, 0) and logs a warning when usage is missing.
        """
        usage = data.get("usage")
        if not usage or not isinstance(usage, dict):
            logger.warning("OpenAI response missing 'usage' data, token count will be zero")
            return 0, 0, 0

        total_tokens = usage.get("total_tokens") or 0
        prompt_tokens = usage.get("prompt_tokens") or 0
        completion_tokens = usage.get("completion_tokens") or 0

        return int(total_tokens), int(prompt_tokens), int(completion_tokens)

    def _extract_error_detail(self, response: httpx.Response) -> str:
        """
        Extract the error message from an OpenAI error body.

        NEVER includes API keys; only the body's error.message is used.
        """
        try:
            error = response.json().get("error", {})
            return str(error.get("message", "Unknown error"))
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}"
