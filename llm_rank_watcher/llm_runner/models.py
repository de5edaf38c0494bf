"""
Completion service abstraction and factory for LLM Rank Watcher.

The run orchestrator only depends on the CompletionService protocol: one
async call that turns a system prompt and a user prompt into reply text
plus token usage. Concrete services:

- OpenAIChatClient: OpenAI Chat Completions API over httpx
- MockCompletionService: canned replies for tests and offline runs

Example:
    >>> service = build_completion_service("openai", api_key)
    >>> result = await service.complete(
    ...     system_prompt="Answer with a numbered Top 3.",
    ...     user_prompt="What is the best CRM?",
    ...     model="gpt-4o-mini",
    ...     temperature=0.2,
    ...     max_tokens=800,
    ... )
    >>> result.text
    '1. Acme - ...'
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass
class CompletionResult:
    """
    Reply from one completion call.

    Attributes:
        text: Complete reply text (never truncated here)
        tokens_used: Total tokens consumed (prompt + completion), 0 if unknown
        prompt_tokens: Tokens in the request
        completion_tokens: Tokens in the reply
        model_name: Model that actually answered, as reported by the provider
        provider: Provider name ("openai", "mock")
        timestamp_utc: ISO 8601 timestamp with 'Z' suffix
    """

    text: str
    tokens_used: int
    model_name: str
    provider: str
    timestamp_utc: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class CompletionService(Protocol):
    """
    Provider-agnostic interface for completion services.

    Implementations MUST:
    - Raise an LLMProviderError subclass (or let any exception escape) on
      failure. The orchestrator treats any exception as a failed prompt.
    - Never log API keys or sensitive credentials.
    - Use UTC timestamps from utils.time.
    """

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        """
        Execute one completion request.

        Returns:
            CompletionResult with the full reply text and token usage
        """
        ...


def build_completion_service(provider: str, api_key: str | None = None) -> CompletionService:
    """
    Factory for the configured completion service.

    Args:
        provider: "openai" or "mock"
        api_key: API key for authentication (NEVER logged or persisted).
            Ignored for the mock provider.

    Returns:
        CompletionService implementation

    Raises:
        ValueError: If provider is not supported or the key is missing
    """
    if provider == "openai":
        # Import here to keep imports lazy
        from llm_rank_watcher.llm_runner.openai_client import OpenAIChatClient

        if not api_key:
            raise ValueError("api_key is required for the openai provider")
        return OpenAIChatClient(api_key=api_key)

    if provider == "mock":
        from llm_rank_watcher.llm_runner.mock_client import MockCompletionService

        return MockCompletionService()

    raise ValueError(
        f"Unsupported provider: '{provider}'. Supported providers: openai, mock"
    )
