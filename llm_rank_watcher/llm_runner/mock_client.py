"""
Mock completion service for tests and offline runs.

Implements the CompletionService protocol without making API calls.

Replies are looked up by prompt text: an exact match on the full user
prompt wins, otherwise the first configured key contained in the user
prompt is used. This lets tests key replies on the configured prompt text
even though the orchestrator appends the brand and competitor list.

Example:
    >>> service = MockCompletionService(
    ...     responses={"best CRM": "1. Acme\\n2. Globex\\n3. Initech"}
    ... )
    >>> result = await service.complete("sys", "best CRM\\n\\nBrand to measure: Acme.", "m", 0.2, 800)
    >>> result.text
    '1. Acme\\n2. Globex\\n3. Initech'
"""

import asyncio
import logging
from dataclasses import dataclass, field

from llm_rank_watcher.llm_runner.models import CompletionResult
from llm_rank_watcher.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class MockCompletionService:
    """
    Deterministic completion service.

    Attributes:
        responses: Prompt text (or fragment) to reply text
        failures: Prompt text (or fragment) to the exception raised for it
        default_response: Reply when no key matches
        tokens_per_response: Token count reported per call
        delay_seconds: Sleep before replying, for timeout tests
        calls: User prompts received, in call order
    """

    responses: dict[str, str] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)
    default_response: str = "Mock LLM response."
    tokens_per_response: int = 100
    delay_seconds: float = 0.0
    calls: list[str] = field(default_factory=list)

    def __post_init__(self):
        logger.info(
            f"Initialized MockCompletionService with {len(self.responses)} configured responses"
        )

    @staticmethod
    def _lookup(table: dict, user_prompt: str):
        if user_prompt in table:
            return table[user_prompt]
        for key, value in table.items():
            if key in user_prompt:
                return value
        return None

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        """Return the configured reply, or raise the configured failure."""
        self.calls.append(user_prompt)

        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        failure = self._lookup(self.failures, user_prompt)
        if failure is not None:
            raise failure

        text = self._lookup(self.responses, user_prompt)
        if text is None:
            text = self.default_response

        logger.debug(f"MockCompletionService returning reply for prompt: {user_prompt[:50]}...")

        return CompletionResult(
            text=text,
            tokens_used=self.tokens_per_response,
            prompt_tokens=self.tokens_per_response // 2,
            completion_tokens=self.tokens_per_response // 2,
            model_name=model,
            provider="mock",
            timestamp_utc=utc_timestamp(),
        )
