"""
Run orchestration for LLM Rank Watcher.

RunOrchestrator drives one run through its state machine

    pending -> running -> completed
                       -> failed

asking every prompt of the run exactly once, extracting a Top 3 ranking
from each reply, scoring it and persisting the outcome together with the
recomputed composite.

Key rules:
- Prompts run strictly sequentially, in the order given.
- One completion call per prompt, bounded by an operation-level timeout.
  Retrying is the completion service's business, never the orchestrator's.
- Extraction always sees the full reply; only the stored copy is truncated.
- Fail fast: the first failed completion marks the run failed, keeps the
  outcomes persisted so far, skips the remaining prompts and raises
  RunExecutionError.
- A run that already has outcomes is only re-executed with force, which
  discards the old outcomes first.

Manual overrides go through the same orchestrator so the composite is
always recomputed in the same transaction as the change.

Example:
    >>> store = OutcomeStore(config.run_settings.sqlite_db_path)
    >>> orchestrator = RunOrchestrator(store, service, config.entities(), config.brand)
    >>> store.create_run(run_id, config.brand.name)
    >>> result = await orchestrator.run_prompts(run_id, config.active_prompts(), RunOptions())
    >>> result.composite.overall
    56.67
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from llm_rank_watcher.config.constants import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_SECONDS,
    MAX_STORED_RESPONSE_CHARS,
    NO_COMPETITORS_LABEL,
    USER_PROMPT_TEMPLATE,
)
from llm_rank_watcher.config.schema import Brand, PromptConfig
from llm_rank_watcher.exceptions import (
    LLMTimeoutError,
    RunExecutionError,
    RunStateError,
)
from llm_rank_watcher.extractor.entity_matcher import EntityKind, NamedEntity
from llm_rank_watcher.extractor.rank_extractor import RankEntry, extract_with_method
from llm_rank_watcher.scoring.aggregator import CompositeScore, compute_composite
from llm_rank_watcher.scoring.position import resolve_position
from llm_rank_watcher.scoring.score import score_for
from llm_rank_watcher.storage.codec import validate_override
from llm_rank_watcher.storage.records import PromptOutcome, RunStatus
from llm_rank_watcher.storage.store import OutcomeStore
from llm_rank_watcher.utils.logging import log_with_context

from .models import CompletionService

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """
    Per-run completion options.

    Attributes:
        model: Completion model identifier
        temperature: Sampling temperature
        max_tokens: Completion token cap
        force: Discard existing outcomes and re-run
        timeout_seconds: Operation-level timeout per completion call
        system_prompt: System message asking for a numbered Top 3
        max_stored_chars: Stored reply text cut-off
    """

    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    force: bool = False
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_stored_chars: int = MAX_STORED_RESPONSE_CHARS

    def model_meta(self) -> dict[str, Any]:
        """Model metadata recorded on the run when it starts."""
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }


@dataclass
class RunResult:
    """Outcome of a completed run."""

    run_id: str
    outcomes: list[PromptOutcome] = field(default_factory=list)
    tokens_used: int = 0
    composite: CompositeScore | None = None


def truncate_reply(text: str, max_chars: int = MAX_STORED_RESPONSE_CHARS) -> tuple[str, bool]:
    """Cut text to max_chars characters. Returns (text, truncated)."""
    if len(text) > max_chars:
        return text[:max_chars], True
    return text, False


def build_user_prompt(prompt_text: str, entities: Sequence[NamedEntity]) -> str:
    """
    Append the measured brand and the competitor list to a prompt.

    Example:
        >>> build_user_prompt("Best CRM?", entities)
        'Best CRM?\\n\\nBrand to measure: Acme.\\nCompetitors: Globex, Initech.'
    """
    brand_name = next(
        (e.name for e in entities if e.kind == EntityKind.MEASURED_BRAND), ""
    )
    competitors = ", ".join(
        e.name for e in entities if e.kind == EntityKind.COMPETITOR
    )
    return USER_PROMPT_TEMPLATE.format(
        prompt_text=prompt_text,
        brand_name=brand_name,
        competitors=competitors or NO_COMPETITORS_LABEL,
    )


class RunOrchestrator:
    """
    Executes runs and applies manual overrides for one measured brand.

    Args:
        store: Persistence facade
        completion_service: Where replies come from
        entities: Priority-ordered entities (measured brand first)
        brand: Measured brand (name and aliases for position lookup)
    """

    def __init__(
        self,
        store: OutcomeStore,
        completion_service: CompletionService,
        entities: Sequence[NamedEntity],
        brand: Brand,
    ):
        if not entities or entities[0].kind != EntityKind.MEASURED_BRAND:
            raise ValueError("entities must start with the measured brand")

        self.store = store
        self.completion_service = completion_service
        self.entities = list(entities)
        self.brand = brand

    def _compose(self, outcomes: Sequence[PromptOutcome]) -> CompositeScore:
        return compute_composite(outcomes, self.brand.name, self.brand.aliases)

    def _score(self, ranking) -> float:
        return score_for(resolve_position(ranking, self.brand.name, self.brand.aliases))

    def _store_reply(
        self, run_id: str, prompt: PromptConfig, reply_text: str, max_stored_chars: int
    ) -> tuple[PromptOutcome, CompositeScore]:
        """Extract, score, truncate and persist one reply."""
        extraction = extract_with_method(reply_text, self.entities)
        score = self._score(extraction.ranking)
        stored_text, truncated = truncate_reply(reply_text, max_stored_chars)

        if truncated:
            logger.warning(
                f"Reply to prompt '{prompt.id}' truncated from {len(reply_text):,} "
                f"to {max_stored_chars:,} characters"
            )

        outcome, composite = self.store.append_outcome(
            run_id=run_id,
            prompt_id=prompt.id,
            prompt_text=prompt.text,
            category_id=prompt.category,
            ranking=extraction.ranking,
            flags=extraction.flags,
            score=score,
            raw_text=stored_text,
            truncated=truncated,
            extraction_method=extraction.method,
            composer=self._compose,
        )

        log_with_context(
            logger,
            logging.INFO,
            "Prompt outcome stored",
            context={
                "prompt_id": prompt.id,
                "method": extraction.method,
                "entries": len(extraction.ranking),
                "score": score,
                "flags": extraction.flags.active(),
                "composite": composite.overall,
            },
            run_id=run_id,
        )
        return outcome, composite

    async def _complete(self, prompt: PromptConfig, options: RunOptions):
        try:
            return await asyncio.wait_for(
                self.completion_service.complete(
                    system_prompt=options.system_prompt,
                    user_prompt=build_user_prompt(prompt.text, self.entities),
                    model=options.model,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                ),
                timeout=options.timeout_seconds,
            )
        except TimeoutError as e:
            raise LLMTimeoutError(
                f"Completion for prompt '{prompt.id}' timed out after "
                f"{options.timeout_seconds}s"
            ) from e

    async def run_prompts(
        self,
        run_id: str,
        prompts: Sequence[PromptConfig],
        options: RunOptions | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ) -> RunResult:
        """
        Execute a run.

        Args:
            run_id: Existing run (see OutcomeStore.create_run)
            prompts: Prompts in the order to ask them
            options: Completion options, defaults to RunOptions()
            progress_callback: Called as (completed, total, prompt_id) before
                each prompt

        Returns:
            RunResult with stored outcomes, total tokens and final composite

        Raises:
            RunStateError: Unknown run, no prompts, a run already executing,
                or existing outcomes without force
            RunExecutionError: A completion call failed; the run is now failed
            DatabaseError: Storing an outcome failed; the run is marked failed
                before the error propagates
        """
        options = options or RunOptions()
        run = self.store.require_run(run_id)

        if not prompts:
            raise RunStateError(f"No active prompts to run for run {run_id}")

        if run.status == RunStatus.RUNNING and not options.force:
            raise RunStateError(f"Run {run_id} is already running")

        existing = self.store.count_outcomes(run_id)
        if existing:
            if not options.force:
                raise RunStateError(
                    f"Run {run_id} already has {existing} outcomes; use force to re-run"
                )
            self.store.discard_outcomes(run_id)

        self.store.mark_running(run_id, options.model_meta())
        log_with_context(
            logger,
            logging.INFO,
            "Run started",
            context={"prompts": len(prompts), **options.model_meta()},
            run_id=run_id,
        )

        result = RunResult(run_id=run_id)

        for index, prompt in enumerate(prompts):
            if progress_callback:
                progress_callback(index, len(prompts), prompt.id)

            try:
                completion = await self._complete(prompt, options)
            except Exception as e:
                message = f"Prompt '{prompt.id}' failed: {e}"
                logger.error(message, exc_info=True, extra={"run_id": run_id})
                self.store.mark_failed(run_id, message, tokens_used=result.tokens_used)
                raise RunExecutionError(
                    message,
                    run_id=run_id,
                    prompt_id=prompt.id,
                    completed_prompts=index,
                    tokens_used=result.tokens_used,
                ) from e

            result.tokens_used += completion.tokens_used
            try:
                outcome, composite = self._store_reply(
                    run_id, prompt, completion.text, options.max_stored_chars
                )
            except Exception as e:
                message = f"Storing outcome for prompt '{prompt.id}' failed: {e}"
                logger.error(message, exc_info=True, extra={"run_id": run_id})
                self.store.mark_failed(run_id, message, tokens_used=result.tokens_used)
                raise
            result.outcomes.append(outcome)
            result.composite = composite

        self.store.mark_completed(run_id, tokens_used=result.tokens_used)
        log_with_context(
            logger,
            logging.INFO,
            "Run completed",
            context={
                "prompts": len(result.outcomes),
                "tokens_used": result.tokens_used,
                "composite": result.composite.overall if result.composite else None,
            },
            run_id=run_id,
        )
        return result

    def record_result(
        self,
        run_id: str,
        prompt: PromptConfig,
        reply_text: str,
        max_stored_chars: int = MAX_STORED_RESPONSE_CHARS,
    ) -> PromptOutcome:
        """
        Ingest a reply obtained outside the completion service.

        Runs the same extraction and scoring as run_prompts, persists the
        outcome, recomputes the composite and marks the run completed.

        Raises:
            RunStateError: Unknown run, a run currently executing, or a
                prompt that already has an outcome in this run
        """
        run = self.store.require_run(run_id)
        if run.status == RunStatus.RUNNING:
            raise RunStateError(f"Run {run_id} is currently executing")

        outcome, _ = self._store_reply(run_id, prompt, reply_text, max_stored_chars)
        self.store.mark_completed(run_id)
        return outcome

    def apply_override(
        self,
        outcome_id: int,
        new_ranking: Iterable[Mapping[str, Any] | RankEntry],
    ) -> PromptOutcome:
        """
        Replace an outcome's effective ranking with a reviewer's ranking.

        The extracted ranking is preserved; the outcome is flagged
        manual_override, rescored from the new ranking and the run's
        composite recomputed. The run's status is not changed.

        Raises:
            OverrideValidationError: Invalid ranking (nothing is changed)
            RunStateError: Unknown outcome
        """
        ranking = validate_override(new_ranking)
        self.store.require_outcome(outcome_id)

        score = self._score(ranking)
        outcome, composite = self.store.set_override(
            outcome_id, ranking, score, composer=self._compose
        )

        log_with_context(
            logger,
            logging.INFO,
            "Manual override applied",
            context={
                "outcome_id": outcome_id,
                "prompt_id": outcome.prompt_id,
                "score": score,
                "original_score": outcome.original_score,
                "composite": composite.overall,
            },
            run_id=outcome.run_id,
        )
        return outcome

    def clear_override(self, outcome_id: int) -> PromptOutcome:
        """
        Remove an outcome's override, restoring its extracted score.

        Raises:
            RunStateError: Unknown outcome, or no active override
        """
        current = self.store.require_outcome(outcome_id)
        if current.override is None:
            raise RunStateError(f"Outcome {outcome_id} has no active override")

        outcome, composite = self.store.set_override(
            outcome_id, None, current.original_score, composer=self._compose
        )

        log_with_context(
            logger,
            logging.INFO,
            "Manual override cleared",
            context={
                "outcome_id": outcome_id,
                "prompt_id": outcome.prompt_id,
                "score": outcome.score,
                "composite": composite.overall,
            },
            run_id=outcome.run_id,
        )
        return outcome
