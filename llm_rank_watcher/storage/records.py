"""
Records returned by the outcome store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from llm_rank_watcher.extractor.rank_extractor import ExtractionFlags, Ranking


class RunStatus(str, Enum):
    """
    Run lifecycle: pending -> running -> completed | failed.

    completed and failed are terminal until the run is re-executed with
    force, which starts again from running.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RunRecord:
    """One measurement run."""

    run_id: str
    brand_name: str
    status: RunStatus
    created_at: str
    updated_at: str
    model_meta: dict[str, Any] | None = None
    tokens_used: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class Override:
    """
    A reviewer's correction of an extracted ranking.

    The original ranking is kept alongside so the correction stays
    auditable and reversible.
    """

    original_ranking: Ranking
    override_ranking: Ranking
    score: float
    overridden_at: str | None = None


@dataclass(frozen=True)
class PromptOutcome:
    """
    Result of asking one prompt within one run.

    Attributes:
        outcome_id: Database identifier
        run_id: Owning run
        prompt_id: Configured prompt id
        prompt_text: Prompt text as asked (without brand/competitor suffix)
        category_id: Prompt category, None when uncategorized
        sequence: 1-based processing order within the run
        ranking: Ranking extracted from the full reply (never rewritten)
        flags: Extraction flags, plus manual_override while overridden
        score: Current score (override score while overridden)
        original_score: Score of the extracted ranking
        raw_text: Reply text as stored (possibly truncated)
        truncated: True when raw_text was cut
        extraction_method: Strategy that produced ranking, None if unknown
        override: Active override, if any
    """

    outcome_id: int
    run_id: str
    prompt_id: str
    prompt_text: str
    category_id: str | None
    sequence: int
    ranking: Ranking
    flags: ExtractionFlags
    score: float
    original_score: float
    raw_text: str
    truncated: bool
    extraction_method: str | None = None
    override: Override | None = None
    created_at: str | None = field(default=None, compare=False)

    @property
    def effective_ranking(self) -> Ranking:
        """Override ranking while an override is active, else the extracted one."""
        if self.override is not None:
            return self.override.override_ranking
        return self.ranking
