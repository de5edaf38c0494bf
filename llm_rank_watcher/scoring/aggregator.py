"""
Aggregation of per-prompt scores into the composite (PRIA) index.

The composite for a set of prompt scores is their arithmetic mean times 100,
rounded to two decimals with halves rounded away from zero:

    >>> aggregate([1.0, 0.7, 0.4])
    70.0
    >>> aggregate([])
    0.0

compute_composite() is what the run orchestrator persists after every
change. aggregate_by_intent() is a presentation-layer view used by reports
and never written back over the stored composite.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Protocol

from llm_rank_watcher.extractor.normalizer import normalize_name
from llm_rank_watcher.extractor.rank_extractor import Ranking

from .position import resolve_position
from .score import score_for

logger = logging.getLogger(__name__)

# Bucket for outcomes whose prompt has no category
UNCATEGORIZED = "uncategorized"

_TWO_PLACES = Decimal("0.01")

# "Intent: price (40%)" / "Intención: precio (40%)"
_INTENT_PATTERN = re.compile(
    r"(?:intent|intenci[oó]n):\s*([^(\n]+?)\s*\((\d+(?:\.\d+)?)%\)",
    re.IGNORECASE,
)


class ScoredOutcome(Protocol):
    """Anything carrying a category and the ranking that currently counts."""

    category_id: str | None

    @property
    def effective_ranking(self) -> Ranking: ...


@dataclass(frozen=True)
class CompositeScore:
    """Overall composite in [0, 100] plus one composite per category."""

    overall: float
    by_category: dict[str, float] = field(default_factory=dict)


class IntentWeight(NamedTuple):
    """Intent label (normalized) and its percentage weight."""

    label: str
    weight: float


def _round_half_up(value: float) -> float:
    # Decimal(str(x)) avoids binary artefacts such as 0.125 -> 0.12
    return float(Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def aggregate(scores: Iterable[float]) -> float:
    """
    Composite for a set of per-prompt scores.

    Args:
        scores: Scores in [0, 1]

    Returns:
        mean(scores) * 100 rounded to 2 decimals; 0.0 for no scores.
    """
    values = list(scores)
    if not values:
        return 0.0
    return _round_half_up(sum(values) / len(values) * 100)


def aggregate_by_category(
    scores_by_category: Mapping[str, Iterable[float]],
) -> dict[str, float]:
    """Apply aggregate() independently to each category's scores."""
    return {
        category_id: aggregate(scores)
        for category_id, scores in scores_by_category.items()
    }


def parse_intent_weight(prompt_text: str) -> IntentWeight | None:
    """
    Read an intent annotation from prompt text.

    Prompts generated per intent carry a prefix such as
    "Intent: price (40%). Type: ...". The label is normalized so that
    "Precio" and "precio" land in the same bucket.

    Returns:
        IntentWeight, or None when the prompt carries no annotation.
    """
    match = _INTENT_PATTERN.search(prompt_text or "")
    if not match:
        return None

    label = normalize_name(match.group(1))
    if not label:
        return None

    return IntentWeight(label=label, weight=float(match.group(2)))


def aggregate_by_intent(
    weighted_scores: Iterable[tuple[float, IntentWeight | None]],
) -> float:
    """
    Intent-weighted composite for presentation.

    Scores are bucketed by intent label; each bucket's mean (on the 0-100
    scale) is weighted by the bucket's declared percentage, using the first
    weight seen for a label. The weighted sum is divided by the total
    weight, so weights need not add up to 100.

    Without any annotated prompt, or when every weight is zero, this falls
    back to the plain aggregate of all scores.

    Args:
        weighted_scores: (score, intent) pairs; intent None for prompts
            without an annotation

    Returns:
        Weighted composite rounded to 2 decimals.
    """
    all_scores: list[float] = []
    buckets: dict[str, list[float]] = {}
    weights: dict[str, float] = {}

    for score, intent in weighted_scores:
        all_scores.append(score)
        if intent is None:
            continue
        buckets.setdefault(intent.label, []).append(score * 100)
        weights.setdefault(intent.label, intent.weight)

    total_weight = sum(weights.values())
    if not buckets or total_weight <= 0:
        return aggregate(all_scores)

    weighted = sum(
        (sum(values) / len(values)) * (weights[label] / total_weight)
        for label, values in buckets.items()
    )
    return _round_half_up(weighted)


def compute_composite(
    outcomes: Iterable[ScoredOutcome],
    brand_name: str,
    brand_aliases: Iterable[str] = (),
) -> CompositeScore:
    """
    Recompute the composite for a run from its outcomes.

    Each outcome is rescored from its effective ranking, which is the
    override ranking when a manual override is active and the extracted
    ranking otherwise. Outcomes without a category fall into UNCATEGORIZED.

    Args:
        outcomes: All outcomes of one run
        brand_name: Measured brand's canonical name
        brand_aliases: Measured brand's aliases

    Returns:
        CompositeScore with overall and per-category values.
    """
    aliases = list(brand_aliases)
    all_scores: list[float] = []
    scores_by_category: dict[str, list[float]] = {}

    for outcome in outcomes:
        position = resolve_position(outcome.effective_ranking, brand_name, aliases)
        score = score_for(position)
        all_scores.append(score)
        category_id = outcome.category_id or UNCATEGORIZED
        scores_by_category.setdefault(category_id, []).append(score)

    composite = CompositeScore(
        overall=aggregate(all_scores),
        by_category=aggregate_by_category(scores_by_category),
    )
    logger.debug(
        f"Composite over {len(all_scores)} outcomes: {composite.overall} "
        f"({len(composite.by_category)} categories)"
    )
    return composite
