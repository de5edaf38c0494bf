"""
Scoring module for LLM Rank Watcher.

Converts extracted rankings into per-prompt scores and composite indexes.
"""

from .aggregator import (
    UNCATEGORIZED,
    CompositeScore,
    IntentWeight,
    aggregate,
    aggregate_by_category,
    aggregate_by_intent,
    compute_composite,
    parse_intent_weight,
)
from .position import resolve_position
from .score import POSITION_SCORES, score_for

__all__ = [
    "POSITION_SCORES",
    "UNCATEGORIZED",
    "CompositeScore",
    "IntentWeight",
    "aggregate",
    "aggregate_by_category",
    "aggregate_by_intent",
    "compute_composite",
    "parse_intent_weight",
    "resolve_position",
    "score_for",
]
