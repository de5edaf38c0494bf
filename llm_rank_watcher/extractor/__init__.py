"""
Extraction module for LLM Rank Watcher.

Turns free-text model replies into structured Top-3 rankings:
- normalizer: case/diacritic/punctuation folding for comparisons
- entity_matcher: maps text fragments to the measured brand or a competitor
- rank_extractor: numbered/bulleted/paragraph strategy cascade
"""

from .entity_matcher import EntityKind, NamedEntity, build_entity_list, find_mention
from .normalizer import normalize_name
from .rank_extractor import (
    ExtractionFlags,
    ExtractionResult,
    RankEntry,
    Ranking,
    extract,
    extract_with_method,
)

__all__ = [
    "EntityKind",
    "ExtractionFlags",
    "ExtractionResult",
    "NamedEntity",
    "RankEntry",
    "Ranking",
    "build_entity_list",
    "extract",
    "extract_with_method",
    "find_mention",
    "normalize_name",
]
