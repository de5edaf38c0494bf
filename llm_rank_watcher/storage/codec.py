"""
JSON codec for rankings and flags stored in prompt_outcomes.

Rankings are stored with a schema_version tag so the audit trail survives
future field additions:

    {"schema_version": 1, "entries": [
        {"position": 1, "entity_name": "Acme", "entity_kind": "brand"}]}

Flags are stored sparsely, only the flags that are set:

    {"ambiguous_ranking": true, "no_ranking": true}

Malformed stored JSON raises RankingDataIntegrityError; it is never
silently coerced to an empty ranking. Override input goes through
validate_override(), which raises OverrideValidationError before anything
is written.
"""

import json
from collections.abc import Iterable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from llm_rank_watcher.exceptions import (
    OverrideValidationError,
    RankingDataIntegrityError,
)
from llm_rank_watcher.extractor.rank_extractor import (
    ExtractionFlags,
    RankEntry,
    Ranking,
)

RANKING_SCHEMA_VERSION = 1

# Override rankings are a Top 3
MAX_OVERRIDE_POSITION = 3


class StoredRankEntry(BaseModel):
    """One ranking entry as persisted."""

    model_config = ConfigDict(extra="ignore")

    position: int = Field(ge=1)
    entity_name: str = Field(min_length=1)
    entity_kind: Literal["brand", "competitor"]


class StoredRanking(BaseModel):
    """Schema-versioned ranking envelope. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = Field(default=RANKING_SCHEMA_VERSION, ge=1)
    entries: list[StoredRankEntry] = []


class OverrideEntry(BaseModel):
    """One entry of a reviewer-supplied override ranking."""

    position: int = Field(ge=1, le=MAX_OVERRIDE_POSITION)
    entity_name: str
    entity_kind: Literal["brand", "competitor"]

    @field_validator("entity_name")
    @classmethod
    def validate_entity_name(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("entity_name cannot be empty")
        return v.strip()


def encode_ranking(ranking: Ranking) -> str:
    """Serialize a ranking into the versioned JSON envelope."""
    stored = StoredRanking(
        schema_version=RANKING_SCHEMA_VERSION,
        entries=[
            StoredRankEntry(
                position=entry.position,
                entity_name=entry.entity_name,
                entity_kind=entry.entity_kind,
            )
            for entry in ranking
        ],
    )
    return stored.model_dump_json()


def decode_ranking(raw: str) -> Ranking:
    """
    Deserialize a stored ranking.

    Raises:
        RankingDataIntegrityError: If raw is not valid JSON or does not
            match the envelope
    """
    try:
        stored = StoredRanking.model_validate_json(raw)
    except ValidationError as e:
        raise RankingDataIntegrityError(f"Malformed stored ranking: {e}") from e

    return tuple(
        RankEntry(
            position=entry.position,
            entity_name=entry.entity_name,
            entity_kind=entry.entity_kind,
        )
        for entry in stored.entries
    )


def encode_flags(flags: ExtractionFlags) -> str:
    return json.dumps(flags.to_dict(), sort_keys=True)


def decode_flags(raw: str) -> ExtractionFlags:
    """
    Deserialize stored flags.

    Raises:
        RankingDataIntegrityError: If raw is not a JSON object of known flags
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RankingDataIntegrityError(f"Malformed stored flags: {e}") from e

    if not isinstance(data, dict):
        raise RankingDataIntegrityError(
            f"Stored flags must be a JSON object, got {type(data).__name__}"
        )

    try:
        return ExtractionFlags.from_dict(data)
    except ValueError as e:
        raise RankingDataIntegrityError(str(e)) from e


def validate_override(entries: Iterable[Mapping[str, Any] | RankEntry]) -> Ranking:
    """
    Validate a reviewer-supplied ranking.

    Accepts dicts (CLI/JSON input) or RankEntry values. Positions must be
    within 1..3 and unique, kinds must be brand or competitor. An empty
    ranking is allowed ("the brand is not in the Top 3").

    Returns:
        Ranking sorted by position

    Raises:
        OverrideValidationError: On any invalid entry
    """
    validated: list[OverrideEntry] = []

    for index, entry in enumerate(entries):
        data = (
            {
                "position": entry.position,
                "entity_name": entry.entity_name,
                "entity_kind": entry.entity_kind,
            }
            if isinstance(entry, RankEntry)
            else entry
        )
        try:
            validated.append(OverrideEntry.model_validate(data))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise OverrideValidationError(
                f"Invalid override entry #{index + 1}: {problems}"
            ) from e

    positions = [entry.position for entry in validated]
    if len(positions) != len(set(positions)):
        duplicates = sorted({p for p in positions if positions.count(p) > 1})
        raise OverrideValidationError(f"Duplicate override positions: {duplicates}")

    return tuple(
        RankEntry(
            position=entry.position,
            entity_name=entry.entity_name,
            entity_kind=entry.entity_kind,
        )
        for entry in sorted(validated, key=lambda e: e.position)
    )
