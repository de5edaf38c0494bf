"""
Top-3 rank extraction from free-text model replies.

Turns a reply such as

    1. Acme - great support
    2. Globex - good value
    3. Initech - ok

into an ordered Ranking of (position, entity, kind) entries, using a cascade
of structural strategies tried in fixed priority order:

1. Numbered list   "1. X" / "1) X"   position = marker number
2. Bulleted list   "• X" / "- X" / "* X"   sequential positions
3. Paragraphs      blocks separated by blank lines   sequential positions
4. Fallback        nothing recognized -> empty ranking + ambiguity flags

The first strategy yielding at least one matched entity wins; later
strategies are not attempted. Any recognized structure counts as
sufficient confidence, so strategies 1-3 return an empty flag set even when
fewer than three entities were identified.

Each strategy only looks at its first three candidates (lines, bullets or
paragraphs) in document order. Bullets and paragraphs skip entities already
placed; numbered lists do not de-duplicate, so the same entity can occupy
two numbered positions.

Extraction is purely syntactic and deterministic: it never calls a model.

Example:
    >>> entities = build_entity_list("Acme", [], [("Globex", []), ("Initech", [])])
    >>> ranking, flags = extract("1. Acme - great\\n2. Globex - good\\n3. Initech - ok", entities)
    >>> [(e.position, e.entity_name, e.entity_kind) for e in ranking]
    [(1, 'Acme', 'brand'), (2, 'Globex', 'competitor'), (3, 'Initech', 'competitor')]
    >>> flags.is_empty()
    True
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, fields, replace

from .entity_matcher import NamedEntity, find_mention

# Candidates examined per strategy
MAX_CANDIDATES = 3

ENTITY_KINDS = ("brand", "competitor")

_NUMBERED_LINE = re.compile(r"^[ \t]*([1-9]\d*)[.)][ \t]*(\S.*)$", re.MULTILINE)
_BULLET_LINE = re.compile(r"^[ \t]*[•*-][ \t]*(.*\w.*)$", re.MULTILINE)
_BLANK_LINE = re.compile(r"\r?\n[ \t]*\r?\n")


@dataclass(frozen=True)
class RankEntry:
    """
    One placed entity in a Ranking.

    Attributes:
        position: Rank position (1 = top). Numbered lists keep the marker
            number, so positions can be sparse.
        entity_name: Canonical entity name (NamedEntity.name)
        entity_kind: "brand" or "competitor"
    """

    position: int
    entity_name: str
    entity_kind: str

    def __post_init__(self):
        """Validate position and kind."""
        if self.position < 1:
            raise ValueError(f"position must be >= 1, got: {self.position}")
        if self.entity_kind not in ENTITY_KINDS:
            raise ValueError(
                f"entity_kind must be 'brand' or 'competitor', got: {self.entity_kind}"
            )


Ranking = tuple[RankEntry, ...]


@dataclass(frozen=True)
class ExtractionFlags:
    """
    Diagnostic flags attached to a prompt outcome.

    Flags are not mutually exclusive. No flag set means a ranking was
    extracted from a recognized structural format.
    """

    ambiguous_ranking: bool = False
    no_ranking: bool = False
    brand_not_detected: bool = False
    competitor_detected: bool = False
    parsing_error: bool = False
    incomplete_response: bool = False
    manual_override: bool = False

    def is_empty(self) -> bool:
        """Return True when no flag is set."""
        return not any(asdict(self).values())

    def active(self) -> list[str]:
        """Return names of the flags that are set, in declaration order."""
        return [name for name, value in asdict(self).items() if value]

    def to_dict(self) -> dict[str, bool]:
        """Serialize only the flags that are set (sparse JSON shape)."""
        return {name: True for name in self.active()}

    def with_flags(self, **changes: bool) -> "ExtractionFlags":
        """Return a copy with the given flags changed."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, bool]) -> "ExtractionFlags":
        """
        Build flags from a stored mapping.

        Raises:
            ValueError: If data contains an unknown flag name.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown extraction flags: {sorted(unknown)}")
        return cls(**{name: bool(value) for name, value in data.items()})


@dataclass(frozen=True)
class ExtractionResult:
    """Ranking and flags plus the name of the strategy that produced them."""

    ranking: Ranking
    flags: ExtractionFlags
    method: str


def _entry_for(position: int, entity: NamedEntity) -> RankEntry:
    return RankEntry(
        position=position,
        entity_name=entity.name,
        entity_kind=entity.kind.value,
    )


def _try_numbered_list(text: str, entities: Sequence[NamedEntity]) -> Ranking:
    """
    Match the first three numbered lines ("N." or "N)").

    The marker number is kept as the position; lines that match no entity
    leave a gap. Repeated entities are NOT de-duplicated.
    """
    ranking: list[RankEntry] = []

    for match in list(_NUMBERED_LINE.finditer(text))[:MAX_CANDIDATES]:
        entity = find_mention(match.group(2), entities)
        if entity:
            ranking.append(_entry_for(int(match.group(1)), entity))

    return tuple(ranking)


def _try_bulleted_list(text: str, entities: Sequence[NamedEntity]) -> Ranking:
    """
    Match the first three bullet lines ("•", "-" or "*").

    Positions are assigned 1, 2, 3 in order of successful, non-duplicate
    matches only.
    """
    ranking: list[RankEntry] = []
    seen: set[str] = set()

    for match in list(_BULLET_LINE.finditer(text))[:MAX_CANDIDATES]:
        entity = find_mention(match.group(1), entities)
        if entity and entity.name not in seen:
            ranking.append(_entry_for(len(ranking) + 1, entity))
            seen.add(entity.name)

    return tuple(ranking)


def _try_paragraphs(text: str, entities: Sequence[NamedEntity]) -> Ranking:
    """
    Match the first three blank-line separated paragraphs.

    A reply without any blank-line boundary is one block of running text
    and has no paragraph structure, so it yields nothing here.
    """
    paragraphs = [p for p in _BLANK_LINE.split(text.strip()) if p.strip()]
    if len(paragraphs) < 2:
        return ()

    ranking: list[RankEntry] = []
    seen: set[str] = set()

    for paragraph in paragraphs[:MAX_CANDIDATES]:
        entity = find_mention(paragraph, entities)
        if entity and entity.name not in seen:
            ranking.append(_entry_for(len(ranking) + 1, entity))
            seen.add(entity.name)

    return tuple(ranking)


Strategy = Callable[[str, Sequence[NamedEntity]], Ranking]

# Priority order matters: first non-empty result wins
STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("numbered_list", _try_numbered_list),
    ("bulleted_list", _try_bulleted_list),
    ("paragraphs", _try_paragraphs),
)

UNSTRUCTURED_FLAGS = ExtractionFlags(ambiguous_ranking=True, no_ranking=True)


def extract_with_method(
    reply_text: str, entities: Sequence[NamedEntity]
) -> ExtractionResult:
    """
    Run the strategy cascade and report which strategy won.

    Returns:
        ExtractionResult with method one of "numbered_list",
        "bulleted_list", "paragraphs" or "unstructured".
    """
    if reply_text and entities:
        for method, strategy in STRATEGIES:
            ranking = strategy(reply_text, entities)
            if ranking:
                return ExtractionResult(
                    ranking=ranking, flags=ExtractionFlags(), method=method
                )

    return ExtractionResult(ranking=(), flags=UNSTRUCTURED_FLAGS, method="unstructured")


def extract(
    reply_text: str, entities: Sequence[NamedEntity]
) -> tuple[Ranking, ExtractionFlags]:
    """
    Extract the Top-3 ranking from a model reply.

    Args:
        reply_text: Full, untruncated reply text
        entities: Priority-ordered entities (measured brand first)

    Returns:
        (ranking, flags). An unstructured reply yields an empty ranking
        with ambiguous_ranking and no_ranking set.
    """
    result = extract_with_method(reply_text, entities)
    return result.ranking, result.flags
