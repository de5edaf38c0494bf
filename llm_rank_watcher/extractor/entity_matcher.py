"""
Entity matching for rank extraction.

Decides whether a text fragment (one list line or one paragraph of a model
reply) mentions the measured brand or one of its competitors.

Matching is a normalized substring test, not word-boundary or fuzzy
matching: after normalize_name(), an entity matches when its name or any
alias occurs anywhere in the fragment.

Tie-break: the FIRST entity in the supplied order wins. Callers therefore
pass the measured brand first, then competitors in their stored order, so
that on ambiguous overlap ("Acme" vs "Acme Plus") the brand is preferred.

Example:
    >>> entities = build_entity_list("Acme", [], [("Acme Plus", [])])
    >>> find_mention("I recommend Acme Plus", entities).name
    'Acme'
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .normalizer import normalize_name

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Role of a named entity in a measurement."""

    MEASURED_BRAND = "brand"
    COMPETITOR = "competitor"


@dataclass(frozen=True)
class NamedEntity:
    """
    A brand or competitor known to the extraction context.

    Attributes:
        name: Canonical display name (what gets stored in rankings)
        kind: MEASURED_BRAND or COMPETITOR
        aliases: Alternative spellings, matched in declared order after name
    """

    name: str
    kind: EntityKind
    aliases: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Validate name is non-empty."""
        if not self.name or self.name.isspace():
            raise ValueError("Entity name cannot be empty")

    def terms(self) -> list[str]:
        """Return the name followed by its aliases."""
        return [self.name, *self.aliases]


def find_mention(
    fragment: str, entities: Sequence[NamedEntity]
) -> NamedEntity | None:
    """
    Return the first entity mentioned in fragment, or None.

    The fragment is normalized once. For each entity in order, its
    normalized name is tested first, then each normalized alias; the first
    entity with any term contained in the fragment is returned.

    Terms that normalize to an empty string (e.g. an alias of only
    punctuation) never match.

    Args:
        fragment: Text to search (a line, bullet or paragraph)
        entities: Priority-ordered entity list (brand first)

    Returns:
        Matched NamedEntity, or None if the fragment mentions none of them.
        None is a valid outcome, not an error.
    """
    normalized_fragment = normalize_name(fragment)
    if not normalized_fragment:
        return None

    for entity in entities:
        for term in entity.terms():
            normalized_term = normalize_name(term)
            if normalized_term and normalized_term in normalized_fragment:
                return entity

    return None


def build_entity_list(
    brand_name: str,
    brand_aliases: Iterable[str],
    competitors: Iterable[tuple[str, Iterable[str]]],
) -> list[NamedEntity]:
    """
    Build the priority-ordered entity list for one extraction context.

    The measured brand comes first, then competitors in the given order.
    No two entities may share a normalized term: when a later entity
    declares a term already owned by an earlier one, the term is dropped
    from the later entity (first-declared wins) and a warning is logged.
    A competitor whose primary name collides keeps the name for display
    but the name will effectively never match ahead of the earlier owner.

    Args:
        brand_name: Measured brand's canonical name
        brand_aliases: Measured brand's aliases
        competitors: (name, aliases) pairs in stored order

    Returns:
        List of NamedEntity, brand first.
    """
    claimed: dict[str, str] = {}
    entities: list[NamedEntity] = []

    def _claim_aliases(owner: str, aliases: Iterable[str]) -> tuple[str, ...]:
        kept = []
        for alias in aliases:
            if not alias or alias.isspace():
                continue
            key = normalize_name(alias)
            if not key:
                continue
            if key in claimed:
                if claimed[key] != owner:
                    logger.warning(
                        f"Alias '{alias}' of '{owner}' overlaps with "
                        f"'{claimed[key]}', keeping first-declared owner"
                    )
                continue
            claimed[key] = owner
            kept.append(alias.strip())
        return tuple(kept)

    claimed[normalize_name(brand_name)] = brand_name
    entities.append(
        NamedEntity(
            name=brand_name.strip(),
            kind=EntityKind.MEASURED_BRAND,
            aliases=_claim_aliases(brand_name, brand_aliases),
        )
    )

    for competitor_name, competitor_aliases in competitors:
        key = normalize_name(competitor_name)
        if key in claimed:
            logger.warning(
                f"Competitor '{competitor_name}' overlaps with "
                f"'{claimed[key]}', keeping first-declared owner"
            )
        else:
            claimed[key] = competitor_name
        entities.append(
            NamedEntity(
                name=competitor_name.strip(),
                kind=EntityKind.COMPETITOR,
                aliases=_claim_aliases(competitor_name, competitor_aliases),
            )
        )

    return entities
