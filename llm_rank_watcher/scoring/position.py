"""
Brand position lookup within an extracted ranking.
"""

from collections.abc import Iterable

from llm_rank_watcher.extractor.rank_extractor import Ranking


def resolve_position(
    ranking: Ranking, brand_name: str, brand_aliases: Iterable[str] = ()
) -> int | None:
    """
    Return the position of the first entry naming the measured brand.

    An entry names the brand when its entity_name equals the brand name or
    one of its aliases under case-folding only. Accents and punctuation are
    NOT folded here: entries produced by extraction always carry the
    canonical brand name, so only hand-entered override rankings can differ,
    and those are compared as typed.

    Args:
        ranking: Ranking in stored order
        brand_name: Measured brand's canonical name
        brand_aliases: Measured brand's aliases

    Returns:
        Position of the first matching entry, or None if the brand is absent.
    """
    names = {brand_name.casefold(), *(alias.casefold() for alias in brand_aliases)}

    for entry in ranking:
        if entry.entity_name.casefold() in names:
            return entry.position

    return None
