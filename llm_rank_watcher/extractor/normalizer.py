"""
Display-name normalization for entity matching.

Brand names come back from language models with arbitrary casing, accents
and punctuation ("Café Martínez", "CAFE MARTINEZ!", "Cafe Martinez.").
normalize_name() folds all of these to one comparable form so the entity
matcher can use plain substring tests instead of fuzzy matching.

Example:
    >>> normalize_name("  Café Martínez! ")
    'cafe martinez'
    >>> normalize_name("Warmly.io")
    'warmlyio'
"""

import re
import unicodedata

# Anything that is neither a word character nor whitespace
_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")


def normalize_name(text: str) -> str:
    """
    Canonicalize a display string for case/diacritic/punctuation-insensitive comparison.

    Steps, in order:
    1. Lower-case
    2. Unicode NFD decomposition, then drop combining marks (á -> a)
    3. Remove characters that are neither word characters nor whitespace
    4. Trim leading/trailing whitespace

    Internal whitespace is preserved, so "Acme Plus" stays two words.

    Args:
        text: Any display string. Empty input yields empty output.

    Returns:
        Normalized string.
    """
    lowered = text.lower()
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _PUNCTUATION_PATTERN.sub("", stripped).strip()
