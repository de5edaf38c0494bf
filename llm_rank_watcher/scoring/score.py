"""
Position to per-prompt score mapping.

    position 1 -> 1.0
    position 2 -> 0.7
    position 3 -> 0.4
    anything else (absent, 4+, sparse numbered markers) -> 0.0
"""

POSITION_SCORES: dict[int, float] = {1: 1.0, 2: 0.7, 3: 0.4}


def score_for(position: int | None) -> float:
    """Map a brand position to a score in [0, 1]. Total: never raises."""
    if position is None:
        return 0.0
    return POSITION_SCORES.get(position, 0.0)
