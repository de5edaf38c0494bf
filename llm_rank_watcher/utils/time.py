"""
UTC timestamp helpers.

Every timestamp in the database, in logs and in run identifiers is UTC with
an explicit 'Z' marker. Naive datetimes are rejected.

Examples:
    >>> utc_timestamp()
    '2025-11-02T08:30:45Z'
    >>> run_id_from_timestamp()
    '2025-11-02T08-30-45Z'
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return the current time as an ISO 8601 string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def run_id_from_timestamp(dt: datetime | None = None) -> str:
    """
    Build a filesystem-safe run identifier from a UTC datetime.

    Colons are replaced by hyphens so the slug can double as a directory
    name (YYYY-MM-DDTHH-MM-SSZ). Identifiers sort chronologically.

    Args:
        dt: Timezone-aware datetime, converted to UTC. Defaults to utc_now().

    Raises:
        ValueError: If dt is naive.
    """
    if dt is None:
        dt = utc_now()

    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime."
        )

    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H-%M-%SZ")
