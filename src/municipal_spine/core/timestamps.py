"""
UTC timestamp helpers shared by the ledger and the normalizer.

All instants are timezone-aware UTC. Serialized instants use the
millisecond ISO-8601 form with a ``Z`` suffix (``2026-03-01T00:00:00.000Z``)
so that silver date columns sort lexically.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to an ISO 8601 UTC string (naive is taken as UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware datetime."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt
