"""Small input normalizers shared by the services."""

from __future__ import annotations

NOTE_MAX_LENGTH = 255

# Writers into the ledger or adjustments hold this lock shared; closing
# holds it exclusively.
CLOSURE_LOCK_SCOPE = "time_bank_closure"


def normalize_note(value: str | None) -> str | None:
    """Trim free text; blank becomes None, long values are truncated."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value[:NOTE_MAX_LENGTH]


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)
