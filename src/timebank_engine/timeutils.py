"""Date and timestamp helpers shared by services and routes."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from timebank_engine.exceptions import ValidationError

DATE_FORMAT = "%Y-%m-%d"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return utcnow().date()


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values (SQLite drops tzinfo) and convert others."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_start(value: date) -> datetime:
    """Midnight UTC at the start of ``value``."""
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def day_end_exclusive(value: date) -> datetime:
    """Midnight UTC at the start of the day after ``value``."""
    return day_start(value + timedelta(days=1))


def parse_date(raw: str | None, field: str) -> date:
    """Parse a ``YYYY-MM-DD`` string, raising ValidationError on bad input."""
    try:
        return datetime.strptime((raw or "").strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD") from None


def parse_optional_date(raw: str | None, field: str) -> date | None:
    if raw is None or not raw.strip():
        return None
    return parse_date(raw, field)


def sync_range(start_raw: str | None, end_raw: str | None) -> tuple[date, date]:
    """Resolve a sync range, defaulting to the last seven days."""
    today = today_utc()
    start = parse_optional_date(start_raw, "start_date") or today - timedelta(days=7)
    end = parse_optional_date(end_raw, "end_date") or today
    if end < start:
        raise ValidationError("end_date must be >= start_date")
    return start, end


def report_range(
    start_raw: str | None,
    end_raw: str | None,
    default_days: int = 30,
) -> tuple[date, date]:
    """Resolve a reporting range.

    With neither bound given the range is the last ``default_days`` days;
    otherwise a missing start is the first of the current month and a
    missing end is today.
    """
    today = today_utc()
    start = parse_optional_date(start_raw, "start_date")
    end = parse_optional_date(end_raw, "end_date")
    if start is None and end is None:
        start = today - timedelta(days=default_days)
    if start is None:
        start = today.replace(day=1)
    if end is None:
        end = today
    if end < start:
        raise ValidationError("end_date must be >= start_date")
    return start, end


def parse_rfc3339(raw: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Blank input returns None; malformed input raises ValueError.
    """
    value = (raw or "").strip()
    if not value:
        return None
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp without offset: {raw!r}")
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def count_workdays(start: date, end: date, include_saturday: bool) -> int:
    """Count days in ``[start, end]`` that are work days.

    Sunday never counts; Saturday counts only when ``include_saturday``.
    """
    if end < start:
        return 0
    total = 0
    for offset in range((end - start).days + 1):
        weekday = (start + timedelta(days=offset)).weekday()
        if weekday == 6 or (weekday == 5 and not include_saturday):
            continue
        total += 1
    return total
