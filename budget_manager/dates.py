from __future__ import annotations

import re
from datetime import datetime, timezone

UI_DATE_FORMAT = "%d/%m/%Y %H:%M"
_UI_DATE_SHAPE = re.compile(r"\d{2}/\d{2}/\d{4} \d{2}:\d{2}", re.ASCII)


def parse_ui_date(value: str) -> datetime | None:
    """Parse a ``dd/MM/yyyy HH:mm`` string.

    Returns ``None`` for malformed or impossible dates so callers can attach
    a field-level error instead of handling an exception.
    """
    if not isinstance(value, str) or not _UI_DATE_SHAPE.fullmatch(value):
        return None
    try:
        return datetime.strptime(value, UI_DATE_FORMAT)
    except ValueError:
        return None


def format_ui_date(value: datetime) -> str:
    return value.strftime(UI_DATE_FORMAT)


def to_iso(value: datetime) -> str:
    return value.isoformat()


def parse_iso(value: str) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    candidate = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def to_naive_utc(value: datetime) -> datetime:
    """Drop the offset of an aware timestamp after moving it to UTC.

    Naive values are wall-clock values and are returned unchanged.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_inclusive_end(value: datetime) -> datetime:
    return value.replace(second=59, microsecond=999000)


def current_month_range(now: datetime | None = None) -> tuple[datetime, datetime]:
    current = now or datetime.now()
    start = current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = current.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start, end
