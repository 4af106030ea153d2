from __future__ import annotations

import re
from datetime import datetime, timezone

_NUMBER_PATTERN = re.compile(r'\d+')


def normalize_sort_text(value: str | None) -> str:
    return (value or '').strip().lower()


def extract_leading_number(value: str | None) -> int | None:
    match = _NUMBER_PATTERN.search(value or '')
    if not match:
        return None
    return int(match.group(0))


def natural_sort_key(value: str | None) -> tuple[int, int, str]:
    normalized = normalize_sort_text(value)
    number = extract_leading_number(value)
    if number is None:
        return (1, 0, normalized)
    return (0, number, normalized)


def slot_sort_key(*, room_no: str | None, floor: str | None, row_id: int = 0) -> tuple:
    """Lowest room number first, then lowest floor, then placement order."""
    return (*natural_sort_key(room_no), *natural_sort_key(floor), row_id)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
