"""
Parsing helpers for the loosely typed values returned by Xtream panels.

Panels disagree on types: ids, years and ratings arrive as ints, floats,
numeric strings or empty strings depending on the vendor. Every helper here
returns ``None`` instead of raising on garbage.
"""
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Naive UTC datetime; all DateTime columns are stored without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def chunked(items: List[T], size: int) -> Iterator[List[T]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        value = value.strip()
        # Integer.parse semantics: leading digits win ("12abc" -> 12)
        digits = ""
        for i, ch in enumerate(value):
            if ch.isdigit() or (i == 0 and ch in "+-"):
                digits += ch
            else:
                break
        try:
            return int(digits)
        except ValueError:
            return None
    return None


def parse_year(value: Any) -> Optional[int]:
    return parse_int(value)


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def parse_date(value: Any) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def to_str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def normalize_backdrop(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, list):
        return [str(v) for v in value if v] or None
    if isinstance(value, str):
        return [value] if value else None
    return None


def is_blank(value: Any) -> bool:
    return value is None or value == "" or value == []


def first_present(*values: Any) -> Any:
    for value in values:
        if not is_blank(value):
            return value
    return None


def unique_by(items: Iterable[T], key, keep_first: bool = False) -> List[T]:
    """Deduplicate by ``key`` in first-seen order; the last occurrence wins unless ``keep_first``."""
    result = {}
    for item in items:
        k = key(item)
        if keep_first and k in result:
            continue
        result[k] = item
    return list(result.values())
