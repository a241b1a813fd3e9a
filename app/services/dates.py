import re
from datetime import date, datetime
from typing import Optional, Union

_ISO = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_FULL_YEAR = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_SHORT_YEAR = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")
_NO_YEAR = re.compile(r"^(\d{1,2})/(\d{1,2})$")


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_flexible_date(value: Union[str, date, None], today: Optional[date] = None) -> Optional[date]:
    """
    Parses the loose date spellings people type into spreadsheets.

    Supported forms:
        6/25        -> this year, or next year if that day already passed
        6/25/26     -> 2026-06-25 (two-digit years are 20xx)
        6/25/2026   -> 2026-06-25
        2026-06-25  -> ISO, an optional time part is ignored

    Returns None for anything else, including impossible dates like 2/30.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    trimmed = str(value).strip()
    if not trimmed:
        return None

    m = _ISO.match(trimmed)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _FULL_YEAR.match(trimmed)
    if m:
        return _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))

    m = _SHORT_YEAR.match(trimmed)
    if m:
        return _safe_date(2000 + int(m.group(3)), int(m.group(1)), int(m.group(2)))

    m = _NO_YEAR.match(trimmed)
    if m:
        today = today or date.today()
        month, day = int(m.group(1)), int(m.group(2))
        candidate = _safe_date(today.year, month, day)
        if candidate and candidate < today:
            candidate = _safe_date(today.year + 1, month, day)
        return candidate

    return None


def format_date_for_db(value: Optional[date]) -> Optional[str]:
    """YYYY-MM-DD, or None"""
    if value is None:
        return None
    return value.strftime("%Y-%m-%d")


def normalize_date(value: Union[str, date, None], today: Optional[date] = None) -> Optional[str]:
    return format_date_for_db(parse_flexible_date(value, today=today))
