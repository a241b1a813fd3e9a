import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from services.dates import parse_flexible_date, format_date_for_db

_SOLD = re.compile(r"^SOLD\b\s*", re.IGNORECASE)
_TRADED = re.compile(r"^TRADED?\b\s*", re.IGNORECASE)

_DATE_PATTERNS = [
    re.compile(r"(\d{1,2}/\d{1,2}/\d{2,4})"),
    re.compile(r"(\d{4}-\d{2}-\d{2})"),
    re.compile(r"(\d{1,2}/\d{1,2})"),
]
_DOLLAR_AMOUNT = re.compile(r"\$\s?([\d,]+(?:\.\d{1,2})?)")
_BARE_AMOUNT = re.compile(r"(?<![\d/.-])([\d,]{3,}(?:\.\d{1,2})?)(?![\d/])")

# Bare numbers at or below this are treated as noise rather than prices
MIN_BARE_AMOUNT = 100


@dataclass
class ParsedStatus:
    status: str
    sale_info: Optional[dict]
    cleaned_notes: str


def parse_status_from_notes(notes: Optional[str], today: Optional[date] = None) -> ParsedStatus:
    """
    Derives a lifecycle status from free-text notes.

    "SOLD 7/25/2024 - $12,000" -> sold, sale_info {type, date, amount}, notes ""
    "Traded in Vegas $7,000"   -> traded, sale_info {type, amount, notes: "in Vegas"}
    anything else              -> active, notes unchanged
    """
    if not notes or not isinstance(notes, str):
        return ParsedStatus(status="active", sale_info=None, cleaned_notes="")

    trimmed = notes.strip()

    for status, pattern in (("sold", _SOLD), ("traded", _TRADED)):
        match = pattern.match(trimmed)
        if match:
            sale_info = _extract_sale_info(trimmed[match.end():], today=today)
            cleaned = sale_info.get("notes", "")
            sale_info["type"] = status
            return ParsedStatus(status=status, sale_info=sale_info, cleaned_notes=cleaned)

    return ParsedStatus(status="active", sale_info=None, cleaned_notes=trimmed)


def _parse_amount(raw: str) -> Optional[float]:
    try:
        return float(Decimal(raw.replace(",", "")))
    except (InvalidOperation, ValueError):
        return None


def _extract_sale_info(text: str, today: Optional[date] = None) -> dict:
    sale_info: dict = {}
    remaining = text.strip()

    # Dates go first so "7/25" is never mistaken for an amount
    for pattern in _DATE_PATTERNS:
        match = pattern.search(remaining)
        if match:
            parsed = parse_flexible_date(match.group(1), today=today)
            if parsed:
                sale_info["date"] = format_date_for_db(parsed)
                remaining = (remaining[:match.start()] + remaining[match.end():]).strip()
                break

    match = _DOLLAR_AMOUNT.search(remaining)
    amount = _parse_amount(match.group(1)) if match else None
    if match is None or amount is None:
        match = _BARE_AMOUNT.search(remaining)
        amount = _parse_amount(match.group(1)) if match else None
        if amount is not None and amount <= MIN_BARE_AMOUNT:
            amount = None
    if match is not None and amount is not None:
        sale_info["amount"] = amount
        remaining = (remaining[:match.start()] + remaining[match.end():]).strip()

    remaining = re.sub(r"^[\s,-]+", "", remaining)
    remaining = re.sub(r"[\s,-]+$", "", remaining)
    remaining = re.sub(r"\s{2,}", " ", remaining).strip()
    if remaining:
        sale_info["notes"] = remaining

    return sale_info


def _format_amount(amount) -> str:
    value = float(amount)
    if value.is_integer():
        return f"${int(value):,}"
    return f"${value:,.2f}"


def format_sale_info(sale_info: Optional[dict]) -> str:
    """Human readable one-liner, e.g. 'Sold - Jul 25, 2024 - $12,000'"""
    if not sale_info:
        return ""

    parts = []
    if sale_info.get("type"):
        parts.append("Sold" if sale_info["type"] == "sold" else "Traded")
    if sale_info.get("date"):
        parsed = parse_flexible_date(sale_info["date"])
        if parsed:
            parts.append(f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}")
    if sale_info.get("amount"):
        parts.append(_format_amount(sale_info["amount"]))
    if sale_info.get("notes"):
        parts.append(sale_info["notes"])

    return " - ".join(parts)


def encode_status_in_notes(status: str, sale_info: Optional[dict], notes: Optional[str]) -> str:
    """
    Inverse of parse_status_from_notes, used by exports that have no status column.
    Active and maintenance vehicles keep their notes untouched.
    """
    notes = notes or ""
    if status not in ("sold", "traded"):
        return notes

    prefix = status.upper()
    if sale_info:
        if sale_info.get("date"):
            prefix += f" {sale_info['date']}"
        if sale_info.get("amount"):
            prefix += f" {_format_amount(sale_info['amount'])}"
    return f"{prefix} - {notes}" if notes else prefix
