from datetime import date

import pytest

from services.dates import normalize_date, parse_flexible_date
from services.status_parser import encode_status_in_notes, format_sale_info, parse_status_from_notes

TODAY = date(2024, 8, 1)


class TestFlexibleDates:

    @pytest.mark.parametrize("raw,expected", [
        ("6/25/2026", date(2026, 6, 25)),
        ("6/25/26", date(2026, 6, 25)),
        ("2026-06-25", date(2026, 6, 25)),
        ("2026-06-25T10:30:00Z", date(2026, 6, 25)),
        (" 12/1/2024 ", date(2024, 12, 1)),
    ])
    def test_supported_spellings(self, raw, expected):
        assert parse_flexible_date(raw, today=TODAY) == expected

    def test_month_day_rolls_to_next_year_once_passed(self):
        assert parse_flexible_date("6/25", today=TODAY) == date(2025, 6, 25)
        assert parse_flexible_date("9/15", today=TODAY) == date(2024, 9, 15)

    @pytest.mark.parametrize("raw", ["2/30/2024", "13/1/2024", "next tuesday", "", None])
    def test_unparseable_is_none(self, raw):
        assert parse_flexible_date(raw, today=TODAY) is None

    def test_normalize_date(self):
        assert normalize_date("7/4/24") == "2024-07-04"
        assert normalize_date("soon") is None


class TestStatusFromNotes:

    def test_sold_with_date_and_amount(self):
        parsed = parse_status_from_notes("SOLD 7/25/2024 - $12,000", today=TODAY)
        assert parsed.status == "sold"
        assert parsed.sale_info == {"type": "sold", "date": "2024-07-25", "amount": 12000.0}
        assert parsed.cleaned_notes == ""

    def test_traded_keeps_remaining_text_as_notes(self):
        parsed = parse_status_from_notes("Traded in Vegas $7,000", today=TODAY)
        assert parsed.status == "traded"
        assert parsed.sale_info["amount"] == 7000.0
        assert parsed.sale_info["notes"] == "in Vegas"
        assert parsed.cleaned_notes == "in Vegas"

    def test_trade_spelling_also_matches(self):
        assert parse_status_from_notes("TRADE for a Grom", today=TODAY).status == "traded"

    def test_small_bare_numbers_are_not_prices(self):
        parsed = parse_status_from_notes("sold to 2 brothers", today=TODAY)
        assert "amount" not in parsed.sale_info

    def test_bare_amount_above_threshold(self):
        parsed = parse_status_from_notes("sold 4500 cash", today=TODAY)
        assert parsed.sale_info["amount"] == 4500.0
        assert parsed.sale_info["notes"] == "cash"

    def test_plain_notes_stay_active(self):
        parsed = parse_status_from_notes("  New tires in spring ", today=TODAY)
        assert parsed.status == "active"
        assert parsed.sale_info is None
        assert parsed.cleaned_notes == "New tires in spring"

    def test_empty_notes(self):
        assert parse_status_from_notes(None).status == "active"


class TestStatusEncoding:

    def test_encode_then_parse_recovers_sale(self):
        encoded = encode_status_in_notes("sold", {"date": "2024-07-25", "amount": 12000}, "to a friend")
        assert encoded == "SOLD 2024-07-25 $12,000 - to a friend"

        parsed = parse_status_from_notes(encoded, today=TODAY)
        assert parsed.status == "sold"
        assert parsed.sale_info["date"] == "2024-07-25"
        assert parsed.sale_info["amount"] == 12000.0
        assert parsed.cleaned_notes == "to a friend"

    def test_active_notes_untouched(self):
        assert encode_status_in_notes("active", None, "garage queen") == "garage queen"
        assert encode_status_in_notes("maintenance", None, None) == ""

    def test_format_sale_info(self):
        text = format_sale_info({"type": "sold", "date": "2024-07-25", "amount": 12000.5, "notes": "cash"})
        assert text == "Sold - Jul 25, 2024 - $12,000.50 - cash"
        assert format_sale_info(None) == ""
