"""
Unit tests for loose CSV support (services/csv_mapping.py).

Tests cover:
- Banner line detection
- Header auto-mapping
- Near-empty row filtering
- Row mapping with status derived from notes
"""

from datetime import date

from services.csv_mapping import (
    apply_mapping,
    auto_map_columns,
    map_loose_rows,
    parse_loose_csv,
    strip_preamble,
)

TODAY = date(2024, 8, 1)

SPREADSHEET = (
    "\ufeffMy Bikes 2024\n"
    "Bike Name,Make,Model,Year,VIN,Plate,Odometer,Tab Expires,Notes,Price Paid\n"
    'CBR,Honda,CBR650F,2019,VIN1,ABC123,"12,400",6/30/2025,"SOLD 7/25/2024 - $12,000","$8,500"\n'
    "Grom,Honda,Grom,2021,,,900,,weekend toy,3200\n"
    ",Yamaha,R1,2020,,,,,,\n"
    "Totals,,,,,,,,,\n"
    ",,,,,,,,,\n"
)


class TestPreamble:

    def test_banner_without_commas_is_dropped(self):
        body, banner = strip_preamble("Inventory export\nname,make\nCBR,Honda\n")
        assert banner == "Inventory export"
        assert body.splitlines()[0] == "name,make"

    def test_banner_with_few_commas_is_dropped(self):
        body, banner = strip_preamble("Exported, 2024\na,b,c,d,e\n1,2,3,4,5\n")
        assert banner == "Exported, 2024"
        assert body.startswith("a,b,c,d,e")

    def test_header_first_is_kept(self):
        text = "name,make\nCBR,Honda\n"
        assert strip_preamble(text) == (text, None)

    def test_single_line_untouched(self):
        assert strip_preamble("just one line") == ("just one line", None)


class TestAutoMapping:

    def test_spreadsheet_headers(self):
        mapping = auto_map_columns(
            ["Bike Name", "Make", "Model", "Year", "VIN", "Plate", "Odometer", "Tab Expires", "Notes", "Price Paid"]
        )
        assert mapping == {
            "name": "Bike Name",
            "make": "Make",
            "model": "Model",
            "year": "Year",
            "vin": "VIN",
            "plate_number": "Plate",
            "mileage": "Odometer",
            "tab_expiration": "Tab Expires",
            "notes": "Notes",
            "purchase_price": "Price Paid",
        }

    def test_each_field_assigned_once(self):
        mapping = auto_map_columns(["Name", "Vehicle", "Status"])
        assert mapping == {"name": "Name", "status": "Status"}

    def test_unknown_headers_are_left_out(self):
        assert auto_map_columns(["Color", "Owner"]) == {}

    def test_apply_mapping(self):
        record = {"Bike Name": "CBR", "Color": "red"}
        assert apply_mapping(record, {"name": "Bike Name", "make": "Make"}) == {"name": "CBR", "make": ""}


class TestParseAndMap:

    def test_parse_drops_bom_banner_and_junk_rows(self):
        parsed = parse_loose_csv(SPREADSHEET)
        assert parsed.banner == "My Bikes 2024"
        assert parsed.headers[0] == "Bike Name"
        assert len(parsed.rows) == 3
        assert parsed.discarded_rows == 2

    def test_rows_map_with_status_from_notes(self):
        parsed = parse_loose_csv(SPREADSHEET)
        rows, previews = map_loose_rows(parsed.rows, auto_map_columns(parsed.headers), today=TODAY)

        assert [r.name for r in rows] == ["CBR", "Grom"]
        cbr = rows[0]
        assert cbr.make == "Honda"
        assert cbr.year == 2019
        assert cbr.mileage == "12,400"
        assert cbr.tab_expiration == date(2025, 6, 30)
        assert cbr.purchase_price == 8500.0
        assert cbr.status == "sold"
        assert cbr.notes is None
        assert cbr.sale_info.date == "2024-07-25"
        assert cbr.sale_info.amount == 12000.0

        grom = rows[1]
        assert grom.status == "active"
        assert grom.notes == "weekend toy"
        assert grom.sale_info is None

    def test_row_without_name_only_in_preview(self):
        parsed = parse_loose_csv(SPREADSHEET)
        _, previews = map_loose_rows(parsed.rows, auto_map_columns(parsed.headers), today=TODAY)

        assert [p.valid for p in previews] == [True, True, False]
        invalid = previews[2]
        assert invalid.row_number == 3
        assert invalid.field == "name"
        assert invalid.error == "Name is required"
