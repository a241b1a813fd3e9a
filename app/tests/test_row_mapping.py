from datetime import date
from types import SimpleNamespace

import pytest

from schemas.archive import (
    PhotoSnapshot,
    ReceiptSnapshot,
    ServiceRecordSnapshot,
    ValueSnapshot,
    VehicleSnapshot,
    VehicleSnapshotData,
)
from schemas.results import ExportOptions
from services.exceptions import ArchiveFormatError, RowValidationError
from services.interchange_csv import (
    COMPREHENSIVE_COLUMNS,
    decode_comprehensive_csv,
    encode_comprehensive_csv,
    filter_vehicles_for_export,
    format_number,
    format_vehicle_row,
    generate_documents_csv,
    generate_service_records_csv,
    generate_vehicle_csv,
)
from services.row_mapping import (
    map_comprehensive_vehicle,
    map_mileage_row,
    map_service_row,
    map_snapshot,
    map_vehicle_fields,
    parse_int,
    parse_money,
    photo_rows,
    snapshot_value_rows,
)

TODAY = date(2024, 8, 1)


def orm_vehicle(**overrides):
    fields = dict(
        name="Bumblebee", make="Honda", model="CBR650F", year=2019, vehicle_type="motorcycle",
        vin=None, plate_number="ABC123", mileage="12,400", tab_expiration=date(2025, 6, 30),
        status="active", notes="garage kept", purchase_price=8500, purchase_date=None,
        nickname=None, maintenance_notes=None, estimated_value=9000.0, sale_info=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestVehicleFields:

    def test_explicit_status_wins_over_notes(self):
        row = map_vehicle_fields({"name": "X", "status": "active", "notes": "SOLD 7/25/2024 - $12,000"}, today=TODAY)
        assert row.status == "active"
        assert row.notes == "SOLD 7/25/2024 - $12,000"
        assert row.sale_info is None

    def test_agreeing_status_keeps_notes(self):
        row = map_vehicle_fields({"name": "X", "status": "Sold", "notes": "Sold to my brother"}, today=TODAY)
        assert row.status == "sold"
        assert row.notes == "Sold to my brother"
        assert row.sale_info is None

    def test_notes_without_status_column_set_status(self):
        row = map_vehicle_fields({"name": "X", "status": "", "notes": "SOLD 7/25/2024 - $12,000"}, today=TODAY)
        assert row.status == "sold"
        assert row.notes is None
        assert row.sale_info.amount == 12000.0

    def test_sale_columns_override_notes(self):
        row = map_vehicle_fields(
            {"name": "X", "notes": "SOLD $12,000 to Sam", "sale_info_amount": "11,500", "sale_info_date": "7/1/2024"},
            today=TODAY,
        )
        assert row.status == "sold"
        assert row.sale_info.amount == 11500.0
        assert row.sale_info.date == "2024-07-01"
        assert row.sale_info.notes == "to Sam"

    def test_enumerations_fall_back(self):
        row = map_vehicle_fields({"name": "X", "vehicle_type": "Car", "status": "stolen"}, today=TODAY)
        assert row.vehicle_type == "car"
        assert row.status == "active"
        assert map_vehicle_fields({"name": "X", "vehicle_type": "spaceship"}).vehicle_type == "motorcycle"

    @pytest.mark.parametrize("raw,expected", [("2019", 2019), ("1850", None), ("2100", None), ("'19", None)])
    def test_year_range(self, raw, expected):
        assert map_vehicle_fields({"name": "X", "year": raw}).year == expected

    def test_name_required(self):
        with pytest.raises(RowValidationError) as exc:
            map_vehicle_fields({"name": "   "})
        assert exc.value.field == "name"

    def test_number_helpers(self):
        assert parse_money("$12,000.50") == 12000.5
        assert parse_money("call me") is None
        assert parse_int("12,400 mi") == 12400
        assert parse_int("n/a") is None


class TestComprehensiveRows:

    def test_vehicle_uses_vehicle_name(self):
        assert map_comprehensive_vehicle({"vehicle_name": "Wrench", "year": "2001"}).name == "Wrench"

    def test_service_row(self):
        row = map_service_row({
            "vehicle_name": "Wrench", "service_title": "Oil Change", "service_date": "",
            "service_cost": "$45.50", "service_odometer": "12,000", "service_category": "REPAIR",
            "service_receipt_files": "Oil.pdf, Oil-2.pdf,",
        }, today=TODAY)
        assert row.service_date == TODAY
        assert row.cost == 45.5
        assert row.odometer == 12000
        assert row.category == "repair"
        assert row.receipt_files == ["Oil.pdf", "Oil-2.pdf"]

    def test_service_requires_title(self):
        with pytest.raises(RowValidationError) as exc:
            map_service_row({"vehicle_name": "Wrench", "service_title": ""})
        assert exc.value.field == "service_title"

    def test_mileage_requires_number(self):
        assert map_mileage_row({"vehicle_name": "Wrench", "mileage": "9,100"}, today=TODAY).mileage == 9100
        with pytest.raises(RowValidationError):
            map_mileage_row({"vehicle_name": "Wrench", "mileage": "lots"})

    def test_missing_vehicle_name(self):
        with pytest.raises(RowValidationError) as exc:
            map_mileage_row({"mileage": "100"})
        assert exc.value.field == "vehicle_name"


class TestInterchangeCsv:

    def test_format_number(self):
        assert format_number(12000.0) == "12000"
        assert format_number(12.5) == "12.5"
        assert format_number(None) == ""
        assert format_number(7) == "7"

    def test_vehicle_row_encodes_status_when_asked(self):
        vehicle = orm_vehicle(status="sold", sale_info={"type": "sold", "date": "2024-07-25", "amount": 12000},
                              notes=None)
        plain = format_vehicle_row(vehicle, ExportOptions())
        encoded = format_vehicle_row(vehicle, ExportOptions(encode_status_in_notes=True))
        assert plain["notes"] == ""
        assert plain["sale_info_amount"] == "12000"
        assert encoded["notes"] == "SOLD 2024-07-25 $12,000"
        assert plain["status"] == "sold"
        assert encoded["status"] == ""

    def test_inactive_vehicles_filtered(self):
        vehicles = [orm_vehicle(name="A"), orm_vehicle(name="B", status="sold"), orm_vehicle(name="C", status="traded")]
        assert [v.name for v in filter_vehicles_for_export(vehicles, ExportOptions(include_inactive=False))] == ["A"]
        assert len(filter_vehicles_for_export(vehicles, ExportOptions())) == 3

    def test_encode_then_decode_splits_by_record_type(self):
        rows = [
            format_vehicle_row(orm_vehicle(), ExportOptions()),
            {"record_type": "service", "vehicle_name": "Bumblebee", "service_title": "Oil, filter",
             "service_receipt_files": "a.pdf,b.pdf"},
            {"record_type": "mileage", "vehicle_name": "Bumblebee", "mileage": "12400"},
        ]
        text = encode_comprehensive_csv(rows)

        assert text.splitlines()[0] == ",".join(COMPREHENSIVE_COLUMNS)
        split = decode_comprehensive_csv(text)
        assert split["vehicle"][0]["tab_expiration"] == "2025-06-30"
        assert split["vehicle"][0]["purchase_price"] == "8500"
        assert split["service"][0]["service_title"] == "Oil, filter"
        assert split["service"][0]["service_receipt_files"] == "a.pdf,b.pdf"
        assert split["mileage"][0]["mileage"] == "12400"
        assert split["document"] == []

    def test_decode_rejects_plain_csv(self):
        with pytest.raises(ArchiveFormatError):
            decode_comprehensive_csv("name,make\nCBR,Honda\n")

    def test_decode_rejects_empty_text(self):
        with pytest.raises(ArchiveFormatError):
            decode_comprehensive_csv("")

    def test_plain_vehicle_csv(self):
        text = generate_vehicle_csv([orm_vehicle()], ExportOptions())
        header, first = text.splitlines()[:2]
        assert header.startswith("name,make,model,year")
        assert first.startswith("Bumblebee,Honda,CBR650F,2019")

    def test_service_records_csv(self):
        record = SimpleNamespace(service_date=date(2024, 5, 1), title="Oil, filter", description=None,
                                 cost=45.5, odometer=12400, shop_name="Moto Shop", category="maintenance")
        lines = generate_service_records_csv([("Bumblebee", record)]).splitlines()
        assert lines == [
            "vehicle_name,service_date,title,description,cost,odometer,shop_name,category",
            'Bumblebee,2024-05-01,"Oil, filter",,45.5,12400,Moto Shop,maintenance',
        ]

    def test_documents_csv(self):
        doc = SimpleNamespace(title="Title", document_type="title", expiration_date=None, notes=None,
                              file_name="title scan.pdf")
        lines = generate_documents_csv([("Bumblebee", doc)]).splitlines()
        assert lines == [
            "vehicle_name,title,document_type,expiration_date,notes,file_name",
            "Bumblebee,Title,title,,,title scan.pdf",
        ]


class TestSnapshots:

    def snapshot(self):
        return VehicleSnapshot(
            vehicle=VehicleSnapshotData(name=None, year=2019, make="Honda", model="CBR650F", status="sold",
                                        notes="SOLD 7/25/2024 - $12,000"),
            photos=[
                PhotoSnapshot(display_order=1, caption="Side", file_name="Side.jpg"),
                PhotoSnapshot(display_order=0, caption="Garage", is_showcase=True, file_name="Garage.jpg"),
            ],
            service_records=[ServiceRecordSnapshot(title="Oil Change", service_date="2024-05-01",
                                                   receipts=[ReceiptSnapshot(file_name="Oil.pdf")])],
            value_history=[ValueSnapshot(estimated_value=9000, recorded_date="2024-01-01", source="KBB")],
        )

    def test_legacy_snapshot_name_from_year_make_model(self):
        rows = map_snapshot(self.snapshot(), today=TODAY)
        assert rows.vehicle.name == "2019 Honda CBR650F"
        assert rows.vehicle.status == "sold"
        assert rows.vehicle.notes == "SOLD 7/25/2024 - $12,000"
        assert rows.services[0].receipt_files == ["Oil.pdf"]
        assert rows.services[0].service_date == date(2024, 5, 1)

    def test_value_rows(self):
        values = snapshot_value_rows(self.snapshot(), "Bee", today=TODAY)
        assert [(v.estimated_value, v.recorded_date, v.source) for v in values] == [(9000.0, date(2024, 1, 1), "KBB")]
        assert snapshot_value_rows(None, "Bee") == []

    def test_photo_rows_by_file_name(self):
        rows = photo_rows(self.snapshot(), "Bee", ["Garage.jpg", "Unknown.jpg", "Side.jpg"])
        assert [(r.caption, r.is_showcase) for r in rows] == [("Garage", True), (None, False), ("Side", False)]

    def test_photo_rows_by_position_for_old_snapshots(self):
        snap = VehicleSnapshot(
            vehicle=VehicleSnapshotData(name="Bee"),
            photos=[PhotoSnapshot(display_order=1, caption="Second"), PhotoSnapshot(display_order=0, caption="First")],
        )
        rows = photo_rows(snap, "Bee", ["a.jpg", "b.jpg", "c.jpg"])
        assert [r.caption for r in rows] == ["First", "Second", None]
