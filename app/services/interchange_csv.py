import io
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

from schemas.results import ExportOptions
from services.dates import format_date_for_db
from services.exceptions import ArchiveFormatError
from services.status_parser import encode_status_in_notes

logger = logging.getLogger(__name__)

VEHICLE_COLUMNS = [
    "vehicle_name", "make", "model", "year", "vehicle_type", "vin", "plate_number",
    "mileage", "tab_expiration", "status", "notes", "purchase_price", "purchase_date",
    "nickname", "maintenance_notes", "estimated_value", "sale_info_type",
    "sale_info_date", "sale_info_amount", "sale_info_notes",
]
SERVICE_COLUMNS = [
    "vehicle_name", "service_date", "service_title", "service_description", "service_cost",
    "service_odometer", "service_shop", "service_category", "service_receipt_files",
]
DOCUMENT_COLUMNS = [
    "vehicle_name", "document_title", "document_type", "document_expiration", "notes",
    "document_file_name", "document_file_type",
]
MILEAGE_COLUMNS = ["vehicle_name", "mileage", "recorded_date", "notes"]

RECORD_COLUMNS = {
    "vehicle": VEHICLE_COLUMNS,
    "service": SERVICE_COLUMNS,
    "document": DOCUMENT_COLUMNS,
    "mileage": MILEAGE_COLUMNS,
}


def _union_columns() -> List[str]:
    columns = ["record_type"]
    for record_columns in RECORD_COLUMNS.values():
        for column in record_columns:
            if column not in columns:
                columns.append(column)
    return columns


COMPREHENSIVE_COLUMNS = _union_columns()

# Header of the plain one-row-per-vehicle CSV, also the documented loose import format
PLAIN_VEHICLE_COLUMNS = [
    "name", "make", "model", "year", "vehicle_type", "vin", "plate_number", "mileage",
    "tab_expiration", "status", "notes", "purchase_price", "purchase_date", "nickname",
    "maintenance_notes",
]

INACTIVE_STATUSES = ("sold", "traded")


def format_number(value) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, (int,)):
        return str(value)
    number = Decimal(str(value))
    if number == number.to_integral_value():
        return str(int(number))
    return format(number.normalize(), "f")


def _text(value) -> str:
    return "" if value is None else str(value)


def _date(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return format_date_for_db(value) or ""


def filter_vehicles_for_export(vehicles: Iterable, options: ExportOptions) -> list:
    vehicles = list(vehicles)
    if options.include_inactive:
        return vehicles
    return [v for v in vehicles if v.status not in INACTIVE_STATUSES]


def _status_in_notes(vehicle, options: ExportOptions) -> bool:
    return options.encode_status_in_notes and vehicle.status in INACTIVE_STATUSES


def _vehicle_notes(vehicle, options: ExportOptions) -> str:
    if _status_in_notes(vehicle, options):
        return encode_status_in_notes(vehicle.status, vehicle.sale_info, vehicle.notes)
    return _text(vehicle.notes)


def format_vehicle_row(vehicle, options: ExportOptions) -> Dict[str, str]:
    """Comprehensive-CSV vehicle row for an ORM vehicle (or anything shaped like one)."""
    sale_info = vehicle.sale_info or {}
    return {
        "record_type": "vehicle",
        "vehicle_name": _text(vehicle.name),
        "make": _text(vehicle.make),
        "model": _text(vehicle.model),
        "year": _text(vehicle.year),
        "vehicle_type": vehicle.vehicle_type or "motorcycle",
        "vin": _text(vehicle.vin),
        "plate_number": _text(vehicle.plate_number),
        "mileage": _text(vehicle.mileage),
        "tab_expiration": _date(vehicle.tab_expiration),
        # an empty status cell lets the importer read the status back from the notes
        "status": "" if _status_in_notes(vehicle, options) else (vehicle.status or "active"),
        "notes": _vehicle_notes(vehicle, options),
        "purchase_price": format_number(vehicle.purchase_price),
        "purchase_date": _date(vehicle.purchase_date),
        "nickname": _text(vehicle.nickname),
        "maintenance_notes": _text(vehicle.maintenance_notes),
        "estimated_value": format_number(vehicle.estimated_value),
        "sale_info_type": _text(sale_info.get("type")),
        "sale_info_date": _text(sale_info.get("date")),
        "sale_info_amount": format_number(sale_info.get("amount")),
        "sale_info_notes": _text(sale_info.get("notes")),
    }


def format_service_row(vehicle_name: str, record, receipt_files: List[str]) -> Dict[str, str]:
    return {
        "record_type": "service",
        "vehicle_name": vehicle_name,
        "service_date": _date(record.service_date),
        "service_title": _text(record.title),
        "service_description": _text(record.description),
        "service_cost": format_number(record.cost),
        "service_odometer": _text(record.odometer),
        "service_shop": _text(record.shop_name),
        "service_category": record.category or "maintenance",
        "service_receipt_files": ",".join(receipt_files),
    }


def format_document_row(vehicle_name: str, document, file_name: Optional[str]) -> Dict[str, str]:
    return {
        "record_type": "document",
        "vehicle_name": vehicle_name,
        "document_title": _text(document.title),
        "document_type": document.document_type or "other",
        "document_expiration": _date(document.expiration_date),
        "notes": _text(document.notes),
        "document_file_name": _text(file_name),
        "document_file_type": _text(document.file_type),
    }


def format_mileage_row(vehicle_name: str, entry) -> Dict[str, str]:
    return {
        "record_type": "mileage",
        "vehicle_name": vehicle_name,
        "mileage": _text(entry.mileage),
        "recorded_date": _date(entry.recorded_date),
        "notes": _text(entry.notes),
    }


def encode_comprehensive_csv(rows: List[Dict[str, str]]) -> str:
    """Rows must already carry their record_type; unknown keys are dropped."""
    df = pd.DataFrame(rows, columns=COMPREHENSIVE_COLUMNS)
    return df.fillna("").to_csv(index=False, lineterminator="\n")


def generate_vehicle_csv(vehicles: Iterable, options: ExportOptions) -> str:
    """Plain one-row-per-vehicle CSV in the documented loose import format."""
    rows = []
    for vehicle in filter_vehicles_for_export(vehicles, options):
        full = format_vehicle_row(vehicle, options)
        full["name"] = full.pop("vehicle_name")
        rows.append({column: full.get(column, "") for column in PLAIN_VEHICLE_COLUMNS})
    df = pd.DataFrame(rows, columns=PLAIN_VEHICLE_COLUMNS)
    return df.to_csv(index=False, lineterminator="\n")


# Per-table CSVs for spreadsheet users, one row per record
SERVICE_RECORD_EXPORT_COLUMNS = [
    "vehicle_name", "service_date", "title", "description", "cost", "odometer", "shop_name", "category",
]
DOCUMENT_EXPORT_COLUMNS = ["vehicle_name", "title", "document_type", "expiration_date", "notes", "file_name"]


def generate_service_records_csv(records: Iterable[tuple]) -> str:
    """`records` yields (vehicle_name, service_record) pairs."""
    rows = [
        {
            "vehicle_name": vehicle_name,
            "service_date": _date(record.service_date),
            "title": _text(record.title),
            "description": _text(record.description),
            "cost": format_number(record.cost),
            "odometer": _text(record.odometer),
            "shop_name": _text(record.shop_name),
            "category": _text(record.category),
        }
        for vehicle_name, record in records
    ]
    df = pd.DataFrame(rows, columns=SERVICE_RECORD_EXPORT_COLUMNS)
    return df.to_csv(index=False, lineterminator="\n")


def generate_documents_csv(documents: Iterable[tuple]) -> str:
    """`documents` yields (vehicle_name, document) pairs."""
    rows = [
        {
            "vehicle_name": vehicle_name,
            "title": _text(document.title),
            "document_type": _text(document.document_type),
            "expiration_date": _date(document.expiration_date),
            "notes": _text(document.notes),
            "file_name": _text(document.file_name),
        }
        for vehicle_name, document in documents
    ]
    df = pd.DataFrame(rows, columns=DOCUMENT_EXPORT_COLUMNS)
    return df.to_csv(index=False, lineterminator="\n")


def read_csv_records(text: str) -> tuple:
    """(header list, list of row dicts) with every cell as a stripped string."""
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
        )
    except EmptyDataError as e:
        raise ArchiveFormatError("The CSV file is empty.") from e
    except ParserError as e:
        raise ArchiveFormatError(f"The CSV file could not be parsed: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    df = df.apply(lambda col: col.str.strip())
    return list(df.columns), df.to_dict(orient="records")


def is_comprehensive_csv(headers: List[str]) -> bool:
    return "record_type" in headers and "vehicle_name" in headers


def split_records(records: List[Dict[str, str]]) -> Dict[str, List[Dict[str, str]]]:
    """
    Split comprehensive CSV rows by record_type.

    Returns {'vehicle': [...], 'service': [...], 'document': [...], 'mileage': [...]}.
    Rows with an unknown record_type are logged and dropped.
    """
    split: Dict[str, List[Dict[str, str]]] = {key: [] for key in RECORD_COLUMNS}
    unknown = 0
    for record in records:
        record_type = (record.get("record_type") or "").lower()
        if record_type not in split:
            unknown += 1
            continue
        split[record_type].append({column: record.get(column, "") for column in RECORD_COLUMNS[record_type]})

    if unknown:
        logger.warning("Dropped rows with unknown record_type", extra={"count": unknown})
    return split


def decode_comprehensive_csv(text: str) -> Dict[str, List[Dict[str, str]]]:
    headers, records = read_csv_records(text)
    if not is_comprehensive_csv(headers):
        raise ArchiveFormatError("CSV is missing the record_type/vehicle_name columns of a collection export.")
    return split_records(records)
