"""
Loose CSV support: spreadsheets exported from other tools, one vehicle per row,
arbitrary headers.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from schemas.rows import RowPreview, VehicleRow
from services.exceptions import RowValidationError
from services.interchange_csv import read_csv_records
from services.row_mapping import map_vehicle_fields

logger = logging.getLogger(__name__)

# Ordered: for each header the first rule whose keyword it contains (and whose
# field is still free) wins.
FIELD_PATTERNS: List[Tuple[str, List[str]]] = [
    ("name", ["name", "motorcycle", "bike", "vehicle", "title"]),
    ("make", ["make", "manufacturer", "brand"]),
    ("model", ["model"]),
    ("year", ["year", "yr", "model year"]),
    ("nickname", ["nickname", "alias"]),
    ("vehicle_type", ["vehicle_type", "type", "category"]),
    ("vin", ["vin", "vehicle identification"]),
    ("plate_number", ["plate", "license", "tag", "registration"]),
    ("mileage", ["mile", "mileage", "odometer", "odo"]),
    ("tab_expiration", ["expir", "tab", "renewal", "due"]),
    ("status", ["status"]),
    ("notes", ["note", "comment", "description", "memo"]),
    ("purchase_price", ["purchase_price", "price", "cost", "paid"]),
    ("purchase_date", ["purchase_date", "bought", "acquired"]),
    ("maintenance_notes", ["maintenance", "service", "repair"]),
]

MAPPABLE_FIELDS = [f for f, _ in FIELD_PATTERNS]

# Rows with fewer non-empty cells are trailing junk, not vehicles
MIN_NON_EMPTY_CELLS = 2


@dataclass
class LooseCsv:
    headers: List[str]
    rows: List[Dict[str, str]] = field(default_factory=list)
    banner: Optional[str] = None
    discarded_rows: int = 0


def strip_preamble(text: str) -> Tuple[str, Optional[str]]:
    """
    Drops a title/banner line sitting above the header.

    The first line is a banner when it has no commas at all, or fewer than
    half as many as the second line. Returns (csv text, dropped banner).
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        return text, None

    first = lines[0].count(",")
    second = lines[1].count(",")
    if first == 0 or (second > 0 and first < second / 2):
        return "\n".join(lines[1:]), lines[0].strip()
    return text, None


def parse_loose_csv(text: str) -> LooseCsv:
    body, banner = strip_preamble(text.lstrip("\ufeff"))
    headers, records = read_csv_records(body)

    kept = []
    for record in records:
        non_empty = sum(1 for v in record.values() if v is not None and str(v).strip())
        if non_empty >= MIN_NON_EMPTY_CELLS:
            kept.append(record)

    parsed = LooseCsv(headers=headers, rows=kept, banner=banner, discarded_rows=len(records) - len(kept))
    if banner:
        logger.info("Dropped CSV banner line", extra={"banner": banner})
    if parsed.discarded_rows:
        logger.info("Discarded near-empty CSV rows", extra={"count": parsed.discarded_rows})
    return parsed


def auto_map_columns(headers: List[str]) -> Dict[str, str]:
    """field -> header. Unmapped headers are simply absent."""
    mapping: Dict[str, str] = {}
    for header in headers:
        normalized = header.lower().strip()
        for target, patterns in FIELD_PATTERNS:
            if target in mapping:
                continue
            if any(p in normalized for p in patterns):
                mapping[target] = header
                break
    return mapping


def apply_mapping(record: Dict[str, str], mapping: Dict[str, str]) -> Dict[str, str]:
    return {target: record.get(header, "") for target, header in mapping.items() if header}


def map_loose_rows(
    rows: List[Dict[str, str]],
    mapping: Dict[str, str],
    today: Optional[date] = None,
) -> Tuple[List[VehicleRow], List[RowPreview]]:
    """
    Valid vehicle rows plus one preview entry per input row. Invalid rows
    appear only in the preview.
    """
    valid: List[VehicleRow] = []
    previews: List[RowPreview] = []
    for i, record in enumerate(rows, start=1):
        try:
            row = map_vehicle_fields(apply_mapping(record, mapping), today=today)
        except RowValidationError as e:
            previews.append(RowPreview(row_number=i, record_type="vehicle", valid=False, error=str(e), field=e.field))
            continue
        valid.append(row)
        previews.append(RowPreview(row_number=i, record_type="vehicle", vehicle_name=row.name))
    return valid, previews
