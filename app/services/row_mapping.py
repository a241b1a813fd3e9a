"""
Maps raw string cells to typed rows.

Both the comprehensive CSV and a loose CSV (after column mapping) flow
through `map_vehicle_fields`, so status and date normalization is identical
whichever file format the user brought. JSON snapshots are converted here too.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from models.document import DOCUMENT_TYPES
from models.service_record import SERVICE_CATEGORIES
from models.vehicle import VEHICLE_STATUSES, VEHICLE_TYPES
from schemas.archive import SaleInfo, VehicleSnapshot
from schemas.rows import DocumentRow, MileageRow, PhotoRow, ServiceRow, ValueRow, VehicleRow
from services.dates import parse_flexible_date
from services.exceptions import RowValidationError
from services.status_parser import parse_status_from_notes

MIN_YEAR = 1900
MAX_YEAR = 2099

_LEADING_INT = re.compile(r"^\s*(-?\d+)")


def clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_money(value) -> Optional[float]:
    """'$12,000.50' -> 12000.5; anything unparseable is None"""
    text = clean(value)
    if text is None:
        return None
    try:
        return float(Decimal(re.sub(r"[$,\s]", "", text)))
    except (InvalidOperation, ValueError):
        return None


def parse_int(value) -> Optional[int]:
    text = clean(value)
    if text is None:
        return None
    m = _LEADING_INT.match(text.replace(",", ""))
    return int(m.group(1)) if m else None


def parse_year(value) -> Optional[int]:
    year = parse_int(value)
    if year is None or not MIN_YEAR <= year <= MAX_YEAR:
        return None
    return year


def choose(value, allowed, fallback: str) -> str:
    text = (clean(value) or "").lower()
    return text if text in allowed else fallback


def _explicit_sale_info(fields: Dict[str, str], today: Optional[date]) -> Optional[dict]:
    sale: dict = {}
    sale_type = (clean(fields.get("sale_info_type")) or "").lower()
    if sale_type in ("sold", "traded"):
        sale["type"] = sale_type
    sale_date = parse_flexible_date(clean(fields.get("sale_info_date")), today=today)
    if sale_date:
        sale["date"] = sale_date.isoformat()
    amount = parse_money(fields.get("sale_info_amount"))
    if amount is not None:
        sale["amount"] = amount
    sale_notes = clean(fields.get("sale_info_notes"))
    if sale_notes:
        sale["notes"] = sale_notes
    return sale or None


def map_vehicle_fields(fields: Dict[str, str], today: Optional[date] = None) -> VehicleRow:
    """
    Builds a vehicle row from field -> raw cell text.

    A valid status cell wins, and then notes are stored as written. Only rows
    without one derive status and sale info from a SOLD/TRADED notes prefix,
    which is stripped. Raises RowValidationError when the name is missing.
    """
    name = clean(fields.get("name"))
    if not name:
        raise RowValidationError("Name is required", field="name")

    raw_notes = clean(fields.get("notes"))
    explicit_status = choose(fields.get("status"), VEHICLE_STATUSES, "")

    notes = raw_notes
    notes_sale_info = None
    if explicit_status:
        status = explicit_status
    else:
        parsed = parse_status_from_notes(raw_notes, today=today)
        status = parsed.status
        if parsed.sale_info is not None:
            notes, notes_sale_info = (parsed.cleaned_notes or None), parsed.sale_info

    explicit_sale = _explicit_sale_info(fields, today)
    sale_info = None
    if notes_sale_info or explicit_sale:
        merged = dict(notes_sale_info or {})
        merged.update(explicit_sale or {})
        sale_info = SaleInfo(**merged)

    return VehicleRow(
        name=name,
        make=clean(fields.get("make")),
        model=clean(fields.get("model")),
        year=parse_year(fields.get("year")),
        nickname=clean(fields.get("nickname")),
        vehicle_type=choose(fields.get("vehicle_type"), VEHICLE_TYPES, "motorcycle"),
        vin=clean(fields.get("vin")),
        plate_number=clean(fields.get("plate_number")),
        mileage=clean(fields.get("mileage")),
        tab_expiration=parse_flexible_date(clean(fields.get("tab_expiration")), today=today),
        status=status,
        notes=notes,
        purchase_price=parse_money(fields.get("purchase_price")),
        purchase_date=parse_flexible_date(clean(fields.get("purchase_date")), today=today),
        estimated_value=parse_money(fields.get("estimated_value")),
        sale_info=sale_info,
        maintenance_notes=clean(fields.get("maintenance_notes")),
    )


def _vehicle_name(cells: Dict[str, str]) -> str:
    name = clean(cells.get("vehicle_name"))
    if not name:
        raise RowValidationError("vehicle_name is required", field="vehicle_name")
    return name


def map_comprehensive_vehicle(cells: Dict[str, str], today: Optional[date] = None) -> VehicleRow:
    fields = dict(cells)
    fields["name"] = cells.get("vehicle_name")
    return map_vehicle_fields(fields, today=today)


def map_service_row(cells: Dict[str, str], today: Optional[date] = None) -> ServiceRow:
    vehicle_name = _vehicle_name(cells)
    title = clean(cells.get("service_title"))
    if not title:
        raise RowValidationError("service_title is required", field="service_title")
    receipts = [f.strip() for f in (cells.get("service_receipt_files") or "").split(",") if f.strip()]
    return ServiceRow(
        vehicle_name=vehicle_name,
        title=title,
        service_date=parse_flexible_date(clean(cells.get("service_date")), today=today) or (today or date.today()),
        description=clean(cells.get("service_description")),
        cost=parse_money(cells.get("service_cost")),
        odometer=parse_int(cells.get("service_odometer")),
        shop_name=clean(cells.get("service_shop")),
        category=choose(cells.get("service_category"), SERVICE_CATEGORIES, "maintenance"),
        receipt_files=receipts,
    )


def map_document_row(cells: Dict[str, str], today: Optional[date] = None) -> DocumentRow:
    vehicle_name = _vehicle_name(cells)
    title = clean(cells.get("document_title"))
    if not title:
        raise RowValidationError("document_title is required", field="document_title")
    return DocumentRow(
        vehicle_name=vehicle_name,
        title=title,
        document_type=choose(cells.get("document_type"), DOCUMENT_TYPES, "other"),
        expiration_date=parse_flexible_date(clean(cells.get("document_expiration")), today=today),
        notes=clean(cells.get("notes")),
        file_name=clean(cells.get("document_file_name")),
        file_type=clean(cells.get("document_file_type")),
    )


def map_mileage_row(cells: Dict[str, str], today: Optional[date] = None) -> MileageRow:
    vehicle_name = _vehicle_name(cells)
    mileage = parse_int(cells.get("mileage"))
    if mileage is None:
        raise RowValidationError("mileage must be a number", field="mileage")
    return MileageRow(
        vehicle_name=vehicle_name,
        mileage=mileage,
        recorded_date=parse_flexible_date(clean(cells.get("recorded_date")), today=today) or (today or date.today()),
        notes=clean(cells.get("notes")),
    )


RECORD_MAPPERS = {
    "vehicle": map_comprehensive_vehicle,
    "service": map_service_row,
    "document": map_document_row,
    "mileage": map_mileage_row,
}



class SnapshotRows:
    """Rows a vehicle-data/<vehicle>.json snapshot expands to when it is the only payload"""

    def __init__(self, vehicle: VehicleRow):
        self.vehicle = vehicle
        self.services: List[ServiceRow] = []
        self.documents: List[DocumentRow] = []
        self.mileage: List[MileageRow] = []


def _snapshot_vehicle_fields(snapshot: VehicleSnapshot) -> Dict[str, str]:
    v = snapshot.vehicle
    fields = {
        "name": v.display_name(),
        "make": v.make,
        "model": v.model,
        "year": v.year,
        "nickname": v.nickname,
        "vehicle_type": v.vehicle_type,
        "vin": v.vin,
        "plate_number": v.plate_number,
        "mileage": v.mileage,
        "tab_expiration": v.tab_expiration,
        "status": v.status,
        "notes": v.notes,
        "purchase_price": v.purchase_price,
        "purchase_date": v.purchase_date,
        "estimated_value": v.estimated_value,
        "maintenance_notes": v.maintenance_notes,
    }
    if v.sale_info is not None:
        fields.update({
            "sale_info_type": v.sale_info.type,
            "sale_info_date": v.sale_info.date,
            "sale_info_amount": v.sale_info.amount,
            "sale_info_notes": v.sale_info.notes,
        })
    return fields


def map_snapshot(snapshot: VehicleSnapshot, today: Optional[date] = None) -> SnapshotRows:
    rows = SnapshotRows(map_vehicle_fields(_snapshot_vehicle_fields(snapshot), today=today))
    name = rows.vehicle.name
    fallback_day = today or date.today()

    for sr in snapshot.service_records:
        rows.services.append(ServiceRow(
            vehicle_name=name,
            title=sr.title,
            service_date=parse_flexible_date(sr.service_date, today=today) or fallback_day,
            description=sr.description,
            cost=sr.cost,
            odometer=sr.odometer,
            shop_name=sr.shop_name,
            category=choose(sr.category, SERVICE_CATEGORIES, "maintenance"),
            receipt_files=[r.file_name for r in sr.receipts],
        ))

    for doc in snapshot.documents:
        rows.documents.append(DocumentRow(
            vehicle_name=name,
            title=doc.title,
            document_type=choose(doc.document_type, DOCUMENT_TYPES, "other"),
            expiration_date=parse_flexible_date(doc.expiration_date, today=today),
            cost=doc.cost,
            notes=doc.notes,
            file_name=doc.file_name,
            file_type=doc.file_type,
        ))

    for entry in snapshot.mileage_history:
        rows.mileage.append(MileageRow(
            vehicle_name=name,
            mileage=entry.mileage,
            recorded_date=parse_flexible_date(entry.recorded_date, today=today) or fallback_day,
            notes=entry.notes,
        ))

    return rows


def snapshot_value_rows(snapshot: Optional[VehicleSnapshot], vehicle_name: str,
                        today: Optional[date] = None) -> List[ValueRow]:
    if snapshot is None:
        return []
    fallback_day = today or date.today()
    return [
        ValueRow(
            vehicle_name=vehicle_name,
            estimated_value=entry.estimated_value,
            recorded_date=parse_flexible_date(entry.recorded_date, today=today) or fallback_day,
            source=entry.source,
            notes=entry.notes,
        )
        for entry in snapshot.value_history
    ]


def photo_rows(snapshot: Optional[VehicleSnapshot], vehicle_name: str, photo_files: List[str]) -> List[PhotoRow]:
    """
    One row per photo file, in file order. Captions and the showcase flag come
    from the snapshot when there is one: by recorded file name, or by position
    for snapshots that predate file names.
    """
    ordered = []
    if snapshot is not None:
        ordered = sorted(snapshot.photos, key=lambda p: p.display_order if p.display_order is not None else 0)
    by_file = {p.file_name: p for p in ordered if p.file_name}

    rows = []
    for i, file_name in enumerate(photo_files):
        if by_file:
            meta = by_file.get(file_name)
        else:
            meta = ordered[i] if i < len(ordered) else None
        rows.append(PhotoRow(
            vehicle_name=vehicle_name,
            file_name=file_name,
            caption=meta.caption if meta else None,
            is_showcase=bool(meta and meta.is_showcase),
        ))
    return rows
