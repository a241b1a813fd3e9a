from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from schemas.archive import SaleInfo


class VehicleRow(BaseModel):
    name: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    nickname: Optional[str] = None
    vehicle_type: str = "motorcycle"
    vin: Optional[str] = None
    plate_number: Optional[str] = None
    mileage: Optional[str] = None
    tab_expiration: Optional[date] = None
    status: str = "active"
    notes: Optional[str] = None
    purchase_price: Optional[float] = None
    purchase_date: Optional[date] = None
    estimated_value: Optional[float] = None
    sale_info: Optional[SaleInfo] = None
    maintenance_notes: Optional[str] = None


class ServiceRow(BaseModel):
    vehicle_name: str
    title: str
    service_date: date
    description: Optional[str] = None
    cost: Optional[float] = None
    odometer: Optional[int] = None
    shop_name: Optional[str] = None
    category: str = "maintenance"
    receipt_files: List[str] = Field(default_factory=list)


class DocumentRow(BaseModel):
    vehicle_name: str
    title: str
    document_type: str = "other"
    expiration_date: Optional[date] = None
    cost: Optional[float] = None
    notes: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None


class MileageRow(BaseModel):
    vehicle_name: str
    mileage: int
    recorded_date: date
    notes: Optional[str] = None


class ValueRow(BaseModel):
    vehicle_name: str
    estimated_value: float
    recorded_date: date
    source: Optional[str] = None
    notes: Optional[str] = None


class PhotoRow(BaseModel):
    """One photo file of a vehicle folder, in file order"""
    vehicle_name: str
    file_name: str
    caption: Optional[str] = None
    is_showcase: bool = False


class RowPreview(BaseModel):
    """What the user sees before committing: every parsed row, valid or not."""
    row_number: int
    record_type: str
    vehicle_name: Optional[str] = None
    valid: bool = True
    error: Optional[str] = None
    field: Optional[str] = None
