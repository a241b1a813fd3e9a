from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SaleInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None  # 'sold' | 'traded'
    date: Optional[str] = None
    amount: Optional[float] = None
    notes: Optional[str] = None


class VehicleSnapshotData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    name: Optional[str] = None  # missing in older exports
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vehicle_type: Optional[str] = None
    vin: Optional[str] = None
    plate_number: Optional[str] = None
    mileage: Optional[str] = None
    nickname: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    maintenance_notes: Optional[str] = None
    tab_expiration: Optional[str] = None
    purchase_price: Optional[float] = None
    purchase_date: Optional[str] = None
    estimated_value: Optional[float] = None
    sale_info: Optional[SaleInfo] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("mileage", mode="before")
    def mileage_as_text(cls, v):
        return None if v is None else str(v)

    def display_name(self) -> str:
        """Name, or 'year make model' for snapshots written before names existed"""
        if self.name and self.name.strip():
            return self.name.strip()
        parts = [str(p) for p in (self.year, self.make, self.model) if p]
        return " ".join(parts)


class PhotoSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    storage_path: Optional[str] = None
    display_order: Optional[int] = None
    caption: Optional[str] = None
    is_showcase: bool = False
    file_name: Optional[str] = None  # name inside images/<vehicle>/, absent when the file was skipped
    created_at: Optional[str] = None


class DocumentSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    title: str
    document_type: Optional[str] = None
    expiration_date: Optional[str] = None
    cost: Optional[float] = None
    notes: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    storage_path: Optional[str] = None
    created_at: Optional[str] = None


class ReceiptSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    file_name: str
    file_type: Optional[str] = None
    storage_path: Optional[str] = None
    created_at: Optional[str] = None


class ServiceRecordSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    service_date: Optional[str] = None
    title: str
    description: Optional[str] = None
    cost: Optional[float] = None
    odometer: Optional[int] = None
    shop_name: Optional[str] = None
    category: Optional[str] = None
    created_at: Optional[str] = None
    receipts: List[ReceiptSnapshot] = Field(default_factory=list)


class MileageSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    mileage: int
    recorded_date: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


class ValueSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    estimated_value: float
    recorded_date: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


class VehicleSnapshot(BaseModel):
    """Content of vehicle-data/<vehicle>.json: one vehicle and all of its children."""
    model_config = ConfigDict(extra="ignore")

    vehicle: VehicleSnapshotData
    photos: List[PhotoSnapshot] = Field(default_factory=list)
    documents: List[DocumentSnapshot] = Field(default_factory=list)
    service_records: List[ServiceRecordSnapshot] = Field(default_factory=list)
    mileage_history: List[MileageSnapshot] = Field(default_factory=list)
    value_history: List[ValueSnapshot] = Field(default_factory=list)
