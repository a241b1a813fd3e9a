from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PlanLimits(BaseModel):
    """Billing fact consumed by the capacity check"""
    is_pro: bool = False
    vehicle_count: int = Field(0, ge=0)
    vehicle_limit: Optional[int] = Field(None, ge=0)  # None means unlimited

    def remaining_slots(self) -> Optional[int]:
        if self.is_pro or self.vehicle_limit is None:
            return None
        return self.vehicle_limit - self.vehicle_count


class ExportOptions(BaseModel):
    include_inactive: bool = True
    encode_status_in_notes: bool = False


class ExportProgress(BaseModel):
    phase: str
    current: int
    total: int
    message: str


class ExportResult(BaseModel):
    status: RunStatus
    file_name: Optional[str] = None
    archive: Optional[bytes] = None
    total_files: int = 0
    skipped_files: int = 0
    skipped_details: List[str] = Field(default_factory=list)
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCEEDED


class ImportResult(BaseModel):
    """Per-category counters for one commit run."""
    status: RunStatus = RunStatus.SUCCEEDED

    vehicles_created: int = 0
    vehicles_failed: int = 0
    vehicles_invalid: int = 0

    documents_created: int = 0
    documents_failed: int = 0
    service_records_created: int = 0
    service_records_failed: int = 0
    mileage_created: int = 0
    mileage_failed: int = 0
    value_entries_created: int = 0
    value_entries_failed: int = 0
    rows_skipped_unknown_vehicle: int = 0

    photos_uploaded: int = 0
    receipts_uploaded: int = 0
    files_failed: int = 0
    files_skipped: int = 0

    skipped_details: List[str] = Field(default_factory=list)
    failure_details: List[str] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return (
            self.vehicles_failed
            + self.documents_failed
            + self.service_records_failed
            + self.mileage_failed
            + self.value_entries_failed
            + self.files_failed
        )

    def summary(self) -> dict:
        return {
            "status": self.status.value,
            "vehiclesCreated": self.vehicles_created,
            "photosUploaded": self.photos_uploaded,
            "receiptsUploaded": self.receipts_uploaded,
            "documentsCreated": self.documents_created,
            "serviceRecordsCreated": self.service_records_created,
            "mileageCreated": self.mileage_created,
            "valueEntriesCreated": self.value_entries_created,
            "skipped": self.files_skipped + self.rows_skipped_unknown_vehicle,
            "failed": self.failed,
        }
