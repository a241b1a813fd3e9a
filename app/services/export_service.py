import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional

from core.cancellation import CancellationToken, never_cancelled
from core.environment import get_storage_buckets
from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from models.vehicle import Vehicle
from schemas.archive import (
    DocumentSnapshot,
    MileageSnapshot,
    PhotoSnapshot,
    ReceiptSnapshot,
    SaleInfo,
    ServiceRecordSnapshot,
    ValueSnapshot,
    VehicleSnapshot,
    VehicleSnapshotData,
)
from schemas.results import ExportOptions, ExportProgress, ExportResult, RunStatus
from services.archive_codec import ArchiveBundle, ArchiveFile, sanitize_file_name, unique_file_name, write_archive
from services.exceptions import OperationCancelled, SignedUrlError, BlobDownloadError, StoreQueryError
from services.interchange_csv import (
    encode_comprehensive_csv,
    filter_vehicles_for_export,
    format_document_row,
    format_mileage_row,
    format_service_row,
    format_vehicle_row,
)
from services.matcher import split_extension
from services.repository import CollectionRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ExportProgress], None]

CANCELLED_MESSAGE = "Export cancelled"


def export_root_name(label: str, today: date) -> str:
    return sanitize_file_name(f"{label}-{today.isoformat()}")


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


def _basename(storage_path: str) -> str:
    return storage_path.rsplit("/", 1)[-1]


def photo_archive_name(storage_path: str, caption: Optional[str]) -> str:
    """Caption plus the stored extension, else the storage basename"""
    _, ext = split_extension(storage_path)
    if caption and sanitize_file_name(caption):
        return f"{sanitize_file_name(caption)}.{ext or 'jpg'}"
    return _basename(storage_path) or f"photo.{ext or 'jpg'}"


@dataclass
class VehicleExportData:
    """What one vehicle contributed to the archive, kept for the CSV pass"""
    vehicle: Vehicle
    folder_name: str
    photos: list = field(default_factory=list)
    documents: list = field(default_factory=list)
    service_records: list = field(default_factory=list)
    mileage: list = field(default_factory=list)
    values: list = field(default_factory=list)
    photo_names: Dict[int, str] = field(default_factory=dict)
    document_names: Dict[int, str] = field(default_factory=dict)
    receipt_names: Dict[int, str] = field(default_factory=dict)


class _FileCounter:
    def __init__(self):
        self.downloaded = 0
        self.skipped = 0
        self.skipped_details: List[str] = []


class ExportAssembler:
    """
    Builds a downloadable archive for one vehicle or a whole collection.

    Work is strictly sequential: one vehicle at a time and one blob in flight
    at a time. An attachment that cannot be signed or fetched goes on the skip
    list and the export carries on. Cancellation yields a CANCELLED result,
    never a partial archive.
    """

    def __init__(self, repository: CollectionRepository, storage, buckets: Optional[dict] = None,
                 today: Optional[date] = None):
        self.repository = repository
        self.storage = storage
        self.buckets = buckets or get_storage_buckets()
        self.today = today

    def _today(self) -> date:
        return self.today or date.today()

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], phase: str, current: int, total: int, message: str):
        if on_progress is not None:
            on_progress(ExportProgress(phase=phase, current=current, total=total, message=message))

    @track_performance(service_name="ExportAssembler")
    async def export_vehicle(
        self,
        vehicle_id: int,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> ExportResult:
        token = token or never_cancelled()
        try:
            self._report(on_progress, "Preparing", 0, 1, "Fetching vehicle data...")
            vehicle = await token.guard(self.repository.get_vehicle(vehicle_id))
            if vehicle is None:
                return ExportResult(status=RunStatus.FAILED, message="Vehicle not found")

            root = export_root_name(vehicle.name, self._today())
            bundle = ArchiveBundle(root=root)
            counter = _FileCounter()
            data = await self._add_vehicle(bundle, vehicle, sanitize_file_name(vehicle.name) or f"vehicle-{vehicle.id}",
                                           on_progress, counter, token)

            # Single-vehicle exports always carry the vehicle, whatever its status
            return self._finish(bundle, [data], ExportOptions(include_inactive=True), counter, on_progress, token)
        except OperationCancelled:
            logger.info("Export cancelled", extra={"vehicle_id": vehicle_id})
            return ExportResult(status=RunStatus.CANCELLED, message=CANCELLED_MESSAGE)
        except StoreQueryError as e:
            logger.error("Export failed reading the store", extra={"vehicle_id": vehicle_id, "error": str(e)})
            return ExportResult(status=RunStatus.FAILED, message=str(e))

    @track_performance(service_name="ExportAssembler")
    async def export_collection(
        self,
        collection_id: int,
        options: Optional[ExportOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> ExportResult:
        options = options or ExportOptions()
        token = token or never_cancelled()
        try:
            self._report(on_progress, "Preparing", 0, 1, "Fetching collection data...")
            collection = await token.guard(self.repository.get_collection(collection_id))
            if collection is None:
                return ExportResult(status=RunStatus.FAILED, message="Collection not found")

            vehicles = await token.guard(self.repository.list_vehicles(collection_id))
            vehicles = filter_vehicles_for_export(vehicles, options)
            if not vehicles:
                return ExportResult(status=RunStatus.FAILED, message="No vehicles in collection")

            bundle = ArchiveBundle(root=export_root_name(collection.name, self._today()))
            counter = _FileCounter()
            folder_names: set = set()
            exported: List[VehicleExportData] = []

            for i, vehicle in enumerate(vehicles, start=1):
                token.raise_if_cancelled()
                self._report(on_progress, "Processing vehicles", i, len(vehicles),
                             f"Processing {vehicle.name} ({i}/{len(vehicles)})...")
                folder = unique_file_name(folder_names, sanitize_file_name(vehicle.name) or f"vehicle-{vehicle.id}")
                exported.append(await self._add_vehicle(bundle, vehicle, folder, on_progress, counter, token))

            return self._finish(bundle, exported, options, counter, on_progress, token)
        except OperationCancelled:
            logger.info("Export cancelled", extra={"collection_id": collection_id})
            return ExportResult(status=RunStatus.CANCELLED, message=CANCELLED_MESSAGE)
        except StoreQueryError as e:
            logger.error("Export failed reading the store", extra={"collection_id": collection_id, "error": str(e)})
            return ExportResult(status=RunStatus.FAILED, message=str(e))

    # ------------------------------------------------------------------

    async def _download(self, bucket: str, storage_path: str, token: CancellationToken) -> Optional[bytes]:
        """Bytes of one blob, or None when it cannot be signed or fetched"""
        try:
            url = await token.guard(self.storage.create_signed_url(bucket, storage_path))
            return await token.guard(self.storage.fetch(url))
        except (SignedUrlError, BlobDownloadError) as e:
            logger.warning("Attachment download failed", extra={"bucket": bucket, "path": storage_path, "error": str(e)})
            return None

    def _skip(self, counter: _FileCounter, kind: str, detail: str):
        counter.skipped += 1
        counter.skipped_details.append(detail)
        prometheus_collector.record_file("export", kind, "skipped")

    def _downloaded(self, counter: _FileCounter, kind: str):
        counter.downloaded += 1
        prometheus_collector.record_file("export", kind, "downloaded")

    async def _add_vehicle(
        self,
        bundle: ArchiveBundle,
        vehicle: Vehicle,
        folder_name: str,
        on_progress: Optional[ProgressCallback],
        counter: _FileCounter,
        token: CancellationToken,
    ) -> VehicleExportData:
        repo = self.repository
        data = VehicleExportData(vehicle=vehicle, folder_name=folder_name)
        data.photos = await token.guard(repo.photos_for_vehicle(vehicle.id))
        data.documents = await token.guard(repo.documents_for_vehicle(vehicle.id))
        data.service_records = await token.guard(repo.service_records_for_vehicle(vehicle.id))
        data.mileage = await token.guard(repo.mileage_for_vehicle(vehicle.id))
        data.values = await token.guard(repo.values_for_vehicle(vehicle.id))

        folder = bundle.folder(folder_name)
        total = len(data.photos) + len(data.documents) + sum(len(sr.receipts) for sr in data.service_records)
        done = 0

        photo_names: set = set()
        for photo in data.photos:
            token.raise_if_cancelled()
            self._report(on_progress, "Downloading files", done, total, f"{vehicle.name}: downloading photo...")
            done += 1
            blob = await self._download(self.buckets["photos"], photo.storage_path, token)
            if blob is None:
                self._skip(counter, "photos", f"{vehicle.name}: photo {photo.storage_path}")
                continue
            name = unique_file_name(photo_names, photo_archive_name(photo.storage_path, photo.caption))
            folder.photos.append(ArchiveFile(name=name, data=blob))
            data.photo_names[photo.id] = name
            self._downloaded(counter, "photos")

        document_names: set = set()
        for doc in data.documents:
            token.raise_if_cancelled()
            self._report(on_progress, "Downloading files", done, total,
                         f'{vehicle.name}: downloading document "{doc.title}"...')
            done += 1
            blob = await self._download(self.buckets["documents"], doc.storage_path, token)
            if blob is None:
                self._skip(counter, "documents", f'{vehicle.name}: document "{doc.title}"')
                continue
            desired = sanitize_file_name(doc.file_name or "") or _basename(doc.storage_path) or "document"
            name = unique_file_name(document_names, desired)
            folder.documents.append(ArchiveFile(name=name, data=blob))
            data.document_names[doc.id] = name
            self._downloaded(counter, "documents")

        receipt_names: set = set()
        for sr in data.service_records:
            for receipt in sr.receipts:
                token.raise_if_cancelled()
                self._report(on_progress, "Downloading files", done, total,
                             f'{vehicle.name}: downloading receipt for "{sr.title}"...')
                done += 1
                blob = await self._download(self.buckets["receipts"], receipt.storage_path, token)
                if blob is None:
                    self._skip(counter, "receipts", f'{vehicle.name}: receipt for "{sr.title}"')
                    continue
                # receipt names are comma-joined in the CSV
                desired = sanitize_file_name(receipt.file_name or "").replace(",", "-")
                name = unique_file_name(receipt_names, desired or _basename(receipt.storage_path) or "receipt")
                folder.receipts.append(ArchiveFile(name=name, data=blob))
                data.receipt_names[receipt.id] = name
                self._downloaded(counter, "receipts")

        folder.snapshot = build_snapshot(data)
        return data

    def _finish(
        self,
        bundle: ArchiveBundle,
        exported: List[VehicleExportData],
        options: ExportOptions,
        counter: _FileCounter,
        on_progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> ExportResult:
        token.raise_if_cancelled()
        self._report(on_progress, "Generating CSV", 0, 1, "Generating collection-export.csv...")
        bundle.csv_text = encode_comprehensive_csv(comprehensive_rows(exported, options))

        token.raise_if_cancelled()
        self._report(on_progress, "Generating ZIP", 0, 1, "Creating ZIP file...")
        archive = write_archive(bundle)
        token.raise_if_cancelled()

        logger.info(
            "Export assembled",
            extra={
                "root": bundle.root,
                "vehicles": len(exported),
                "downloaded": counter.downloaded,
                "skipped": counter.skipped,
            },
        )
        return ExportResult(
            status=RunStatus.SUCCEEDED,
            file_name=f"{bundle.root}.zip",
            archive=archive,
            total_files=counter.downloaded,
            skipped_files=counter.skipped,
            skipped_details=counter.skipped_details,
        )


def build_snapshot(data: VehicleExportData) -> VehicleSnapshot:
    v = data.vehicle
    return VehicleSnapshot(
        vehicle=VehicleSnapshotData(
            id=v.id,
            name=v.name,
            make=v.make,
            model=v.model,
            year=v.year,
            vehicle_type=v.vehicle_type,
            vin=v.vin,
            plate_number=v.plate_number,
            mileage=v.mileage,
            nickname=v.nickname,
            status=v.status,
            notes=v.notes,
            maintenance_notes=v.maintenance_notes,
            tab_expiration=_iso(v.tab_expiration),
            purchase_price=_float(v.purchase_price),
            purchase_date=_iso(v.purchase_date),
            estimated_value=_float(v.estimated_value),
            sale_info=SaleInfo(**v.sale_info) if v.sale_info else None,
            created_at=_iso(v.created_at),
            updated_at=_iso(v.updated_at),
        ),
        photos=[
            PhotoSnapshot(
                id=p.id,
                storage_path=p.storage_path,
                display_order=p.display_order,
                caption=p.caption,
                is_showcase=bool(p.is_showcase),
                file_name=data.photo_names.get(p.id),
                created_at=_iso(p.created_at),
            )
            for p in data.photos
        ],
        documents=[
            DocumentSnapshot(
                id=d.id,
                title=d.title,
                document_type=d.document_type,
                expiration_date=_iso(d.expiration_date),
                cost=_float(d.cost),
                notes=d.notes,
                file_name=data.document_names.get(d.id),
                file_type=d.file_type,
                storage_path=d.storage_path,
                created_at=_iso(d.created_at),
            )
            for d in data.documents
        ],
        service_records=[
            ServiceRecordSnapshot(
                id=sr.id,
                service_date=_iso(sr.service_date),
                title=sr.title,
                description=sr.description,
                cost=_float(sr.cost),
                odometer=sr.odometer,
                shop_name=sr.shop_name,
                category=sr.category,
                created_at=_iso(sr.created_at),
                receipts=[
                    ReceiptSnapshot(
                        id=r.id,
                        file_name=data.receipt_names[r.id],
                        file_type=r.file_type,
                        storage_path=r.storage_path,
                        created_at=_iso(r.created_at),
                    )
                    for r in sr.receipts
                    if r.id in data.receipt_names
                ],
            )
            for sr in data.service_records
        ],
        mileage_history=[
            MileageSnapshot(id=m.id, mileage=m.mileage, recorded_date=_iso(m.recorded_date), notes=m.notes,
                            created_at=_iso(m.created_at))
            for m in data.mileage
        ],
        value_history=[
            ValueSnapshot(id=e.id, estimated_value=float(e.estimated_value), recorded_date=_iso(e.recorded_date),
                          source=e.source, notes=e.notes, created_at=_iso(e.created_at))
            for e in data.values
        ],
    )


def comprehensive_rows(exported: List[VehicleExportData], options: ExportOptions) -> List[dict]:
    """All CSV rows, built from what was accumulated during the export (no re-query)"""
    rows: List[dict] = []
    for data in exported:
        rows.append(format_vehicle_row(data.vehicle, options))
    for data in exported:
        name = data.vehicle.name
        for sr in data.service_records:
            files = [data.receipt_names[r.id] for r in sr.receipts if r.id in data.receipt_names]
            rows.append(format_service_row(name, sr, files))
        for doc in data.documents:
            rows.append(format_document_row(name, doc, data.document_names.get(doc.id)))
        for entry in data.mileage:
            rows.append(format_mileage_row(name, entry))
    return rows
