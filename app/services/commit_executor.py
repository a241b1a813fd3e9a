import logging
from datetime import date
from typing import Dict, List, Optional

from core.cancellation import CancellationToken, never_cancelled
from core.environment import get_storage_buckets
from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from schemas.results import ImportResult, PlanLimits, RunStatus
from schemas.rows import DocumentRow, ServiceRow
from services.archive_codec import ArchiveFile, VehicleFolder
from services.exceptions import OperationCancelled, PlanNotConfirmedError, StoreQueryError, StoreWriteError
from services.mime_types import mime_type_for
from services.reconciler import (
    SOURCE_ARCHIVE,
    TARGET_BATCH,
    TARGET_VEHICLE,
    MatchPlan,
    MatchTarget,
    check_capacity,
    document_row_from_file,
)
from services.repository import CollectionRepository
from services.row_mapping import photo_rows, snapshot_value_rows
from services.saga import SagaFailed, upload_then_link
from services.storage import new_storage_path

logger = logging.getLogger(__name__)


class _CancellableUploads:
    """Uploads race the token; deletes always run so compensation is never cut short."""

    def __init__(self, storage, token: CancellationToken):
        self._storage = storage
        self._token = token

    async def upload(self, bucket, path, data, content_type):
        await self._token.guard(self._storage.upload(bucket, path, data, content_type))

    async def delete(self, bucket, path):
        await self._storage.delete(bucket, path)


class CommitExecutor:
    """
    Writes a confirmed MatchPlan to the store and object storage.

    Order per run: vehicles, then their documents / service records / mileage
    and value history, then service record receipts, then photos. One item
    failing never stops the batch; it is counted and described in the result.
    """

    def __init__(self, repository: CollectionRepository, storage, buckets: Optional[dict] = None,
                 today: Optional[date] = None):
        self.repository = repository
        self.storage = storage
        self.buckets = buckets or get_storage_buckets()
        self.today = today

    @track_performance(service_name="CommitExecutor")
    async def commit(
        self,
        plan: MatchPlan,
        limits: PlanLimits,
        collection_id: int,
        token: Optional[CancellationToken] = None,
    ) -> ImportResult:
        """
        Raises PlanNotConfirmedError or CapacityExceededError before any write.
        Cancellation returns the counters so far with status CANCELLED.
        """
        if not plan.confirmed:
            raise PlanNotConfirmedError("Review and confirm the match plan before importing.")
        check_capacity(plan, limits)

        token = token or never_cancelled()
        run = _Run(self, plan, collection_id, token)
        try:
            await run.vehicles()
            await run.dependent_rows()
            await run.receipts()
            await run.photos()
            run.skipped_files()
        except OperationCancelled:
            run.result.status = RunStatus.CANCELLED
            logger.info("Import cancelled", extra={"collection_id": collection_id, **run.result.summary()})
            return run.result

        logger.info("Import committed", extra={"collection_id": collection_id, **run.result.summary()})
        return run.result


class _Run:
    """State of one commit: the name -> id map and the counters"""

    def __init__(self, executor: CommitExecutor, plan: MatchPlan, collection_id: int, token: CancellationToken):
        self.repo = executor.repository
        self.buckets = executor.buckets
        self.today = executor.today
        self.storage = _CancellableUploads(executor.storage, token)
        self.plan = plan
        self.collection_id = collection_id
        self.token = token
        self.result = ImportResult()
        self.vehicle_ids: Dict[str, int] = {}
        self.created_services: List[tuple] = []

    # ----------------------------------------------------------- helpers

    def _fail(self, detail: str, counter: str, record_type: Optional[str] = None, count: int = 1):
        setattr(self.result, counter, getattr(self.result, counter) + count)
        self.result.failure_details.append(detail)
        if record_type:
            prometheus_collector.record_row(record_type, "failed")
        logger.warning("Import item failed", extra={"detail": detail})

    def _skip_file(self, kind: str, detail: str):
        self.result.files_skipped += 1
        self.result.skipped_details.append(detail)
        prometheus_collector.record_file("import", kind, "skipped")

    def _vehicle_id(self, target: Optional[MatchTarget]) -> Optional[int]:
        if target is None:
            return None
        if target.kind == TARGET_VEHICLE:
            return target.id
        if target.kind == TARGET_BATCH:
            return self.vehicle_ids.get(target.label)
        return None

    def _resolved_folders(self):
        """(folder, vehicle name, vehicle id) for every folder bound to a vehicle that exists now"""
        for subject, match in self.plan.folder_matches.items():
            vehicle_id = self._vehicle_id(match.resolved)
            if vehicle_id is not None:
                yield self.plan.bundle.vehicles[subject], match.resolved.label, vehicle_id

    async def _attach(self, kind: str, owner_id: int, archive_file: ArchiveFile, link) -> bool:
        """upload-then-link one file; False when it failed and was compensated"""
        path = new_storage_path(owner_id, archive_file.name)
        try:
            await upload_then_link(
                self.storage,
                self.buckets[kind],
                path,
                archive_file.data,
                mime_type_for(archive_file.name),
                lambda: link(path),
                context={"attachment": archive_file.name, "kind": kind},
            )
        except SagaFailed as e:
            if isinstance(e.cause, OperationCancelled):
                raise e.cause
            if not e.compensated:
                self.result.failure_details.append(f"{archive_file.name}: uploaded blob {path} could not be removed")
            prometheus_collector.record_file("import", kind, "failed")
            return False
        prometheus_collector.record_file("import", kind, "uploaded")
        return True

    # ------------------------------------------------------------- steps

    async def vehicles(self):
        self.result.vehicles_invalid = sum(1 for p in self.plan.invalid_rows if p.record_type == "vehicle")
        for row in self.plan.vehicles:
            self.token.raise_if_cancelled()
            try:
                vehicle = await self.repo.insert_vehicle(self.collection_id, row)
            except StoreWriteError as e:
                self._fail(f"{row.name}: vehicle could not be created ({e})", "vehicles_failed", "vehicle")
                continue
            # duplicate names: the last row inserted owns the name
            self.vehicle_ids[row.name] = vehicle.id
            self.result.vehicles_created += 1
            prometheus_collector.record_row("vehicle", "created")

    def _known(self, vehicle_name: str, record_type: str) -> Optional[int]:
        vehicle_id = self.vehicle_ids.get(vehicle_name)
        if vehicle_id is None:
            self.result.rows_skipped_unknown_vehicle += 1
            prometheus_collector.record_row(record_type, "skipped")
        return vehicle_id

    async def dependent_rows(self):
        for row in self.plan.documents:
            self.token.raise_if_cancelled()
            vehicle_id = self._known(row.vehicle_name, "document")
            if vehicle_id is None:
                continue
            archive_file = self.plan.find_file(row.vehicle_name, "documents", row.file_name) if row.file_name else None
            if archive_file is None:
                self._skip_file("documents", f'{row.vehicle_name}: document "{row.title}" has no file in the archive')
                continue
            await self._document(vehicle_id, row, archive_file)

        if self.plan.source != SOURCE_ARCHIVE:
            for folder, vehicle_name, vehicle_id in self._resolved_folders():
                for archive_file in folder.documents:
                    self.token.raise_if_cancelled()
                    await self._document(vehicle_id, document_row_from_file(vehicle_name, archive_file.name), archive_file)

        for row in self.plan.services:
            self.token.raise_if_cancelled()
            vehicle_id = self._known(row.vehicle_name, "service")
            if vehicle_id is None:
                continue
            try:
                record = await self.repo.insert_service_record(vehicle_id, row)
            except StoreWriteError as e:
                self._fail(f'{row.vehicle_name}: service record "{row.title}" ({e})', "service_records_failed", "service")
                continue
            self.created_services.append((record, row))
            self.result.service_records_created += 1
            prometheus_collector.record_row("service", "created")

        for row in self.plan.mileage:
            self.token.raise_if_cancelled()
            vehicle_id = self._known(row.vehicle_name, "mileage")
            if vehicle_id is None:
                continue
            try:
                await self.repo.insert_mileage(vehicle_id, row)
            except StoreWriteError as e:
                self._fail(f"{row.vehicle_name}: mileage {row.mileage} ({e})", "mileage_failed", "mileage")
                continue
            self.result.mileage_created += 1
            prometheus_collector.record_row("mileage", "created")

        if self.plan.source == SOURCE_ARCHIVE:
            for folder, vehicle_name, vehicle_id in self._resolved_folders():
                for row in snapshot_value_rows(folder.snapshot, vehicle_name, today=self.today):
                    self.token.raise_if_cancelled()
                    try:
                        await self.repo.insert_value(vehicle_id, row)
                    except StoreWriteError as e:
                        self._fail(f"{vehicle_name}: value {row.estimated_value} ({e})", "value_entries_failed", "value")
                        continue
                    self.result.value_entries_created += 1
                    prometheus_collector.record_row("value", "created")

    async def _document(self, vehicle_id: int, row: DocumentRow, archive_file: ArchiveFile):
        async def link(path):
            return await self.repo.insert_document(
                vehicle_id, row, path, archive_file.name, row.file_type or mime_type_for(archive_file.name)
            )

        if await self._attach("documents", vehicle_id, archive_file, link):
            self.result.documents_created += 1
            prometheus_collector.record_row("document", "created")
        else:
            self._fail(f'{row.vehicle_name}: document "{row.title}"', "documents_failed", "document")

    async def receipts(self):
        if self.plan.source == SOURCE_ARCHIVE:
            for record, row in self.created_services:
                await self._receipts_for(record.id, row)
            return

        for match in self.plan.file_matches:
            self.token.raise_if_cancelled()
            folder = self.plan.bundle.vehicles[match.folder]
            archive_file = folder.find("receipts", match.subject)
            target = match.resolved
            if target is None or archive_file is None:
                self._skip_file("receipts", f"{match.folder}: receipt {match.subject} matched no service record")
                continue
            await self._receipt(target.id, archive_file, f'{match.folder}: receipt for "{target.label}"')

    async def _receipts_for(self, service_record_id: int, row: ServiceRow):
        for file_name in row.receipt_files:
            self.token.raise_if_cancelled()
            archive_file = self.plan.find_file(row.vehicle_name, "receipts", file_name)
            if archive_file is None:
                self._skip_file("receipts", f'{row.vehicle_name}: receipt {file_name} for "{row.title}" not in the archive')
                continue
            await self._receipt(service_record_id, archive_file, f'{row.vehicle_name}: receipt for "{row.title}"')

    async def _receipt(self, service_record_id: int, archive_file: ArchiveFile, description: str):
        async def link(path):
            return await self.repo.insert_receipt(service_record_id, path, archive_file.name,
                                                  mime_type_for(archive_file.name))

        if await self._attach("receipts", service_record_id, archive_file, link):
            self.result.receipts_uploaded += 1
        else:
            self._fail(description, "files_failed")

    async def photos(self):
        for folder, vehicle_name, vehicle_id in self._resolved_folders():
            if not folder.photos:
                continue
            try:
                await self._photos_for(folder, vehicle_name, vehicle_id)
            except StoreQueryError as e:
                # nothing was uploaded yet for this vehicle
                self._fail(f"{vehicle_name}: {len(folder.photos)} photo(s) not imported ({e})", "files_failed",
                           count=len(folder.photos))
                prometheus_collector.record_file("import", "photos", "failed", count=len(folder.photos))

    async def _photos_for(self, folder: VehicleFolder, vehicle_name: str, vehicle_id: int):
        current_max = await self.repo.max_display_order(vehicle_id)
        next_order = 0 if current_max is None else current_max + 1

        rows = photo_rows(folder.snapshot, vehicle_name, [f.name for f in folder.photos])
        flagged = any(r.is_showcase for r in rows)
        need_showcase = not flagged and not await self.repo.has_showcase_photo(vehicle_id)

        for archive_file, row in zip(folder.photos, rows):
            self.token.raise_if_cancelled()
            showcase = row.is_showcase if flagged else need_showcase
            order = next_order

            async def link(path, order=order, showcase=showcase, caption=row.caption):
                return await self.repo.insert_photo(vehicle_id, path, order, is_showcase=showcase, caption=caption)

            if await self._attach("photos", vehicle_id, archive_file, link):
                # only successful photos consume a position, so the order stays contiguous
                next_order += 1
                if showcase:
                    need_showcase = False
                self.result.photos_uploaded += 1
            else:
                self._fail(f"{vehicle_name}: photo {archive_file.name}", "files_failed")

    def skipped_files(self):
        """Files nobody will import: unmatched folders and unaccepted types"""
        for match in self.plan.folder_matches.values():
            if self._vehicle_id(match.resolved) is not None:
                continue
            folder = self.plan.bundle.vehicles[match.subject]
            for kind in ("photos", "documents"):
                for f in folder.files(kind):
                    self._skip_file(kind, f"{match.subject}: {f.name} (folder not matched to a vehicle)")
            if self.plan.source == SOURCE_ARCHIVE:
                for f in folder.receipts:
                    self._skip_file("receipts", f"{match.subject}: {f.name} (folder not matched to a vehicle)")
        for path in self.plan.ignored_files:
            self._skip_file("other", f"{path} (unsupported file type)")
