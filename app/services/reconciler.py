"""
Import reconciliation.

Turns uploaded bytes into a `MatchPlan`: typed rows to create plus proposed
folder -> vehicle and receipt -> service record bindings, each with a
confidence. Nothing is written here. The plan is reviewed, optionally
overridden, confirmed, and only then handed to the CommitExecutor.

Two entry paths:

- archive path: a comprehensive CSV and/or vehicle-data JSON snapshots.
  Vehicle names are authoritative, folders bind to the vehicle whose
  sanitized name they carry.
- loose path: a plain CSV with arbitrary headers and/or a folder tree of
  files. Folders are fuzzy-matched to existing vehicles and to the vehicles
  this same batch creates.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from core.metrics import track_performance
from models.document import DOCUMENT_TYPES
from schemas.results import PlanLimits
from schemas.rows import DocumentRow, MileageRow, RowPreview, ServiceRow, VehicleRow
from services.archive_codec import (
    KINDS,
    ArchiveBundle,
    ArchiveFile,
    VehicleFolder,
    bundle_from_folder_tree,
    bundle_from_snapshot_json,
    list_members,
    read_archive,
    sanitize_file_name,
)
from services.csv_mapping import LooseCsv, auto_map_columns, map_loose_rows, parse_loose_csv
from services.exceptions import (
    ArchiveFormatError,
    CapacityExceededError,
    PlanFrozenError,
    RowValidationError,
)
from services.interchange_csv import is_comprehensive_csv, read_csv_records, split_records
from services.matcher import ACCEPTANCE_FLOOR, best_match, match_file_to_record, parse_import_file_name
from services.mime_types import is_accepted, mime_type_for
from services.repository import CollectionRepository
from services.row_mapping import RECORD_MAPPERS, map_snapshot

logger = logging.getLogger(__name__)

TARGET_BATCH = "batch"  # vehicle created by this import, known by name only
TARGET_VEHICLE = "vehicle"
TARGET_SERVICE_RECORD = "service_record"
TARGET_SKIP = "skip"

SOURCE_ARCHIVE = "archive"
SOURCE_LOOSE = "loose"


@dataclass(frozen=True)
class MatchTarget:
    kind: str
    label: str
    id: Optional[int] = None

    @classmethod
    def skip(cls) -> "MatchTarget":
        return cls(kind=TARGET_SKIP, label="")


@dataclass
class FolderMatch:
    subject: str
    proposed_target: Optional[MatchTarget] = None
    confidence: int = 0
    override: Optional[MatchTarget] = None
    ambiguous: bool = False

    @property
    def resolved(self) -> Optional[MatchTarget]:
        target = self.override or self.proposed_target
        if target is None or target.kind == TARGET_SKIP:
            return None
        return target


@dataclass
class FileMatch:
    folder: str
    subject: str
    proposed_target: Optional[MatchTarget] = None
    confidence: int = 0
    override: Optional[MatchTarget] = None
    ambiguous: bool = False

    @property
    def resolved(self) -> Optional[MatchTarget]:
        target = self.override or self.proposed_target
        if target is None or target.kind == TARGET_SKIP:
            return None
        return target


@dataclass
class CandidateRecord:
    id: int
    title: str


@dataclass
class CandidateVehicle:
    id: int
    name: str
    service_records: List[CandidateRecord] = field(default_factory=list)


@dataclass
class CandidateSet:
    """Records already in the collection, loaded once before matching"""
    vehicles: List[CandidateVehicle] = field(default_factory=list)

    def vehicle(self, vehicle_id: int) -> Optional[CandidateVehicle]:
        for v in self.vehicles:
            if v.id == vehicle_id:
                return v
        return None


async def load_candidates(repository: CollectionRepository, collection_id: int) -> CandidateSet:
    candidates = CandidateSet()
    for vehicle in await repository.list_vehicles(collection_id):
        records = await repository.service_records_for_vehicle(vehicle.id, order_by_title=True)
        candidates.vehicles.append(CandidateVehicle(
            id=vehicle.id,
            name=vehicle.name,
            service_records=[CandidateRecord(id=sr.id, title=sr.title) for sr in records],
        ))
    return candidates


@dataclass
class ImportPayload:
    archive: Optional[bytes] = None
    csv_text: Optional[str] = None
    folder_files: Optional[List[Tuple[str, bytes]]] = None
    json_text: Optional[str] = None


@dataclass
class MatchPlan:
    source: str
    bundle: ArchiveBundle
    candidates: CandidateSet
    target_kind: Optional[str] = None
    today: Optional[date] = None

    vehicles: List[VehicleRow] = field(default_factory=list)
    services: List[ServiceRow] = field(default_factory=list)
    documents: List[DocumentRow] = field(default_factory=list)
    mileage: List[MileageRow] = field(default_factory=list)
    previews: List[RowPreview] = field(default_factory=list)

    loose_csv: Optional[LooseCsv] = None
    column_mapping: Dict[str, str] = field(default_factory=dict)

    folder_matches: Dict[str, FolderMatch] = field(default_factory=dict)
    file_matches: List[FileMatch] = field(default_factory=list)
    ignored_files: List[str] = field(default_factory=list)

    confirmed: bool = False

    # ------------------------------------------------------------ queries

    @property
    def invalid_rows(self) -> List[RowPreview]:
        return [p for p in self.previews if not p.valid]

    @property
    def unmatched_folders(self) -> List[FolderMatch]:
        return [m for m in self.folder_matches.values() if m.resolved is None]

    @property
    def ambiguous_folders(self) -> List[FolderMatch]:
        return [m for m in self.folder_matches.values() if m.ambiguous and m.override is None]

    @property
    def unmatched_files(self) -> List[FileMatch]:
        return [m for m in self.file_matches if m.resolved is None]

    def batch_names(self) -> List[str]:
        names: List[str] = []
        for row in self.vehicles:
            if row.name not in names:
                names.append(row.name)
        return names

    def vehicle_targets(self) -> List[MatchTarget]:
        """Everything a folder may be bound to, in the order proposals are scored"""
        if self.source == SOURCE_ARCHIVE:
            return [MatchTarget(TARGET_BATCH, name) for name in self.batch_names()]
        existing = [MatchTarget(TARGET_VEHICLE, v.name, v.id) for v in self.candidates.vehicles]
        taken = {v.name for v in self.candidates.vehicles}
        pending = [MatchTarget(TARGET_BATCH, name) for name in self.batch_names() if name not in taken]
        return existing + pending

    def folders_for(self, target: MatchTarget) -> List[VehicleFolder]:
        return [
            self.bundle.vehicles[m.subject]
            for m in self.folder_matches.values()
            if m.resolved == target
        ]

    def find_file(self, vehicle_name: str, kind: str, file_name: str) -> Optional[ArchiveFile]:
        for folder in self.folders_for(MatchTarget(TARGET_BATCH, vehicle_name)):
            found = folder.find(kind, file_name)
            if found is not None:
                return found
        return None

    def file_match(self, folder: str, subject: str) -> Optional[FileMatch]:
        for m in self.file_matches:
            if m.folder == folder and m.subject == subject:
                return m
        return None

    # ------------------------------------------------------------ edits

    def _ensure_open(self):
        if self.confirmed:
            raise PlanFrozenError("This plan was already confirmed.")

    def override_folder(self, subject: str, target: Optional[MatchTarget]) -> FolderMatch:
        """Bind a folder by hand. None clears the override; MatchTarget.skip() drops the folder."""
        self._ensure_open()
        match = self.folder_matches[subject]
        match.override = target
        _propose_files(self, subject)
        return match

    def override_file(self, folder: str, subject: str, target: Optional[MatchTarget]) -> FileMatch:
        self._ensure_open()
        match = self.file_match(folder, subject)
        if match is None:
            raise KeyError(f"{folder}/{subject}")
        match.override = target
        return match

    def remap_columns(self, mapping: Dict[str, str]) -> None:
        """Replace the loose CSV column mapping and re-derive rows and proposals"""
        self._ensure_open()
        if self.loose_csv is None:
            raise ArchiveFormatError("Only a loose CSV has a column mapping to change.")
        self.column_mapping = {f: h for f, h in mapping.items() if h}
        self.vehicles, self.previews = map_loose_rows(self.loose_csv.rows, self.column_mapping, today=self.today)
        for subject in self.folder_matches:
            _propose_folder(self, subject)

    def confirm(self) -> "MatchPlan":
        self.confirmed = True
        logger.info(
            "Match plan confirmed",
            extra={
                "source": self.source,
                "vehicles": len(self.vehicles),
                "folders": len(self.folder_matches),
                "unmatched_folders": len(self.unmatched_folders),
                "unmatched_files": len(self.unmatched_files),
            },
        )
        return self


def check_capacity(plan: MatchPlan, limits: PlanLimits) -> None:
    """
    Blocks the whole import before any write when the new vehicles do not fit.
    Imports that only attach files to existing vehicles are never blocked.
    """
    remaining = limits.remaining_slots()
    requested = len(plan.vehicles)
    if requested and remaining is not None and requested > remaining:
        raise CapacityExceededError(requested=requested, remaining=remaining)


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

def _propose_folder(plan: MatchPlan, subject: str) -> FolderMatch:
    match = plan.folder_matches.setdefault(subject, FolderMatch(subject=subject))
    targets = plan.vehicle_targets()
    match.proposed_target, match.confidence, match.ambiguous = None, 0, False

    # a folder's own snapshot names its vehicle; otherwise exported folders
    # carry the sanitized vehicle name, de-duplicated with -2, -3 on collisions
    if plan.source == SOURCE_ARCHIVE:
        snapshot = plan.bundle.vehicles[subject].snapshot
        owner = snapshot.vehicle.display_name() if snapshot is not None else None
        for target in targets:
            if target.label == owner:
                match.proposed_target, match.confidence = target, 100
                break
        if match.proposed_target is None:
            for target in targets:
                if sanitize_file_name(target.label) == subject:
                    match.proposed_target, match.confidence = target, 100
                    break

    if match.proposed_target is None:
        ranked = best_match(subject, [t.label for t in targets], floor=ACCEPTANCE_FLOOR)
        if ranked is not None:
            match.proposed_target = targets[ranked.index]
            match.confidence = ranked.confidence
            match.ambiguous = ranked.ambiguous

    _propose_files(plan, subject)
    return match


def _propose_files(plan: MatchPlan, subject: str) -> None:
    """Receipt files of a loose folder are matched against its vehicle's service record titles"""
    if plan.source != SOURCE_LOOSE:
        return

    plan.file_matches = [m for m in plan.file_matches if m.folder != subject]
    folder = plan.bundle.vehicles[subject]
    if not folder.receipts:
        return

    target = plan.folder_matches[subject].resolved
    records = []
    if target is not None and target.kind == TARGET_VEHICLE:
        candidate = plan.candidates.vehicle(target.id)
        records = candidate.service_records if candidate else []

    for f in folder.receipts:
        match = FileMatch(folder=subject, subject=f.name)
        found = match_file_to_record(f.name, [r.title for r in records])
        if found is not None:
            record = records[found.index]
            match.proposed_target = MatchTarget(TARGET_SERVICE_RECORD, record.title, record.id)
            match.confidence = found.confidence
            match.ambiguous = found.ambiguous
        plan.file_matches.append(match)


def document_row_from_file(vehicle_name: str, file_name: str) -> DocumentRow:
    """Loose document scans become new documents titled after the file"""
    parsed = parse_import_file_name(file_name)
    title = parsed.title or file_name
    ranked = best_match(title, list(DOCUMENT_TYPES))
    return DocumentRow(
        vehicle_name=vehicle_name,
        title=title,
        document_type=DOCUMENT_TYPES[ranked.index] if ranked else "other",
        file_name=file_name,
        file_type=mime_type_for(file_name),
    )


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

class ImportReconciler:
    def __init__(self, today: Optional[date] = None):
        self.today = today

    @track_performance(service_name="ImportReconciler")
    async def build_plan(
        self,
        payload: ImportPayload,
        candidates: CandidateSet,
        target_kind: Optional[str] = None,
    ) -> MatchPlan:
        """
        Parses the payload and proposes every binding. The payload is an
        archive, a folder tree, a lone vehicle-data JSON file, or a CSV with
        or without a folder tree.

        Raises ArchiveFormatError when nothing importable is found: no CSV,
        no snapshot and no vehicle folder with files.
        """
        if target_kind is not None and target_kind not in KINDS:
            raise ValueError(f"target_kind must be one of {KINDS}")

        bundle = ArchiveBundle(root="", layout="folder")
        if payload.archive is not None:
            bundle = await asyncio.to_thread(read_archive, payload.archive)
            if not bundle.has_structured_payload and not bundle.vehicles:
                members = await asyncio.to_thread(list_members, payload.archive)
                bundle = bundle_from_folder_tree(members, target_kind or "photos")
        elif payload.folder_files:
            bundle = bundle_from_folder_tree(payload.folder_files, target_kind or "photos")
        elif payload.json_text is not None:
            bundle = bundle_from_snapshot_json(payload.json_text)

        csv_text = payload.csv_text if payload.csv_text is not None else bundle.csv_text

        comprehensive = False
        if csv_text:
            headers, records = read_csv_records(csv_text)
            comprehensive = is_comprehensive_csv(headers)

        snapshots = any(f.snapshot is not None for f in bundle.vehicles.values())
        if comprehensive or (snapshots and not csv_text):
            plan = MatchPlan(source=SOURCE_ARCHIVE, bundle=bundle, candidates=candidates,
                             target_kind=target_kind, today=self.today)
            if comprehensive:
                self._map_comprehensive(plan, split_records(records))
            else:
                self._map_snapshots(plan)
        else:
            plan = MatchPlan(source=SOURCE_LOOSE, bundle=bundle, candidates=candidates,
                             target_kind=target_kind, today=self.today)
            if csv_text:
                plan.loose_csv = parse_loose_csv(csv_text)
                plan.column_mapping = auto_map_columns(plan.loose_csv.headers)
                plan.vehicles, plan.previews = map_loose_rows(plan.loose_csv.rows, plan.column_mapping,
                                                              today=self.today)
            self._drop_unaccepted_files(plan)

        if not plan.previews and not any(plan.bundle.vehicles[f].files(k) for f in plan.bundle.vehicles for k in KINDS):
            raise ArchiveFormatError(
                "Nothing to import: no collection-export.csv, vehicle data or vehicle folders were found."
            )

        for subject in list(plan.bundle.vehicles):
            if subject not in plan.folder_matches:
                _propose_folder(plan, subject)

        logger.info(
            "Match plan built",
            extra={
                "source": plan.source,
                "layout": bundle.layout,
                "vehicle_rows": len(plan.vehicles),
                "invalid_rows": len(plan.invalid_rows),
                "folders": len(plan.folder_matches),
                "unmatched_folders": len(plan.unmatched_folders),
                "ambiguous_folders": len(plan.ambiguous_folders),
                "ignored_files": len(plan.ignored_files),
            },
        )
        return plan

    def _map_comprehensive(self, plan: MatchPlan, split: Dict[str, List[Dict[str, str]]]) -> None:
        targets = {"vehicle": plan.vehicles, "service": plan.services,
                   "document": plan.documents, "mileage": plan.mileage}
        row_number = 0
        for record_type in ("vehicle", "service", "document", "mileage"):
            mapper = RECORD_MAPPERS[record_type]
            for cells in split[record_type]:
                row_number += 1
                try:
                    row = mapper(cells, today=self.today)
                except RowValidationError as e:
                    plan.previews.append(RowPreview(
                        row_number=row_number, record_type=record_type,
                        vehicle_name=cells.get("vehicle_name") or None,
                        valid=False, error=str(e), field=e.field,
                    ))
                    continue
                targets[record_type].append(row)
                plan.previews.append(RowPreview(
                    row_number=row_number, record_type=record_type,
                    vehicle_name=row.name if record_type == "vehicle" else row.vehicle_name,
                ))

    def _map_snapshots(self, plan: MatchPlan) -> None:
        row_number = 0
        for folder_name, folder in plan.bundle.vehicles.items():
            if folder.snapshot is None:
                continue
            row_number += 1
            try:
                rows = map_snapshot(folder.snapshot, today=self.today)
            except RowValidationError as e:
                plan.previews.append(RowPreview(row_number=row_number, record_type="vehicle",
                                                valid=False, error=str(e), field=e.field))
                continue
            plan.vehicles.append(rows.vehicle)
            plan.services.extend(rows.services)
            plan.documents.extend(rows.documents)
            plan.mileage.extend(rows.mileage)
            plan.previews.append(RowPreview(row_number=row_number, record_type="vehicle",
                                            vehicle_name=rows.vehicle.name))
            # the snapshot names its own vehicle
            plan.folder_matches[folder_name] = FolderMatch(
                subject=folder_name,
                proposed_target=MatchTarget(TARGET_BATCH, rows.vehicle.name),
                confidence=100,
            )

    @staticmethod
    def _drop_unaccepted_files(plan: MatchPlan) -> None:
        for folder_name, folder in plan.bundle.vehicles.items():
            for kind in KINDS:
                kept = []
                for f in folder.files(kind):
                    if is_accepted(f.name, kind):
                        kept.append(f)
                    else:
                        plan.ignored_files.append(f"{folder_name}/{f.name}")
                folder.files(kind)[:] = kept
