"""
Archive layout codec.

Converts between zip bytes and the in-memory `ArchiveBundle`.

Export always writes the flat layout:

    <root>/vehicle-data/<vehicle>.json
    <root>/images/<vehicle>/<file>
    <root>/documents/<vehicle>/<file>
    <root>/receipts/<vehicle>/<file>
    <root>/csv/collection-export.csv

Import additionally accepts the legacy nested layout:

    <root>/motorcycles/<vehicle>/images/{photos,documents,receipts}/<file>

The layout is picked per archive by looking at the member paths; both produce
the same bundle, so nothing downstream knows which generation it read.
"""

import io
import json
import logging
import os
import re
import unicodedata
import zipfile
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from schemas.archive import VehicleSnapshot
from services.exceptions import ArchiveFormatError

logger = logging.getLogger(__name__)

KINDS = ("photos", "documents", "receipts")

FLAT_MARKERS = {"images": "photos", "documents": "documents", "receipts": "receipts"}
LEGACY_MARKER = "motorcycles"
LEGACY_KIND_FOLDERS = {"photos": "photos", "documents": "documents", "receipts": "receipts"}

SNAPSHOT_FOLDER = "vehicle-data"
CSV_FOLDER = "csv"
COMPREHENSIVE_CSV_NAME = "collection-export.csv"

_UNSAFE_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_file_name(name: str) -> str:
    """Replace characters that cannot appear in a folder/file name with '-'."""
    cleaned = _UNSAFE_NAME_CHARS.sub("-", name or "")
    return re.sub(r"\s+", " ", cleaned).strip()


def unique_file_name(used_names: set, desired_name: str) -> str:
    """
    Reserve `desired_name` in `used_names`, appending -2, -3, ... before the
    extension until it is free.
    """
    if desired_name not in used_names:
        used_names.add(desired_name)
        return desired_name

    dot = desired_name.rfind(".")
    base = desired_name[:dot] if dot > 0 else desired_name
    ext = desired_name[dot:] if dot > 0 else ""

    counter = 2
    candidate = f"{base}-{counter}{ext}"
    while candidate in used_names:
        counter += 1
        candidate = f"{base}-{counter}{ext}"
    used_names.add(candidate)
    return candidate


@dataclass
class ArchiveFile:
    name: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class VehicleFolder:
    folder_name: str
    photos: List[ArchiveFile] = field(default_factory=list)
    documents: List[ArchiveFile] = field(default_factory=list)
    receipts: List[ArchiveFile] = field(default_factory=list)
    snapshot: Optional[VehicleSnapshot] = None

    def files(self, kind: str) -> List[ArchiveFile]:
        return getattr(self, kind)

    def find(self, kind: str, file_name: str) -> Optional[ArchiveFile]:
        for f in self.files(kind):
            if f.name == file_name:
                return f
        return None


@dataclass
class ArchiveBundle:
    """One export/import worth of data. Lives only for the duration of that run."""
    root: str
    vehicles: Dict[str, VehicleFolder] = field(default_factory=dict)
    csv_text: Optional[str] = None
    layout: str = "flat"

    def folder(self, folder_name: str) -> VehicleFolder:
        if folder_name not in self.vehicles:
            self.vehicles[folder_name] = VehicleFolder(folder_name=folder_name)
        return self.vehicles[folder_name]

    @property
    def has_structured_payload(self) -> bool:
        return bool(self.csv_text) or any(v.snapshot is not None for v in self.vehicles.values())

    def file_count(self) -> int:
        return sum(len(v.files(kind)) for v in self.vehicles.values() for kind in KINDS)


# ---------------------------------------------------------------------------
# Layout detection
# ---------------------------------------------------------------------------

def is_ignored_member(path: str) -> bool:
    """macOS resource forks and hidden files never carry user data."""
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    if not parts:
        return True
    if "__MACOSX" in parts:
        return True
    return parts[-1].startswith(".")


def _safe_member_name(name: str) -> Optional[str]:
    try:
        normalized = unicodedata.normalize("NFC", name)
    except (TypeError, UnicodeDecodeError):
        return None
    normalized = normalized.replace("\\", "/")
    if os.path.isabs(normalized) or normalized.startswith("/"):
        return None
    if ".." in normalized.split("/"):
        return None
    return normalized


class FlatLayout:
    name = "flat"

    @staticmethod
    def marker_index(parts: List[str]) -> Optional[int]:
        for i, part in enumerate(parts[:-1]):
            if part in FLAT_MARKERS:
                return i
        return None

    def classify(self, parts: List[str]) -> Optional[Tuple[str, str, str]]:
        """(vehicle folder, kind, file name) or None when the path is not an attachment"""
        i = self.marker_index(parts)
        if i is None or len(parts) < i + 3:
            return None
        return parts[i + 1], FLAT_MARKERS[parts[i]], "/".join(parts[i + 2:])


class LegacyLayout:
    name = "legacy"

    @staticmethod
    def marker_index(parts: List[str]) -> Optional[int]:
        for i, part in enumerate(parts[:-1]):
            if part == LEGACY_MARKER:
                return i
        return None

    def classify(self, parts: List[str]) -> Optional[Tuple[str, str, str]]:
        i = self.marker_index(parts)
        # motorcycles/<vehicle>/images/<kind>/<file>
        if i is None or len(parts) < i + 5:
            return None
        if parts[i + 2] != "images" or parts[i + 3] not in LEGACY_KIND_FOLDERS:
            return None
        return parts[i + 1], LEGACY_KIND_FOLDERS[parts[i + 3]], "/".join(parts[i + 4:])


LAYOUTS = {"flat": FlatLayout(), "legacy": LegacyLayout()}


@dataclass
class DetectedLayout:
    layout: str
    root_prefix: str


def detect_layout(member_paths: Iterable[str]) -> DetectedLayout:
    """
    Legacy wins if any directory segment is 'motorcycles'; otherwise the flat
    layout is assumed. The root prefix is everything before the first marker.
    """
    paths = [p for p in member_paths if not is_ignored_member(p)]
    split = [[s for s in p.split("/") if s] for p in paths]

    for parts in split:
        i = LegacyLayout.marker_index(parts)
        if i is not None:
            return DetectedLayout(layout="legacy", root_prefix="/".join(parts[:i]))

    for parts in split:
        i = FlatLayout.marker_index(parts)
        if i is not None:
            return DetectedLayout(layout="flat", root_prefix="/".join(parts[:i]))

    return DetectedLayout(layout="flat", root_prefix="")


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def _parse_snapshot(path: str, raw: bytes) -> Optional[VehicleSnapshot]:
    try:
        return VehicleSnapshot.model_validate(json.loads(raw.decode("utf-8-sig")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Ignoring unreadable vehicle snapshot", extra={"path": path, "error": str(e)})
        return None


def _pick_csv(candidates: Dict[str, bytes]) -> Optional[str]:
    if not candidates:
        return None
    preferred = [p for p in candidates if p.endswith(f"{CSV_FOLDER}/{COMPREHENSIVE_CSV_NAME}")]
    path = preferred[0] if preferred else sorted(candidates)[0]
    return candidates[path].decode("utf-8-sig", errors="replace")


def list_members(data: bytes) -> List[Tuple[str, bytes]]:
    """(path, bytes) of every safe, non-hidden file in a zip, in archive order"""
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ArchiveFormatError(f"Could not read this archive: {e}") from e

    members = []
    with zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            name = _safe_member_name(info.filename)
            if name is None:
                logger.warning("Skipping unsafe archive member", extra={"member": info.filename})
                continue
            if is_ignored_member(name):
                continue
            members.append((name, zf.read(info)))
    return members


def read_archive(data: bytes) -> ArchiveBundle:
    """
    Parse zip bytes into an ArchiveBundle.

    Raises ArchiveFormatError when the bytes are not a zip. An archive without
    a structured payload is still returned; callers decide whether that is
    acceptable (folder-only submissions are).
    """
    members = list_members(data)
    detected = detect_layout(name for name, _ in members)
    layout = LAYOUTS[detected.layout]
    bundle = ArchiveBundle(root=detected.root_prefix, layout=detected.layout)

    csv_candidates: Dict[str, bytes] = {}
    for name, raw in members:
        parts = [p for p in name.split("/") if p]

        if len(parts) >= 2 and parts[-2] == SNAPSHOT_FOLDER and parts[-1].lower().endswith(".json"):
            snapshot = _parse_snapshot(name, raw)
            if snapshot is not None:
                bundle.folder(parts[-1][:-len(".json")]).snapshot = snapshot
            continue

        if parts[-1].lower().endswith(".csv"):
            csv_candidates[name] = raw
            continue

        classified = layout.classify(parts)
        if classified is None:
            logger.debug("Archive member outside any known folder", extra={"member": name})
            continue
        folder_name, kind, file_name = classified
        bundle.folder(folder_name).files(kind).append(ArchiveFile(name=file_name, data=raw))

    bundle.csv_text = _pick_csv(csv_candidates)

    logger.info(
        "Archive parsed",
        extra={
            "layout": bundle.layout,
            "vehicle_folders": len(bundle.vehicles),
            "files": bundle.file_count(),
            "has_csv": bundle.csv_text is not None,
        },
    )
    return bundle


def bundle_from_snapshot_json(text: str) -> ArchiveBundle:
    """
    A lone vehicle-data JSON file, as saved from a single-vehicle export.

    It carries records but no files, so photos, document scans and receipts
    it names are reported missing at commit.
    """
    try:
        snapshot = VehicleSnapshot.model_validate(json.loads(text.lstrip("\ufeff")))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ArchiveFormatError(f"Not a vehicle data file: {e}") from e
    bundle = ArchiveBundle(root="", layout="json")
    bundle.folder(sanitize_file_name(snapshot.vehicle.display_name()) or "vehicle").snapshot = snapshot
    return bundle


def bundle_from_folder_tree(files: Iterable[Tuple[str, bytes]], kind: str) -> ArchiveBundle:
    """
    Build a bundle from a dropped folder tree (relative path, bytes).

    Each file is grouped under its immediate parent folder. A path with no
    folder part has nothing to match against and is dropped, so the caller's
    choice of base decides whether the dropped folder's own name counts.
    """
    bundle = ArchiveBundle(root="", layout="folder")
    for path, data in files:
        name = _safe_member_name(path)
        if name is None or is_ignored_member(name):
            continue
        parts = [p for p in name.split("/") if p]
        if len(parts) < 2:
            continue
        bundle.folder(parts[-2]).files(kind).append(ArchiveFile(name=parts[-1], data=data))
    return bundle


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

_KIND_FOLDERS = {"photos": "images", "documents": "documents", "receipts": "receipts"}


def write_archive(bundle: ArchiveBundle) -> bytes:
    """Serialize a bundle in the flat layout under `bundle.root`."""
    buffer = io.BytesIO()
    root = bundle.root.strip("/")
    prefix = f"{root}/" if root else ""

    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for folder_name, folder in bundle.vehicles.items():
            if folder.snapshot is not None:
                zf.writestr(
                    f"{prefix}{SNAPSHOT_FOLDER}/{folder_name}.json",
                    folder.snapshot.model_dump_json(indent=2),
                )
            for kind in KINDS:
                for f in folder.files(kind):
                    zf.writestr(f"{prefix}{_KIND_FOLDERS[kind]}/{folder_name}/{f.name}", f.data)

        if bundle.csv_text is not None:
            zf.writestr(f"{prefix}{CSV_FOLDER}/{COMPREHENSIVE_CSV_NAME}", bundle.csv_text)

    return buffer.getvalue()
