"""
Export a collection (or a single vehicle) to a zip archive.

    python -m scripts.export_collection --collection 1 --out ./exports
    python -m scripts.export_collection --collection 1 --tables --out ./exports
    python -m scripts.export_collection --vehicle 7 --out ./exports
"""

import argparse
import asyncio
import logging
from pathlib import Path

from core.db import AsyncSessionLocal
from core.logging import setup_logging
from schemas.results import ExportOptions, ExportProgress
from services.export_service import ExportAssembler
from services.interchange_csv import (
    filter_vehicles_for_export,
    generate_documents_csv,
    generate_service_records_csv,
    generate_vehicle_csv,
)
from services.repository import CollectionRepository
from services.storage import S3BlobStorage

logger = logging.getLogger("scripts.export_collection")


def print_progress(progress: ExportProgress):
    print(f"[{progress.phase}] {progress.current}/{progress.total} {progress.message}")


async def write_table_csvs(repository: CollectionRepository, collection_id: int, options: ExportOptions,
                           out_dir: Path) -> list:
    """Plain vehicles / service-records / documents CSVs next to the archive"""
    vehicles = filter_vehicles_for_export(await repository.list_vehicles(collection_id), options)
    records, documents = [], []
    for vehicle in vehicles:
        records += [(vehicle.name, r) for r in await repository.service_records_for_vehicle(vehicle.id)]
        documents += [(vehicle.name, d) for d in await repository.documents_for_vehicle(vehicle.id)]

    tables = {
        "vehicles.csv": generate_vehicle_csv(vehicles, options),
        "service-records.csv": generate_service_records_csv(records),
        "documents.csv": generate_documents_csv(documents),
    }
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for file_name, text in tables.items():
        target = out_dir / file_name
        target.write_text(text, encoding="utf-8")
        written.append(target)
    return written


async def run(args) -> int:
    storage = S3BlobStorage()
    try:
        async with AsyncSessionLocal() as db:
            assembler = ExportAssembler(CollectionRepository(db), storage)
            if args.vehicle is not None:
                result = await assembler.export_vehicle(args.vehicle, on_progress=print_progress)
            else:
                options = ExportOptions(
                    include_inactive=not args.active_only,
                    encode_status_in_notes=args.status_in_notes,
                )
                result = await assembler.export_collection(args.collection, options, on_progress=print_progress)
                if args.tables and result.success:
                    for path in await write_table_csvs(assembler.repository, args.collection, options,
                                                       Path(args.out)):
                        print(f"Wrote {path}")
    finally:
        await storage.aclose()

    if not result.success:
        logger.error("Export did not complete", extra={"status": result.status.value, "reason": result.message})
        return 1

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / result.file_name
    target.write_bytes(result.archive)

    print(f"Wrote {target} ({result.total_files} files)")
    for detail in result.skipped_details:
        print(f"  skipped: {detail}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Export a vehicle collection archive")
    scope = parser.add_mutually_exclusive_group(required=True)
    scope.add_argument("--collection", type=int, help="collection id")
    scope.add_argument("--vehicle", type=int, help="vehicle id")
    parser.add_argument("--out", default=".", help="output directory")
    parser.add_argument("--active-only", action="store_true", help="leave sold and traded vehicles out")
    parser.add_argument("--status-in-notes", action="store_true",
                        help="prefix notes with SOLD/TRADED for spreadsheet users")
    parser.add_argument("--tables", action="store_true",
                        help="also write vehicles, service-records and documents CSVs")
    args = parser.parse_args()

    setup_logging()
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
