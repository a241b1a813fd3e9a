"""
Import an archive, a CSV or a folder of files into a collection.

The match plan is printed for review; --yes confirms it without asking.

    python -m scripts.import_archive --collection 1 export.zip
    python -m scripts.import_archive --collection 1 --csv bikes.csv
    python -m scripts.import_archive --collection 1 --json Bumblebee.json
    python -m scripts.import_archive --collection 1 --folder ./photos --kind photos
"""

import argparse
import asyncio
import logging
from pathlib import Path

from core.db import AsyncSessionLocal
from core.logging import setup_logging
from services.commit_executor import CommitExecutor
from services.exceptions import ArchiveDomainError
from services.reconciler import ImportPayload, ImportReconciler, MatchPlan, load_candidates
from services.repository import CollectionRepository
from services.storage import S3BlobStorage
from services.validators import BusinessRules

logger = logging.getLogger("scripts.import_archive")


def read_payload(args) -> ImportPayload:
    if args.archive:
        return ImportPayload(archive=Path(args.archive).read_bytes())
    if args.csv:
        return ImportPayload(csv_text=Path(args.csv).read_text(encoding="utf-8-sig"))
    if args.json:
        return ImportPayload(json_text=Path(args.json).read_text(encoding="utf-8-sig"))
    # paths keep the folder's own name, so `--folder ./Grom` reads as the Grom vehicle folder
    root = Path(args.folder)
    files = [
        (path.relative_to(root.parent).as_posix(), path.read_bytes())
        for path in sorted(root.rglob("*"))
        if path.is_file()
    ]
    return ImportPayload(folder_files=files)


def print_plan(plan: MatchPlan):
    print(f"Source: {plan.source}  vehicles to create: {len(plan.vehicles)}")
    for preview in plan.invalid_rows:
        print(f"  row {preview.row_number} ({preview.record_type}): {preview.error}")
    for match in plan.folder_matches.values():
        target = match.resolved
        label = f"{target.label} ({match.confidence}%)" if target else "unmatched"
        flag = "  [ambiguous]" if match.ambiguous else ""
        print(f"  {match.subject} -> {label}{flag}")
    for match in plan.unmatched_files:
        print(f"  receipt {match.folder}/{match.subject} -> unmatched")
    for path in plan.ignored_files:
        print(f"  ignored: {path}")


async def run(args) -> int:
    storage = S3BlobStorage()
    try:
        async with AsyncSessionLocal() as db:
            repository = CollectionRepository(db)
            candidates = await load_candidates(repository, args.collection)
            plan = await ImportReconciler().build_plan(read_payload(args), candidates, target_kind=args.kind)
            print_plan(plan)

            if not args.yes and input("Import? [y/N] ").strip().lower() != "y":
                print("Nothing imported.")
                return 0

            limits = BusinessRules.plan_limits(args.pro, await repository.count_vehicles(args.collection))
            result = await CommitExecutor(repository, storage).commit(plan.confirm(), limits, args.collection)
    except ArchiveDomainError as e:
        logger.error("Import failed", extra={"error": str(e)})
        print(f"Import failed: {e}")
        return 1
    finally:
        await storage.aclose()

    for key, value in result.summary().items():
        print(f"{key}: {value}")
    for detail in result.skipped_details:
        print(f"  skipped: {detail}")
    for detail in result.failure_details:
        print(f"  failed: {detail}")
    return 0 if result.failed == 0 else 2


def main():
    parser = argparse.ArgumentParser(description="Import into a vehicle collection")
    parser.add_argument("--collection", type=int, required=True, help="collection id")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("archive", nargs="?", help="zip archive")
    source.add_argument("--csv", help="plain or comprehensive CSV")
    source.add_argument("--json", help="vehicle data JSON from a single-vehicle export")
    source.add_argument("--folder", help="folder with one sub-folder per vehicle")
    parser.add_argument("--kind", choices=["photos", "documents", "receipts"],
                        help="what the files in a loose folder are")
    parser.add_argument("--pro", action="store_true", help="collection owner is on the Pro plan")
    parser.add_argument("--yes", action="store_true", help="confirm the plan without asking")
    args = parser.parse_args()

    setup_logging()
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
