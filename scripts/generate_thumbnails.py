"""Generate thumbnail variants for existing images.

Usage:
    python -m scripts.generate_thumbnails --prefix logos/
    python -m scripts.generate_thumbnails --prefix covers/ --dry-run
    python -m scripts.generate_thumbnails --inventory organizations.json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

import structlog

from app.backend.src.core.logging import configure_logging
from app.backend.src.services.backfill import (
    BackfillReport,
    candidates_from_inventory,
    candidates_from_prefix,
    run_backfill,
)
from app.backend.src.services.s3 import (
    StorageConfigError,
    StorageError,
    StorageGateway,
    get_storage_gateway,
)

LOGGER = structlog.get_logger(__name__)


def load_inventory(path: Path) -> list[tuple[str | None, str | None, str | None]]:
    """Read ``[{"id", "logo_url", "cover_image_url"}, ...]`` exported from the catalog."""

    records = json.loads(path.read_text(encoding="utf-8"))
    return [
        (record.get("id"), record.get("logo_url"), record.get("cover_image_url"))
        for record in records
    ]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--prefix", help="List originals under this key prefix")
    source.add_argument("--inventory", type=Path, help="JSON export of organization image fields")
    parser.add_argument("--dry-run", action="store_true", help="Report actions without uploading")
    return parser.parse_args(argv)


def run(args: argparse.Namespace, gateway: StorageGateway) -> BackfillReport:
    if args.prefix is not None:
        candidates = candidates_from_prefix(gateway, args.prefix)
    else:
        candidates = candidates_from_inventory(load_inventory(args.inventory))
    LOGGER.info("backfill_candidates", count=len(candidates), dry_run=args.dry_run)
    return run_backfill(gateway, candidates, dry_run=args.dry_run)


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)
    try:
        report = run(args, get_storage_gateway())
    except (StorageConfigError, StorageError) as exc:
        LOGGER.error("backfill_aborted", error=str(exc))
        return 2
    print(json.dumps(report.as_dict(), indent=2))
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
