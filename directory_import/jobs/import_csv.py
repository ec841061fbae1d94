"""CLI job that imports a Google Maps CSV export into the directory database."""

import argparse
import csv
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from directory_import.core.config import ConfigError, get_settings
from directory_import.core.db import PostgresStore, init_pool
from directory_import.jobs.import_row import CompanyImporter
from directory_import.jobs.import_session import ImportSession, run_import_session
from directory_import.models import ImportSettings, RawImportRow

logger = logging.getLogger(__name__)


def read_rows(path: Path) -> List[RawImportRow]:
    """Read every non-empty data row; the BOM Excel adds is stripped."""
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        return [row for row in reader if any((value or "").strip() for value in row.values() if isinstance(value, str))]


def settings_from_args(args: argparse.Namespace) -> ImportSettings:
    return ImportSettings(
        download_images=not args.no_images,
        create_missing_categories=not args.no_create_categories,
        create_missing_cities=not args.no_create_cities,
        skip_duplicates=not args.allow_duplicates,
        validate_emails=not args.no_validate_emails,
        validate_phones=not args.no_validate_phones,
        batch_size=max(1, args.batch_size),
    )


def run_import_job(path: Path, settings: ImportSettings, report: Optional[Path] = None) -> ImportSession:
    init_pool()
    rows = read_rows(path)
    logger.info("Read %d rows from %s", len(rows), path)

    importer = CompanyImporter(PostgresStore())
    session = run_import_session(ImportSession.new(rows, settings), importer)

    if report is not None:
        report.write_text(json.dumps(session.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("Wrote import report to %s", report)
    return session


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import companies from a CSV export")
    parser.add_argument("file", type=Path, help="CSV file to import")
    parser.add_argument("--no-images", action="store_true", help="Do not download company images")
    parser.add_argument("--no-create-categories", action="store_true", help="Fail rows whose category is unknown")
    parser.add_argument("--no-create-cities", action="store_true", help="Fail rows whose location is unknown")
    parser.add_argument("--allow-duplicates", action="store_true", help="Import rows that match an existing company")
    parser.add_argument("--no-validate-emails", action="store_true", help="Skip email format checks")
    parser.add_argument("--no-validate-phones", action="store_true", help="Skip phone format checks")
    parser.add_argument(
        "--batch-size",
        dest="batch_size",
        type=int,
        default=get_settings().import_batch_size,
        help="Log progress every N rows",
    )
    parser.add_argument("--report", type=Path, help="Write a JSON report of errors and skipped rows")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.file.is_file():
        parser.error(f"{args.file} does not exist")

    try:
        session = run_import_job(args.file, settings_from_args(args), args.report)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except Exception as exc:  # noqa: BLE001
        logger.exception("Import failed: %s", exc)
        return 1

    stats = session.stats
    print(
        f"{session.status}: {stats.successful_imports} imported, {stats.failed_imports} failed, "
        f"{stats.skipped_rows} skipped, {stats.downloaded_images} images ({stats.failed_images} failed)"
    )
    return 0 if session.status == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
