import argparse
import logging

from directory_import.vendors.images import ImageDownloader

logger = logging.getLogger(__name__)


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = argparse.ArgumentParser(description="Delete old downloaded company images")
    parser.add_argument("--days", type=int, default=30, help="Delete images older than this many days")
    parser.add_argument("--dry-run", action="store_true", help="Only print storage usage")
    args = parser.parse_args(argv)

    downloader = ImageDownloader()
    if not args.dry_run:
        removed = downloader.cleanup_old_images(older_than_days=args.days)
        print("Removed", removed, "images older than", args.days, "days")

    info = downloader.get_storage_info()
    print("Stored images:", info.total_files, "files,", info.total_size_mb, "MB")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
