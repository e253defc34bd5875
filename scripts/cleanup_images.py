"""
Delete uploaded images older than a given age.

Image sessions clean up their own files when they expire or are consumed;
this script is the disk hygiene pass for anything left behind (crashes,
restarts, interrupted uploads). Run it from cron or by hand.

Usage examples:
  python scripts/cleanup_images.py            # older than 24 hours
  python scripts/cleanup_images.py 6          # older than 6 hours
  python scripts/cleanup_images.py 1 --upload-dir /srv/casegen/uploads

Notes:
 - Uses casegen.config.settings for UPLOAD_DIR unless --upload-dir is given.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import structlog

# Ensure we can import the casegen package when running as a script
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from casegen.config.settings import settings  # noqa: E402
from casegen.services.image_processing import cleanup_old_images  # noqa: E402

logger = structlog.get_logger()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete uploaded images older than MAX_AGE_HOURS")
    parser.add_argument("max_age_hours", nargs="?", type=float, default=24.0,
                        help="Delete files older than this many hours (default: 24)")
    parser.add_argument("--upload-dir", default=None, help=f"Upload directory (default: {settings.upload_dir})")
    args = parser.parse_args(argv)
    if args.max_age_hours < 0:
        parser.error("max_age_hours must not be negative")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    upload_dir = args.upload_dir or settings.upload_dir
    logger.info("Starting image cleanup", max_age_hours=args.max_age_hours, upload_dir=upload_dir)
    try:
        removed = cleanup_old_images(upload_dir, args.max_age_hours)
    except Exception as e:
        logger.error("Image cleanup failed", error=str(e), exc_info=True)
        return 1
    logger.info("Image cleanup completed successfully", removed=removed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
