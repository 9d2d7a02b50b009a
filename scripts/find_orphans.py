#!/usr/bin/env python3
"""
Report blobs without metadata rows, and rows whose blob is missing.

Read-only: prints the report and exits 1 when drift was found.

Usage:
    python scripts/find_orphans.py
    python scripts/find_orphans.py --skip-rows   # only scan for orphan blobs
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from kpgb.core.config import settings  # noqa: E402
from kpgb.main import build_blog_manager, close_blog_manager  # noqa: E402
from kpgb.services.orphans import find_orphans  # noqa: E402


async def main(check_rows: bool) -> int:
    blog = await build_blog_manager(settings)
    try:
        report = await find_orphans(blog, check_rows=check_rows)
    finally:
        await close_blog_manager(blog)

    print(f"Backend: {report.backend}")
    if not report.supported:
        print("Orphan scan is not supported for this backend")
        return 0

    print(f"Orphan blobs: {len(report.orphan_blobs)}")
    for storage_id in report.orphan_blobs:
        print(f"  {storage_id}")
    if check_rows:
        print(f"Rows with missing blobs: {len(report.dangling_rows)}")
        for storage_id in report.dangling_rows:
            print(f"  {storage_id}")

    return 0 if report.clean else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Find blobs and metadata rows that have drifted apart")
    parser.add_argument("--skip-rows", action="store_true", help="Don't check that every row's blob exists")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(check_rows=not args.skip_rows)))
