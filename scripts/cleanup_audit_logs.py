"""
Delete audit log rows older than a retention window.

Dry run by default; pass --execute to delete.

    python -m scripts.cleanup_audit_logs --retention-days 365
    python -m scripts.cleanup_audit_logs --retention-days 365 --execute
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from agency_core.api.audit.store import CleanupResult, SqlAuditLogStore
from agency_core.api.config import settings
from agency_core.api.db.session import close_db, get_session_maker


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument(
        "--retention-days",
        type=int,
        default=settings.AUDIT_DEFAULT_RETENTION_DAYS,
        help="Keep rows newer than this many days (default: %(default)s)",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Actually delete rows instead of only counting them",
    )
    args = parser.parse_args(argv)
    if args.retention_days < 0:
        parser.error("--retention-days must be >= 0")
    return args


async def cleanup(retention_days: int, execute: bool) -> CleanupResult:
    store = SqlAuditLogStore(get_session_maker())
    try:
        return await store.cleanup_old_audit_logs(retention_days, dry_run=not execute)
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = parse_args(argv)
    result = asyncio.run(cleanup(args.retention_days, args.execute))

    mode = "dry_run" if result.dry_run else "executed"
    print(
        f"mode={mode} retention_days={result.retention_days} "
        f"cutoff={result.cutoff.isoformat()} matched={result.matched} deleted={result.deleted}"
    )


if __name__ == "__main__":
    main()
