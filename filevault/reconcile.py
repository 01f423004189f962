"""Out-of-band cleanup: orphaned blobs and expired sessions.

Run it from cron, e.g. ``filevault-reconcile --grace-seconds 7200``.
"""
import argparse
import logging

from filevault.core.config import get_settings
from filevault.core.logging import configure_logging
from filevault.core.security import DatabaseSessionStore
from filevault.core.storage import get_storage
from filevault.models.database import SessionLocal
from filevault.services.files import reconcile_storage

logger = logging.getLogger("filevault.reconcile")


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Remove blobs with no file record and expired sessions.")
    parser.add_argument(
        "--grace-seconds",
        type=int,
        default=settings.reconcile_grace_seconds,
        help="only touch blobs older than this (default: %(default)s)",
    )
    args = parser.parse_args(argv)
    configure_logging(settings.log_level)

    db = SessionLocal()
    try:
        report = reconcile_storage(db, get_storage(), args.grace_seconds)
        expired = DatabaseSessionStore(db).purge_expired()
    finally:
        db.close()

    logger.info(
        "Removed %d orphaned blobs, %d staged blobs, %d expired sessions",
        len(report.removed_published),
        len(report.removed_staged),
        expired,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
