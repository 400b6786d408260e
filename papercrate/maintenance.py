"""Operator maintenance commands."""

import argparse
import logging
import sys
from typing import Optional

from sqlalchemy import delete, select

from papercrate.config import Settings
from papercrate.context import WorkerContext, build_context
from papercrate.errors import StorageError
from papercrate.models.document import DocumentAsset
from papercrate.services.job_queue import reclaim_stale_jobs

logger = logging.getLogger(__name__)


def delete_all_assets(ctx: WorkerContext) -> int:
    """
    Remove every derived asset, blobs first and then rows.

    Blob deletion failures are logged and skipped; the rows are removed
    regardless so the pipeline regenerates the assets on the next request.

    Returns:
        Number of asset rows deleted
    """
    with ctx.session() as db:
        keys = list(db.execute(select(DocumentAsset.s3_key)).scalars())
        if not keys:
            logger.info("No assets found")
            return 0

        logger.info(f"Deleting {len(keys)} assets...")
        for key in keys:
            try:
                ctx.storage.delete_object(key)
            except StorageError as e:
                logger.error(f"Failed to delete object {key} from storage: {e}")

        deleted = db.execute(delete(DocumentAsset)).rowcount
        db.commit()

    logger.info(f"Deleted {deleted} asset records")
    return deleted


def reclaim(ctx: WorkerContext) -> int:
    """Run one pass of stale-lease reclamation."""
    settings = ctx.settings
    with ctx.session() as db:
        count = reclaim_stale_jobs(db, settings.WORKER_LEASE_TIMEOUT, settings.WORKER_MAX_ATTEMPTS)
    logger.info(f"Reclaimed {count} stale jobs")
    return count


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Papercrate maintenance")
    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("delete-assets", help="Delete every derived asset and its blob")
    subparsers.add_parser("reclaim", help="Requeue jobs held past the lease timeout")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    ctx = build_context(settings)
    commands = {
        "delete-assets": delete_all_assets,
        "reclaim": reclaim,
    }
    try:
        commands[args.command](ctx)
    finally:
        ctx.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
