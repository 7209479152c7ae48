"""Housekeeping tasks for an epress node.

Usage::

    python -m epress_node.scripts.maintenance expire-comments
    python -m epress_node.scripts.maintenance cleanup-contents
    python -m epress_node.scripts.maintenance sync-following
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable, Sequence

from sqlalchemy.orm import Session

from epress_node.core.settings import settings
from epress_node.db.session import SessionLocal
from epress_node.errors import FederationError
from epress_node.services.comments import CommentService
from epress_node.services.connections import ConnectionService
from epress_node.services.contents import ContentService
from epress_node.services.federation import FederationClient
from epress_node.services.publications import PublicationService

logger = logging.getLogger(__name__)


def expire_comments(db: Session) -> int:
    """Mark email comments whose confirmation window passed as EXPIRED."""
    return CommentService(db).expire_stale()


def cleanup_contents(db: Session) -> int:
    """Delete stored contents that no publication references."""
    return ContentService(db).cleanup_orphaned_contents()


async def _sync_following(db: Session) -> int:
    federation = FederationClient()
    publications = PublicationService(db)
    stored = 0
    try:
        for node in ConnectionService(db, federation).following():
            try:
                stored += await publications.catch_up(node.address, federation)
            except FederationError as exc:
                logger.error("Could not catch up with %s: %s", node.url, exc)
    finally:
        await federation.aclose()
    return stored


def sync_following(db: Session) -> int:
    """Pull the feeds of followed nodes and replicate what is missing."""
    return asyncio.run(_sync_following(db))


TASKS: dict[str, Callable[[Session], int]] = {
    "expire-comments": expire_comments,
    "cleanup-contents": cleanup_contents,
    "sync-following": sync_following,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run epress node maintenance tasks")
    parser.add_argument("task", choices=sorted(TASKS), help="Task to run")
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level.upper())
    db = SessionLocal()
    try:
        affected = TASKS[args.task](db)
    except Exception:
        logger.exception("Maintenance task %s failed", args.task)
        db.rollback()
        return 1
    finally:
        db.close()
    print(f"[maintenance] {args.task}: {affected} rows affected")
    return 0


if __name__ == "__main__":
    sys.exit(main())
