"""Content-addressed storage for posts and files."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from epress_node.core.settings import settings
from epress_node.errors import NotFoundError, ValidationFailedError
from epress_node.models import CONTENT_TYPE_FILE, CONTENT_TYPE_POST, Content, Publication
from epress_node.utils.hash import content_hash, normalize_content_hash

logger = logging.getLogger(__name__)

POST_MIMETYPE = "text/markdown"


class ContentService:
    """Create, look up and garbage-collect :class:`Content` rows.

    Identical bytes always resolve to the same row, so creation is an upsert
    keyed by hash. Creation does not commit; callers own the transaction.
    """

    def __init__(self, db: Session, upload_dir: str | Path | None = None) -> None:
        self.db = db
        self.upload_dir = Path(upload_dir or settings.upload_dir)

    def get(self, value: str) -> Content | None:
        try:
            digest = normalize_content_hash(value)
        except ValueError:
            return None
        return self.db.get(Content, digest)

    def get_or_404(self, value: str) -> Content:
        content = self.get(value)
        if content is None:
            raise NotFoundError("Content not found")
        return content

    def create_post(self, body: str) -> Content:
        """Return the POST content for ``body``, creating it if new."""
        if not body or not body.strip():
            raise ValidationFailedError("Post body must not be empty")
        digest = content_hash(body)
        existing = self.db.get(Content, digest)
        if existing is not None:
            return existing
        content = Content(
            content_hash=digest,
            type=CONTENT_TYPE_POST,
            body=body,
            mimetype=POST_MIMETYPE,
            size=len(body.encode("utf-8")),
        )
        self.db.add(content)
        logger.debug("Stored post content %s", digest)
        return content

    def create_file(self, filename: str, mimetype: str | None, data: bytes) -> Content:
        """Return the FILE content for ``data``, writing it to disk if new."""
        if not filename:
            raise ValidationFailedError("File name is required")
        if len(data) > settings.max_upload_bytes:
            raise ValidationFailedError("File exceeds the maximum upload size")
        digest = content_hash(data)
        existing = self.db.get(Content, digest)
        if existing is not None:
            return existing
        path = self.path_for(digest)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        content = Content(
            content_hash=digest,
            type=CONTENT_TYPE_FILE,
            filename=filename,
            mimetype=mimetype or "application/octet-stream",
            size=len(data),
            local_path=str(path),
        )
        self.db.add(content)
        logger.debug("Stored file content %s at %s", digest, path)
        return content

    def path_for(self, digest: str) -> Path:
        bare = digest[2:]
        return self.upload_dir / bare[:2] / bare

    def read_bytes(self, content: Content) -> bytes:
        """Return the exact bytes that ``content.content_hash`` was computed over."""
        if content.type == CONTENT_TYPE_POST:
            return (content.body or "").encode("utf-8")
        if not content.local_path or not Path(content.local_path).exists():
            raise NotFoundError("File content is missing on disk")
        return Path(content.local_path).read_bytes()

    def cleanup_orphaned_contents(self) -> int:
        """Delete contents no publication references. Returns the number removed."""
        referenced = select(Publication.content_hash).distinct()
        orphans = self.db.query(Content).filter(Content.content_hash.not_in(referenced)).all()
        for content in orphans:
            if content.local_path:
                Path(content.local_path).unlink(missing_ok=True)
            self.db.delete(content)
        self.db.commit()
        if orphans:
            logger.info("Removed %d orphaned contents", len(orphans))
        return len(orphans)
