"""Publication lifecycle: drafts, attestation, fan-out and replication."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from epress_node.db.time import as_utc, from_unix, to_unix, utcnow
from epress_node.errors import (
    ConflictError,
    FederationError,
    ForbiddenError,
    ImmutabilityError,
    NotFoundError,
    ProtocolError,
    SignatureMismatchError,
    ValidationFailedError,
)
from epress_node.models import (
    CONTENT_TYPE_FILE,
    CONTENT_TYPE_POST,
    Comment,
    Connection,
    Content,
    Hashtag,
    Node,
    Publication,
)
from epress_node.services import signatures, statements
from epress_node.services.contents import POST_MIMETYPE, ContentService
from epress_node.services.federation import FederationClient, RemotePublication
from epress_node.services.node_settings import get_self_node
from epress_node.utils.hash import content_hash
from epress_node.utils.hashtags import extract_hashtags, normalize_hashtag

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
FEED_DEFAULT_LIMIT = 100
FEED_MAX_LIMIT = 1000
CATCH_UP_MAX_PAGES = 10


def _now_seconds() -> datetime:
    # Stored creation times are whole seconds so they round-trip through uint64.
    return utcnow().replace(microsecond=0)


class PublicationService:
    """Create, edit, sign, distribute and replicate publications.

    Signed publications are frozen: updates and re-signing raise
    :class:`ImmutabilityError`.
    """

    def __init__(self, db: Session, contents: ContentService | None = None) -> None:
        self.db = db
        self.contents = contents or ContentService(db)

    # --- queries -------------------------------------------------------------------

    def get(self, publication_id: int) -> Publication:
        publication = self.db.get(Publication, publication_id)
        if publication is None:
            raise NotFoundError("Publication not found")
        return publication

    def get_by_hash(self, value: str) -> Publication:
        """Resolve a permalink: the newest local publication of a content hash."""
        content = self.contents.get(value)
        if content is None:
            raise NotFoundError("Publication not found")
        publication = (
            self.db.query(Publication)
            .filter(Publication.content_hash == content.content_hash)
            .order_by(Publication.created_at.desc(), Publication.id.desc())
            .first()
        )
        if publication is None:
            raise NotFoundError("Publication not found")
        return publication

    def published(self, value: str, timestamp: int | None = None) -> Publication:
        """Return this node's signed publication of a content hash for peers.

        With ``timestamp`` only the publication created at that second matches.
        """
        content = self.contents.get(value)
        if content is None:
            raise NotFoundError("Content not found")
        author = self._author()
        candidates = (
            self.db.query(Publication)
            .filter(
                Publication.content_hash == content.content_hash,
                Publication.author_address == author.address,
                Publication.signature.is_not(None),
            )
            .order_by(Publication.created_at.desc(), Publication.id.desc())
            .all()
        )
        for publication in candidates:
            if timestamp is None or to_unix(publication.created_at) == timestamp:
                return publication
        raise NotFoundError("Content not found")

    def list_publications(
        self,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        author_address: str | None = None,
        signed_only: bool = False,
        hashtag: str | None = None,
        search: str | None = None,
    ) -> tuple[list[Publication], int]:
        """Return a page of publications, newest first, and the total count.

        ``hashtag`` keeps publications tagged with it (with or without the
        leading ``#``); ``search`` matches post bodies and file captions.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = self.db.query(Publication)
        if author_address:
            query = query.filter(Publication.author_address == author_address)
        if signed_only:
            query = query.filter(Publication.signature.is_not(None))
        if hashtag and normalize_hashtag(hashtag):
            query = query.filter(
                Publication.hashtags.any(Hashtag.hashtag == normalize_hashtag(hashtag))
            )
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    Publication.content.has(Content.body.ilike(pattern)),
                    Publication.description.ilike(pattern),
                )
            )
        total = query.count()
        items = (
            query.order_by(Publication.created_at.desc(), Publication.id.desc())
            .offset(max(0, offset))
            .limit(limit)
            .all()
        )
        return items, total

    # --- authoring -----------------------------------------------------------------

    def _author(self) -> Node:
        node = get_self_node(self.db)
        if node is None:
            raise NotFoundError("Node is not installed")
        return node

    def _tag(self, publication: Publication, text: str | None) -> None:
        """Replace the publication's hashtags with those found in ``text``. Does not commit."""
        names = extract_hashtags(text)
        existing: dict[str, Hashtag] = {}
        if names:
            existing = {
                tag.hashtag: tag
                for tag in self.db.query(Hashtag).filter(Hashtag.hashtag.in_(names))
            }
        publication.hashtags = [existing.get(name) or Hashtag(hashtag=name) for name in names]

    def create_post(self, body: str) -> Publication:
        """Create an unsigned POST publication authored by this node."""
        author = self._author()
        content = self.contents.create_post(body)
        publication = Publication(
            content_hash=content.content_hash,
            author_address=author.address,
            created_at=_now_seconds(),
        )
        self.db.add(publication)
        self._tag(publication, body)
        self.db.commit()
        self.db.refresh(publication)
        logger.info("Created publication %s for %s", publication.id, content.content_hash)
        return publication

    def create_file(
        self,
        filename: str,
        mimetype: str | None,
        data: bytes,
        description: str | None,
    ) -> Publication:
        """Create an unsigned FILE publication; ``description`` is the caption."""
        if not description or not description.strip():
            raise ValidationFailedError("description is required for FILE publications")
        author = self._author()
        content = self.contents.create_file(filename, mimetype, data)
        publication = Publication(
            content_hash=content.content_hash,
            author_address=author.address,
            description=description,
            created_at=_now_seconds(),
        )
        self.db.add(publication)
        self._tag(publication, description)
        self.db.commit()
        self.db.refresh(publication)
        logger.info("Created file publication %s for %s", publication.id, content.content_hash)
        return publication

    def update(
        self,
        publication_id: int,
        *,
        body: str | None = None,
        description: str | None = None,
    ) -> Publication:
        """Edit a draft.

        POST edits point the publication at a new Content row; FILE edits
        only change the caption. Signed publications cannot be edited.

        Raises:
            ImmutabilityError: If the publication carries a signature.
            NotFoundError: If the publication does not exist.
        """
        publication = self.get(publication_id)
        if publication.is_signed:
            raise ImmutabilityError("Cannot update a signed publication")
        if publication.content.type == CONTENT_TYPE_POST:
            if body is not None:
                content = self.contents.create_post(body)
                publication.content_hash = content.content_hash
                self._tag(publication, body)
        elif description is not None:
            if not description.strip():
                raise ValidationFailedError("description must not be empty")
            publication.description = description
            self._tag(publication, description)
        self.db.commit()
        self.db.refresh(publication)
        logger.info("Updated publication %s", publication.id)
        return publication

    def delete(self, publication_id: int) -> None:
        publication = self.get(publication_id)
        self.db.query(Comment).filter(Comment.publication_id == publication.id).delete(
            synchronize_session=False
        )
        self.db.delete(publication)
        self.db.commit()
        logger.info("Deleted publication %s", publication_id)

    # --- attestation ---------------------------------------------------------------

    def statement(self, publication_id: int) -> statements.TypedStatement:
        """Return the StatementOfSource the author must sign for a publication."""
        return self.statement_for(self.get(publication_id))

    @staticmethod
    def statement_for(publication: Publication) -> statements.TypedStatement:
        return statements.statement_of_source(
            publication.content_hash, publication.author_address, publication.created_at
        )

    def sign(self, publication_id: int, signature: str) -> Publication:
        """Attach the author's signature to a draft.

        Raises:
            ImmutabilityError: If the publication is already signed.
            SignatureMismatchError: If the signature does not recover to the
                author over the publication's own StatementOfSource.
        """
        publication = self.get(publication_id)
        if publication.is_signed:
            raise ImmutabilityError("Publication is already signed")
        statement = self.statement_for(publication)
        if not signatures.verify_statement_of_source(publication, statement, signature):
            logger.warning("Rejected signature for publication %s", publication.id)
            raise SignatureMismatchError("Invalid signature")
        # Conditional write: a concurrent signer that got here first wins.
        signed = (
            self.db.query(Publication)
            .filter(Publication.id == publication.id, Publication.signature.is_(None))
            .update({Publication.signature: signature}, synchronize_session="fetch")
        )
        if not signed:
            raise ImmutabilityError("Publication is already signed")
        self.db.commit()
        self.db.refresh(publication)
        logger.info("Signed publication %s", publication.id)
        return publication

    async def fan_out(self, publication: Publication, federation: FederationClient) -> int:
        """Push a signed publication to every follower. Returns successful deliveries."""
        if not publication.is_signed:
            return 0
        author = self._author()
        followers = (
            self.db.query(Node)
            .join(Connection, Connection.follower_address == Node.address)
            .filter(Connection.followee_address == author.address)
            .all()
        )
        typed_data = self.statement_for(publication).typed_data()
        delivered = 0
        for follower in followers:
            try:
                await federation.replicate(
                    follower.url,
                    typed_data,
                    publication.signature or "",
                    profile_version=author.profile_version,
                )
                delivered += 1
            except FederationError as exc:
                logger.error("Failed to replicate %s to %s: %s", publication.id, follower.url, exc)
        logger.info(
            "Distributed publication %s to %d of %d followers",
            publication.id,
            delivered,
            len(followers),
        )
        return delivered

    # --- replication ---------------------------------------------------------------

    async def replicate_from(
        self,
        typed_data: Mapping[str, Any],
        signature: str,
        federation: FederationClient,
    ) -> Publication:
        """Store a followed publisher's signed publication.

        Raises:
            ForbiddenError: If this node does not follow the publisher.
            ConflictError: If the publication was already replicated.
            SignatureMismatchError: If the publisher did not sign the statement.
            ValidationFailedError: If the fetched bytes do not match the hash.
        """
        statement = statements.statement_from_typed_data(
            typed_data, expected_kind=statements.STATEMENT_OF_SOURCE
        )
        message = statement.message
        publisher_address = message["publisherAddress"]
        timestamp = message["timestamp"]

        self_node = self._author()
        publisher = self.db.get(Node, publisher_address)
        following = publisher is not None and (
            self.db.query(Connection)
            .filter(
                Connection.follower_address == self_node.address,
                Connection.followee_address == publisher.address,
            )
            .first()
            is not None
        )
        if publisher is None or not following:
            raise ForbiddenError("Not following this publisher")

        for existing in (
            self.db.query(Publication)
            .filter(
                Publication.content_hash == message["contentHash"],
                Publication.author_address == publisher.address,
            )
            .all()
        ):
            if to_unix(existing.created_at) == timestamp:
                raise ConflictError("Replication already exists")

        if not signatures.verify(statement, signature, publisher.address):
            logger.warning("Rejected replication from %s: bad signature", publisher.address)
            raise SignatureMismatchError("Invalid signature")

        remote = await federation.fetch_content(
            publisher.url, message["contentHash"], timestamp=timestamp
        )
        if content_hash(remote.data) != message["contentHash"]:
            logger.warning("Rejected replication from %s: content hash mismatch", publisher.url)
            raise ValidationFailedError("Content hash mismatch")

        if remote.mimetype == POST_MIMETYPE:
            content = self.contents.create_post(remote.data.decode("utf-8"))
        else:
            content = self.contents.create_file(
                remote.filename or message["contentHash"][2:], remote.mimetype, remote.data
            )
        if content.type == CONTENT_TYPE_FILE and not remote.description:
            logger.debug("Replicated file %s carries no description", content.content_hash)

        publication = Publication(
            content_hash=content.content_hash,
            author_address=publisher.address,
            description=remote.description,
            signature=signature,
            created_at=from_unix(timestamp),
        )
        self.db.add(publication)
        self._tag(
            publication,
            content.body if content.type == CONTENT_TYPE_POST else remote.description,
        )
        self.db.commit()
        self.db.refresh(publication)
        logger.info("Replicated publication %s from %s", publication.id, publisher.url)
        return publication

    # --- federation feed -----------------------------------------------------------

    def feed(
        self,
        *,
        since: datetime | None = None,
        page: int = 1,
        limit: int = FEED_DEFAULT_LIMIT,
    ) -> tuple[list[Publication], int]:
        """Return a page of this node's signed publications, oldest first.

        Followers page through it to catch up on what they missed.
        ``since`` is inclusive.

        Raises:
            ValidationFailedError: If ``page`` or ``limit`` is out of range.
        """
        if not 1 <= limit <= FEED_MAX_LIMIT:
            raise ValidationFailedError(f"limit must be between 1 and {FEED_MAX_LIMIT}")
        if page < 1:
            raise ValidationFailedError("page must be a positive integer")
        author = self._author()
        query = self.db.query(Publication).filter(
            Publication.author_address == author.address,
            Publication.signature.is_not(None),
        )
        if since is not None:
            query = query.filter(Publication.created_at >= as_utc(since))
        total = query.count()
        items = (
            query.order_by(Publication.created_at.asc(), Publication.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def _latest_from(self, publisher_address: str) -> datetime | None:
        latest = (
            self.db.query(Publication.created_at)
            .filter(Publication.author_address == publisher_address)
            .order_by(Publication.created_at.desc())
            .first()
        )
        return latest[0] if latest else None

    async def _store_remote(
        self, publisher: Node, item: RemotePublication, federation: FederationClient
    ) -> bool:
        if not item.signature or item.author_address.lower() != publisher.address.lower():
            logger.debug("Skipping unsigned or foreign feed item %s", item.content_hash)
            return False
        typed_data = statements.statement_of_source(
            item.content_hash, publisher.address, item.timestamp
        ).typed_data()
        try:
            await self.replicate_from(typed_data, item.signature, federation)
        except ConflictError:
            return False
        except ForbiddenError:
            raise
        except ProtocolError as exc:
            logger.warning(
                "Skipped %s from %s: %s", item.content_hash, publisher.url, exc.message
            )
            return False
        return True

    async def catch_up(
        self,
        publisher_address: str,
        federation: FederationClient,
        *,
        since: datetime | None = None,
        limit: int = FEED_DEFAULT_LIMIT,
        max_pages: int = CATCH_UP_MAX_PAGES,
    ) -> int:
        """Pull a followed publisher's feed and replicate what is missing.

        Without ``since`` the feed is read from the newest publication
        already stored for that publisher. Items that fail verification are
        skipped; the rest of the feed is still processed.

        Returns:
            The number of publications stored.

        Raises:
            NotFoundError: If the publisher is unknown.
            ForbiddenError: If this node does not follow the publisher.
            FederationError: If a feed page cannot be fetched.
        """
        publisher = self.db.get(Node, publisher_address)
        if publisher is None or publisher.is_self:
            raise NotFoundError("Unknown node")
        if since is None:
            since = self._latest_from(publisher.address)

        stored = 0
        for page in range(1, max_pages + 1):
            feed = await federation.fetch_publications(
                publisher.url, since=since, page=page, limit=limit
            )
            for item in feed.items:
                if await self._store_remote(publisher, item, federation):
                    stored += 1
            if not feed.has_next_page:
                break
        logger.info("Caught up on %d publications from %s", stored, publisher.url)
        return stored
