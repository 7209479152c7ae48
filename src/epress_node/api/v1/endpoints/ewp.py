"""Node-to-node federation (EWP) endpoints.

Mounted at ``/ewp`` outside the versioned API, since peers address each
other by bare node URL.
"""

import logging
import math
from datetime import datetime
from typing import Annotated, Any
from urllib.parse import quote

from fastapi import APIRouter, Header, Query, Response, status

from epress_node.api.v1.dependencies import FederationDep, SessionDep, http_error
from epress_node.db.time import to_unix
from epress_node.errors import NotFoundError, ProtocolError
from epress_node.models import CONTENT_TYPE_POST
from epress_node.schemas.node import NodeResponse
from epress_node.schemas.publication import (
    FeedItem,
    FeedPagination,
    PublicationFeedResponse,
    PublicationResponse,
)
from epress_node.schemas.statement import SignedStatement, StatusResponse
from epress_node.services.connections import ConnectionService
from epress_node.services.contents import POST_MIMETYPE, ContentService
from epress_node.services.profile import ProfileService, profile_document
from epress_node.services.publications import FEED_DEFAULT_LIMIT, PublicationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ewp", tags=["ewp"])


@router.get("/profile")
async def get_profile(db: SessionDep) -> dict[str, Any]:
    """Serve this node's public profile to peers."""
    try:
        node = ProfileService(db).self_node()
    except ProtocolError as err:
        raise http_error(err) from err
    return profile_document(node)


@router.get("/publications", response_model=PublicationFeedResponse)
async def get_publications(
    db: SessionDep,
    since: Annotated[
        datetime | None, Query(description="Only publications created at or after")
    ] = None,
    page: int = 1,
    limit: int = FEED_DEFAULT_LIMIT,
) -> PublicationFeedResponse:
    """Serve this node's signed publications, oldest first, for followers.

    Raises:
        HTTPException: 400 if ``page`` or ``limit`` is out of range.
    """
    try:
        items, total = PublicationService(db).feed(since=since, page=page, limit=limit)
    except ProtocolError as err:
        raise http_error(err) from err
    total_pages = math.ceil(total / limit)
    return PublicationFeedResponse(
        data=[
            FeedItem(
                content_hash=item.content_hash,
                author_address=item.author_address,
                signature=item.signature,
                comment_count=item.comment_count,
                created_at=item.created_at,
                timestamp=to_unix(item.created_at),
            )
            for item in items
        ],
        pagination=FeedPagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        ),
    )


@router.get("/contents/{content_hash}")
async def get_content(
    content_hash: str,
    db: SessionDep,
    timestamp: Annotated[int | None, Query(ge=0)] = None,
) -> Response:
    """Serve the raw bytes of a signed publication.

    Posts are returned as ``text/markdown``. Files carry their original
    name in ``Content-Disposition`` and the URL-encoded caption in
    ``Content-Description``.
    """
    contents = ContentService(db)
    try:
        publication = PublicationService(db, contents).published(content_hash, timestamp)
        data = contents.read_bytes(publication.content)
    except NotFoundError as err:
        raise http_error(err) from err

    content = publication.content
    if content.type == CONTENT_TYPE_POST:
        return Response(content=data, media_type=POST_MIMETYPE)

    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(content.filename or '')}",
    }
    if publication.description:
        headers["Content-Description"] = quote(publication.description)
    return Response(
        content=data,
        media_type=content.mimetype or "application/octet-stream",
        headers=headers,
    )


@router.post(
    "/replications",
    response_model=PublicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def accept_replication(
    payload: SignedStatement,
    db: SessionDep,
    federation: FederationDep,
    profile_version: Annotated[int | None, Header(alias="X-Epress-Profile-Version")] = None,
) -> PublicationResponse:
    """Store a publication pushed by a publisher this node follows.

    Raises:
        HTTPException: 403 if the publisher is not followed, 409 if the
            publication is already stored, 400 on a bad signature or
            content that does not match its hash.
    """
    try:
        publication = await PublicationService(db).replicate_from(
            payload.typed_data, payload.signature, federation
        )
    except ProtocolError as err:
        raise http_error(err) from err
    response = PublicationResponse.model_validate(publication)
    if profile_version is not None:
        await ProfileService(db).refresh_remote(
            publication.author_address, profile_version, federation
        )
    return response


@router.post("/connections", response_model=NodeResponse, status_code=status.HTTP_201_CREATED)
async def accept_connection(
    payload: SignedStatement,
    db: SessionDep,
    federation: FederationDep,
) -> NodeResponse:
    """Record that this node now follows the node named in the statement."""
    try:
        followee = await ConnectionService(db, federation).accept_outgoing(
            payload.typed_data, payload.signature
        )
    except ProtocolError as err:
        raise http_error(err) from err
    return NodeResponse.model_validate(followee)


@router.delete("/connections", status_code=status.HTTP_204_NO_CONTENT)
async def accept_disconnection(
    payload: SignedStatement,
    db: SessionDep,
    federation: FederationDep,
) -> Response:
    try:
        ConnectionService(db, federation).accept_disconnection(
            payload.typed_data, payload.signature
        )
    except ProtocolError as err:
        raise http_error(err) from err
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/nodes/updates", response_model=StatusResponse)
async def accept_profile_update(payload: SignedStatement, db: SessionDep) -> StatusResponse:
    """Apply a NodeProfileUpdate signed by a known node."""
    try:
        node = ProfileService(db).apply_remote_update(payload.typed_data, payload.signature)
    except ProtocolError as err:
        raise http_error(err) from err
    logger.debug("Profile of %s now at version %d", node.address, node.profile_version)
    return StatusResponse(status="updated")
