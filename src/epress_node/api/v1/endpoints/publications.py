"""Publication-related endpoints for the epress API."""

import logging
from typing import Annotated

from fastapi import APIRouter, File, Form, Query, Response, UploadFile, status

from epress_node.api.v1.dependencies import FederationDep, OwnerDep, SessionDep, http_error
from epress_node.errors import ProtocolError
from epress_node.models import Comment, Publication
from epress_node.schemas.comment import CommentListResponse, CommentResponse
from epress_node.schemas.publication import (
    PostCreate,
    PublicationListResponse,
    PublicationResponse,
    PublicationUpdate,
    SignatureSubmit,
)
from epress_node.schemas.statement import TypedDataResponse
from epress_node.services.comments import CommentService
from epress_node.services.publications import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PublicationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/publications", tags=["publications"])


@router.get("", response_model=PublicationListResponse)
async def list_publications(
    db: SessionDep,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
    offset: Annotated[int, Query(ge=0)] = 0,
    author: Annotated[str | None, Query(description="Filter by author address")] = None,
    signed: Annotated[bool, Query(description="Only signed publications")] = False,
    hashtag: Annotated[str | None, Query(description="Filter by hashtag")] = None,
    q: Annotated[str | None, Query(description="Search post bodies and captions")] = None,
) -> PublicationListResponse:
    """List publications, newest first."""
    items, total = PublicationService(db).list_publications(
        limit=limit,
        offset=offset,
        author_address=author,
        signed_only=signed,
        hashtag=hashtag,
        search=q,
    )
    return PublicationListResponse(
        items=[PublicationResponse.model_validate(item) for item in items],
        total=total,
    )


@router.get("/by-hash/{content_hash}", response_model=PublicationResponse)
async def get_publication_by_hash(content_hash: str, db: SessionDep) -> Publication:
    """Resolve a permalink to the newest publication of a content hash."""
    try:
        return PublicationService(db).get_by_hash(content_hash)
    except ProtocolError as err:
        raise http_error(err) from err


@router.get("/{publication_id}", response_model=PublicationResponse)
async def get_publication(publication_id: int, db: SessionDep) -> Publication:
    try:
        return PublicationService(db).get(publication_id)
    except ProtocolError as err:
        raise http_error(err) from err


@router.get("/{publication_id}/comments", response_model=CommentListResponse)
async def list_publication_comments(publication_id: int, db: SessionDep) -> CommentListResponse:
    """List the confirmed comments of a publication."""
    try:
        comments: list[Comment] = CommentService(db).list_confirmed(publication_id)
    except ProtocolError as err:
        raise http_error(err) from err
    return CommentListResponse(
        items=[CommentResponse.model_validate(comment) for comment in comments],
        total=len(comments),
    )


@router.post("", response_model=PublicationResponse, status_code=status.HTTP_201_CREATED)
async def create_post(payload: PostCreate, owner: OwnerDep, db: SessionDep) -> Publication:
    """Create an unsigned POST publication."""
    try:
        return PublicationService(db).create_post(payload.body)
    except ProtocolError as err:
        raise http_error(err) from err


@router.post("/files", response_model=PublicationResponse, status_code=status.HTTP_201_CREATED)
async def create_file(
    owner: OwnerDep,
    db: SessionDep,
    file: Annotated[UploadFile, File(...)],
    description: Annotated[str, Form(...)],
) -> Publication:
    """Upload a file and create an unsigned FILE publication for it.

    Args:
        owner: Authenticated node owner
        db: Database session
        file: Uploaded file
        description: Caption stored with the publication

    Returns:
        The new publication.

    Raises:
        HTTPException: 400 if the description is missing or the file is
            too large.
    """
    data = await file.read()
    try:
        return PublicationService(db).create_file(
            file.filename or "upload", file.content_type, data, description
        )
    except ProtocolError as err:
        raise http_error(err) from err


@router.patch("/{publication_id}", response_model=PublicationResponse)
async def update_publication(
    publication_id: int,
    payload: PublicationUpdate,
    owner: OwnerDep,
    db: SessionDep,
) -> Publication:
    """Edit a draft publication. Signed publications are immutable."""
    try:
        return PublicationService(db).update(
            publication_id, body=payload.body, description=payload.description
        )
    except ProtocolError as err:
        raise http_error(err) from err


@router.delete("/{publication_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_publication(publication_id: int, owner: OwnerDep, db: SessionDep) -> Response:
    try:
        PublicationService(db).delete(publication_id)
    except ProtocolError as err:
        raise http_error(err) from err
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{publication_id}/statement", response_model=TypedDataResponse)
async def get_publication_statement(
    publication_id: int, owner: OwnerDep, db: SessionDep
) -> TypedDataResponse:
    """Return the StatementOfSource typed data the owner signs."""
    try:
        statement = PublicationService(db).statement(publication_id)
    except ProtocolError as err:
        raise http_error(err) from err
    return TypedDataResponse.model_validate(statement.typed_data())


@router.post("/{publication_id}/signature", response_model=PublicationResponse)
async def sign_publication(
    publication_id: int,
    payload: SignatureSubmit,
    owner: OwnerDep,
    db: SessionDep,
    federation: FederationDep,
) -> Publication:
    """Attach the owner's signature and distribute the publication to followers."""
    service = PublicationService(db)
    try:
        publication = service.sign(publication_id, payload.signature)
    except ProtocolError as err:
        raise http_error(err) from err
    delivered = await service.fan_out(publication, federation)
    logger.debug("Publication %s delivered to %d followers", publication.id, delivered)
    return publication
