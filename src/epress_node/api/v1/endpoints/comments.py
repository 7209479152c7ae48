"""Comment-related endpoints for the epress API."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Response, status

from epress_node.api.v1.dependencies import MailerDep, OwnerDep, SessionDep, http_error
from epress_node.errors import ProtocolError
from epress_node.models import (
    COMMENT_STATUS_CONFIRMED,
    COMMENT_STATUS_EXPIRED,
    COMMENT_STATUS_PENDING,
    COMMENT_STATUS_REJECTED,
    Comment,
)
from epress_node.schemas.comment import (
    CommentCreate,
    CommentDeleteRequest,
    CommentListResponse,
    CommentResponse,
    DeletionRequestResponse,
)
from epress_node.schemas.statement import TypedDataResponse
from epress_node.services.comments import CommentService

router = APIRouter(prefix="/comments", tags=["comments"])

_STATUSES = {
    COMMENT_STATUS_PENDING,
    COMMENT_STATUS_CONFIRMED,
    COMMENT_STATUS_REJECTED,
    COMMENT_STATUS_EXPIRED,
}


@router.post("", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def submit_comment(
    payload: CommentCreate,
    db: SessionDep,
    mailer: MailerDep,
) -> Comment:
    """Submit a comment on a publication.

    Args:
        payload: Comment body, display name and channel credentials
        db: Database session
        mailer: Outbound mail for the EMAIL channel

    Returns:
        The stored comment. Wallet-signed comments come back CONFIRMED,
        email comments PENDING until the mailed link is followed.

    Raises:
        HTTPException: 400 on invalid input or signature, 403 if comments
            are disabled, 404 if the publication does not exist.
    """
    service = CommentService(db, mailer=mailer)
    try:
        return service.submit(
            payload.publication_id, payload.body, payload.author_name, payload.auth
        )
    except ProtocolError as err:
        raise http_error(err) from err


@router.get("", response_model=CommentListResponse)
async def list_comments(
    owner: OwnerDep,
    db: SessionDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> CommentListResponse:
    """Owner view of all comments, optionally filtered by status."""
    wanted = status_filter.upper() if status_filter else None
    if wanted is not None and wanted not in _STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown comment status: {status_filter}",
        )
    comments = CommentService(db).list_all(status=wanted)
    return CommentListResponse(
        items=[CommentResponse.model_validate(comment) for comment in comments],
        total=len(comments),
    )


@router.delete("/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(comment_id: int, owner: OwnerDep, db: SessionDep) -> Response:
    try:
        CommentService(db).delete_as_owner(comment_id)
    except ProtocolError as err:
        raise http_error(err) from err
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{comment_id}/rejection", response_model=CommentResponse)
async def reject_comment(comment_id: int, owner: OwnerDep, db: SessionDep) -> Comment:
    """Reject a comment that is still awaiting confirmation."""
    try:
        return CommentService(db).reject(comment_id)
    except ProtocolError as err:
        raise http_error(err) from err


@router.get("/{comment_id}/deletion-statement", response_model=TypedDataResponse)
async def get_deletion_statement(comment_id: int, db: SessionDep) -> TypedDataResponse:
    """Return the DeleteComment typed data a wallet commenter signs."""
    try:
        statement = CommentService(db).deletion_statement(comment_id)
    except ProtocolError as err:
        raise http_error(err) from err
    return TypedDataResponse.model_validate(statement.typed_data())


@router.post("/{comment_id}/deletion", response_model=DeletionRequestResponse)
async def request_comment_deletion(
    comment_id: int,
    payload: CommentDeleteRequest,
    db: SessionDep,
    mailer: MailerDep,
) -> DeletionRequestResponse:
    """Retract a comment as its author.

    A wallet signature deletes immediately; an email request mails a
    deletion link instead and leaves the comment untouched.
    """
    try:
        outcome = CommentService(db, mailer=mailer).request_deletion(comment_id, payload.auth)
    except ProtocolError as err:
        raise http_error(err) from err
    return DeletionRequestResponse(status=outcome)
