"""Landing endpoint for emailed comment confirmation and deletion links."""

import logging
from typing import Annotated

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from epress_node.api.v1.dependencies import SessionDep
from epress_node.errors import ProtocolError
from epress_node.schemas.comment import VerifyRequest, VerifyResponse
from epress_node.services import tokens
from epress_node.services.comments import CommentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verify", tags=["verify"])


def _verify(token: str, db: Session) -> VerifyResponse | JSONResponse:
    # The unverified action only selects the handler; each handler validates fully.
    action = tokens.peek_action(token)
    service = CommentService(db)
    try:
        if action == tokens.ACTION_CONFIRM:
            comment = service.confirm_with_token(token)
            return VerifyResponse(ok=True, action=action, comment_id=comment.id)
        if action == tokens.ACTION_DESTROY:
            comment_id = service.destroy_with_token(token)
            return VerifyResponse(ok=True, action=action, comment_id=comment_id)
        logger.warning("Verification token carries no usable action")
    except ProtocolError as err:
        logger.warning("Verification failed (%s): %s", action, err.message)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"ok": False, "action": action, "detail": "Verification failed"},
    )


@router.get("", response_model=VerifyResponse)
async def verify_link(
    token: Annotated[str, Query(min_length=1)], db: SessionDep
) -> VerifyResponse | JSONResponse:
    """Follow a confirmation or deletion link.

    The response never states why a token was refused; the cause is only
    logged server side.
    """
    return _verify(token, db)


@router.post("", response_model=VerifyResponse)
async def verify_token(payload: VerifyRequest, db: SessionDep) -> VerifyResponse | JSONResponse:
    return _verify(payload.token, db)
