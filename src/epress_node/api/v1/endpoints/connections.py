"""Follow relationship endpoints for the epress API."""

from typing import Annotated

from fastapi import APIRouter, Query, status

from epress_node.api.v1.dependencies import FederationDep, SessionDep, http_error
from epress_node.errors import ProtocolError
from epress_node.models import Node
from epress_node.schemas.node import NodeListResponse, NodeResponse
from epress_node.schemas.statement import SignedStatement
from epress_node.services.connections import ConnectionService

router = APIRouter(prefix="/connections", tags=["connections"])


@router.post("", response_model=NodeResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    payload: SignedStatement,
    db: SessionDep,
    federation: FederationDep,
) -> Node:
    """Accept a follower of this node.

    Args:
        payload: CreateConnection typed data signed by the follower
        db: Database session
        federation: Client used to reach the follower's node

    Returns:
        The follower's node.

    Raises:
        HTTPException: 400 on an invalid statement or signer, 403 if
            following is disabled, 409 if the follower already follows,
            502 if the follower's node cannot be reached.
    """
    service = ConnectionService(db, federation)
    try:
        return await service.follow(payload.typed_data, payload.signature)
    except ProtocolError as err:
        raise http_error(err) from err


@router.delete("", response_model=NodeResponse)
async def delete_connection(
    payload: SignedStatement,
    db: SessionDep,
    federation: FederationDep,
) -> Node:
    """Remove a connection signed off by its follower and notify the other side."""
    service = ConnectionService(db, federation)
    try:
        return await service.unfollow(payload.typed_data, payload.signature)
    except ProtocolError as err:
        raise http_error(err) from err


@router.get("/followers", response_model=NodeListResponse)
async def list_followers(
    db: SessionDep,
    federation: FederationDep,
    q: Annotated[str | None, Query(description="Search title and description")] = None,
) -> NodeListResponse:
    try:
        nodes = ConnectionService(db, federation).followers(q)
    except ProtocolError as err:
        raise http_error(err) from err
    return NodeListResponse(
        items=[NodeResponse.model_validate(node) for node in nodes], total=len(nodes)
    )


@router.get("/following", response_model=NodeListResponse)
async def list_following(
    db: SessionDep,
    federation: FederationDep,
    q: Annotated[str | None, Query(description="Search title and description")] = None,
) -> NodeListResponse:
    try:
        nodes = ConnectionService(db, federation).following(q)
    except ProtocolError as err:
        raise http_error(err) from err
    return NodeListResponse(
        items=[NodeResponse.model_validate(node) for node in nodes], total=len(nodes)
    )
