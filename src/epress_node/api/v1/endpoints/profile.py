"""Node profile endpoints for the epress API."""

from fastapi import APIRouter

from epress_node.api.v1.dependencies import FederationDep, OwnerDep, SessionDep, http_error
from epress_node.errors import ProtocolError
from epress_node.models import Node
from epress_node.schemas.node import BroadcastResponse, NodeResponse, ProfileUpdate
from epress_node.schemas.statement import SignedStatement, TypedDataResponse
from epress_node.services.profile import ProfileService

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=NodeResponse)
async def get_profile(db: SessionDep) -> Node:
    try:
        return ProfileService(db).self_node()
    except ProtocolError as err:
        raise http_error(err) from err


@router.patch("", response_model=NodeResponse)
async def update_profile(payload: ProfileUpdate, owner: OwnerDep, db: SessionDep) -> Node:
    """Edit the node profile. Any actual change bumps ``profile_version``."""
    try:
        return ProfileService(db).update(
            title=payload.title, description=payload.description, url=payload.url
        )
    except ProtocolError as err:
        raise http_error(err) from err


@router.get("/statement", response_model=TypedDataResponse)
async def get_profile_statement(owner: OwnerDep, db: SessionDep) -> TypedDataResponse:
    """Return the NodeProfileUpdate typed data describing the current profile."""
    try:
        statement = ProfileService(db).statement()
    except ProtocolError as err:
        raise http_error(err) from err
    return TypedDataResponse.model_validate(statement.typed_data())


@router.post("/broadcast", response_model=BroadcastResponse)
async def broadcast_profile(
    payload: SignedStatement,
    owner: OwnerDep,
    db: SessionDep,
    federation: FederationDep,
) -> BroadcastResponse:
    """Push the signed profile update to every known node."""
    try:
        delivered = await ProfileService(db).broadcast(
            payload.typed_data, payload.signature, federation
        )
    except ProtocolError as err:
        raise http_error(err) from err
    return BroadcastResponse(delivered=delivered)
