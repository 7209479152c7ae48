"""Installation endpoints for the epress API."""

from fastapi import APIRouter, status

from epress_node.api.v1.dependencies import SessionDep, http_error
from epress_node.errors import ProtocolError
from epress_node.schemas.install import InstallStatus
from epress_node.schemas.node import NodeResponse
from epress_node.schemas.statement import SignedStatement
from epress_node.services import install as install_service
from epress_node.services.node_settings import get_self_node

router = APIRouter(prefix="/install", tags=["install"])


@router.get("", response_model=InstallStatus)
async def get_install_status(db: SessionDep) -> InstallStatus:
    node = get_self_node(db)
    return InstallStatus(
        installed=node is not None,
        node=NodeResponse.model_validate(node) if node is not None else None,
    )


@router.post("", response_model=InstallStatus, status_code=status.HTTP_201_CREATED)
async def install_node(payload: SignedStatement, db: SessionDep) -> InstallStatus:
    """Install the node from an Install statement signed by its owner.

    Raises:
        HTTPException: 403 if the node is already installed, 400 on a stale
            timestamp or a signature by anyone but ``node.address``.
    """
    try:
        node = install_service.install(db, payload.typed_data, payload.signature)
    except ProtocolError as err:
        raise http_error(err) from err
    return InstallStatus(installed=True, node=NodeResponse.model_validate(node))
