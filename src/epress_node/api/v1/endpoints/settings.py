"""Owner-managed node settings endpoints."""

from fastapi import APIRouter
from sqlalchemy.orm import Session

from epress_node.api.v1.dependencies import OwnerDep, SessionDep
from epress_node.schemas.install import SettingsResponse, SettingsUpdate
from epress_node.services import node_settings

router = APIRouter(prefix="/settings", tags=["settings"])


def _snapshot(db: Session) -> SettingsResponse:
    values = node_settings.all_settings(db)
    return SettingsResponse(
        allow_comment=node_settings.get_flag(db, node_settings.ALLOW_COMMENT),
        allow_follow=node_settings.get_flag(db, node_settings.ALLOW_FOLLOW),
        default_language=values.get(node_settings.DEFAULT_LANGUAGE),
        default_theme=values.get(node_settings.DEFAULT_THEME),
    )


@router.get("", response_model=SettingsResponse)
async def get_settings(db: SessionDep) -> SettingsResponse:
    return _snapshot(db)


@router.patch("", response_model=SettingsResponse)
async def update_settings(
    payload: SettingsUpdate, owner: OwnerDep, db: SessionDep
) -> SettingsResponse:
    """Change node settings; omitted fields keep their value."""
    changes = {
        node_settings.ALLOW_COMMENT: payload.allow_comment,
        node_settings.ALLOW_FOLLOW: payload.allow_follow,
        node_settings.DEFAULT_LANGUAGE: payload.default_language,
        node_settings.DEFAULT_THEME: payload.default_theme,
    }
    for key, value in changes.items():
        if value is not None:
            node_settings.set_setting(db, key, value)
    db.commit()
    return _snapshot(db)
