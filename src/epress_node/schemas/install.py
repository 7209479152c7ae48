"""Installation schemas."""

from pydantic import BaseModel

from epress_node.schemas.node import NodeResponse


class InstallStatus(BaseModel):
    installed: bool
    node: NodeResponse | None = None


class SettingsResponse(BaseModel):
    allow_comment: bool
    allow_follow: bool
    default_language: str | None = None
    default_theme: str | None = None


class SettingsUpdate(BaseModel):
    allow_comment: bool | None = None
    allow_follow: bool | None = None
    default_language: str | None = None
    default_theme: str | None = None
