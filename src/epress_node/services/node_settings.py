"""Owner-controlled node settings stored in the ``setting`` table."""

from __future__ import annotations

from typing import Final

from sqlalchemy.orm import Session

from epress_node.models import Node, Setting

ALLOW_COMMENT: Final = "allow_comment"
ALLOW_FOLLOW: Final = "allow_follow"
DEFAULT_LANGUAGE: Final = "default_language"
DEFAULT_THEME: Final = "default_theme"
MAIL_FROM: Final = "mail_from"

DEFAULTS: Final[dict[str, str]] = {
    ALLOW_COMMENT: "true",
    ALLOW_FOLLOW: "true",
    DEFAULT_LANGUAGE: "en",
    DEFAULT_THEME: "light",
    MAIL_FROM: "",
}

_TRUTHY = {"1", "true", "yes", "on"}


def get_setting(db: Session, key: str) -> str | None:
    row = db.get(Setting, key)
    if row is None:
        return DEFAULTS.get(key)
    return row.value


def get_flag(db: Session, key: str) -> bool:
    value = get_setting(db, key)
    return (value or "").strip().lower() in _TRUTHY


def set_setting(db: Session, key: str, value: str | bool | None) -> None:
    """Upsert a setting. Does not commit."""
    if isinstance(value, bool):
        value = "true" if value else "false"
    row = db.get(Setting, key)
    if row is None:
        db.add(Setting(key=key, value=value))
    else:
        row.value = value


def all_settings(db: Session) -> dict[str, str | None]:
    values: dict[str, str | None] = dict(DEFAULTS)
    for row in db.query(Setting).all():
        values[row.key] = row.value
    return values


def get_self_node(db: Session) -> Node | None:
    """Return the local node identity, or ``None`` before install."""
    return db.query(Node).filter(Node.is_self.is_(True)).first()
