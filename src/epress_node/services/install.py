"""One-time node installation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from epress_node.core.settings import settings
from epress_node.db.time import within_window
from epress_node.errors import ForbiddenError, SignatureMismatchError, ValidationFailedError
from epress_node.models import Node
from epress_node.services import node_settings, signatures, statements
from epress_node.utils.urls import is_http_url, normalize_url

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Personal publishing node"


def is_installed(db: Session) -> bool:
    return node_settings.get_self_node(db) is not None


def install(db: Session, typed_data: Mapping[str, Any], signature: str) -> Node:
    """Create the self node from an owner-signed Install statement.

    Raises:
        ForbiddenError: If the node is already installed.
        ValidationFailedError: On a stale timestamp or invalid URL.
        SignatureMismatchError: If ``node.address`` did not sign the statement.
    """
    if is_installed(db):
        logger.warning("Installation attempted on an installed node")
        raise ForbiddenError("Node is already installed")

    statement = statements.statement_from_typed_data(typed_data, expected_kind=statements.INSTALL)
    message = statement.message
    node_fields = message["node"]
    if not within_window(message["timestamp"], settings.statement_timestamp_window_seconds):
        raise ValidationFailedError("Timestamp is outside the acceptable range")
    if not is_http_url(node_fields["url"]):
        raise ValidationFailedError("Invalid node URL")
    if not signatures.verify(statement, signature, node_fields["address"]):
        logger.warning("Rejected installation: bad signature")
        raise SignatureMismatchError("Invalid signature")

    node = Node(
        address=node_fields["address"],
        url=normalize_url(node_fields["url"]),
        title=node_fields["title"],
        description=node_fields["description"] or DEFAULT_DESCRIPTION,
        is_self=True,
        profile_version=0,
    )
    db.add(node)
    install_settings = message["settings"]
    node_settings.set_setting(
        db, node_settings.DEFAULT_LANGUAGE, install_settings["defaultLanguage"] or "en"
    )
    node_settings.set_setting(
        db, node_settings.DEFAULT_THEME, install_settings["defaultTheme"] or "light"
    )
    if install_settings["mailFrom"]:
        node_settings.set_setting(db, node_settings.MAIL_FROM, install_settings["mailFrom"])
    node_settings.set_setting(db, node_settings.ALLOW_COMMENT, True)
    node_settings.set_setting(db, node_settings.ALLOW_FOLLOW, True)
    db.commit()
    db.refresh(node)
    logger.info("Installed node %s at %s", node.address, node.url)
    return node
