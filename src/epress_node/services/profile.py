"""Node profile management and propagation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from epress_node.db.time import to_unix, utcnow
from epress_node.errors import (
    ConflictError,
    FederationError,
    NotFoundError,
    SignatureMismatchError,
    ValidationFailedError,
)
from epress_node.models import Node
from epress_node.services import signatures, statements
from epress_node.services.federation import FederationClient
from epress_node.services.node_settings import get_self_node
from epress_node.utils.urls import is_http_url, normalize_url

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 160


def profile_document(node: Node) -> dict[str, Any]:
    """Return the public profile served at ``/ewp/profile``."""
    return {
        "address": node.address,
        "url": node.url,
        "title": node.title,
        "description": node.description,
        "profile_version": node.profile_version,
        "updated_at": node.updated_at,
    }


class ProfileService:
    """Edit the local profile and apply profile updates from peers."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def self_node(self) -> Node:
        node = get_self_node(self.db)
        if node is None:
            raise NotFoundError("Node is not installed")
        return node

    def update(
        self,
        *,
        title: str | None = None,
        description: str | None = None,
        url: str | None = None,
    ) -> Node:
        """Change profile fields of this node.

        ``profile_version`` increases by one when any field actually changes.

        Raises:
            ValidationFailedError: On an over-long title or description, or a
                non-http(s) URL.
            ConflictError: If another known node already uses ``url``.
        """
        node = self.self_node()
        changes: dict[str, str | None] = {}
        if title is not None:
            title = title.strip()
            if not title or len(title) > MAX_TITLE_LENGTH:
                raise ValidationFailedError(
                    f"Title must be between 1 and {MAX_TITLE_LENGTH} characters"
                )
            changes["title"] = title
        if description is not None:
            if len(description) > MAX_DESCRIPTION_LENGTH:
                raise ValidationFailedError(
                    f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
                )
            changes["description"] = description
        if url is not None:
            if not is_http_url(url):
                raise ValidationFailedError("URL must start with http:// or https://")
            url = normalize_url(url)
            clash = self.db.query(Node).filter(Node.url == url, Node.address != node.address)
            if clash.first() is not None:
                raise ConflictError("Another node is registered at this URL")
            changes["url"] = url

        changed = False
        for field_name, value in changes.items():
            if getattr(node, field_name) != value:
                setattr(node, field_name, value)
                changed = True
        if changed:
            node.profile_version += 1
            self.db.commit()
            self.db.refresh(node)
            logger.info("Profile updated to version %d", node.profile_version)
        return node

    def statement(self, timestamp: int | None = None) -> statements.TypedStatement:
        """Return the NodeProfileUpdate describing the current profile."""
        node = self.self_node()
        return statements.node_profile_update(
            node.address,
            node.url,
            node.title,
            node.description,
            timestamp if timestamp is not None else to_unix(utcnow()),
            node.profile_version,
        )

    async def broadcast(
        self,
        typed_data: Mapping[str, Any],
        signature: str,
        federation: FederationClient,
    ) -> int:
        """Push a signed profile update to every known node.

        Returns:
            Number of nodes that accepted the update.

        Raises:
            ValidationFailedError: If the statement does not describe the
                current profile.
            SignatureMismatchError: If this node did not sign it.
        """
        statement = statements.statement_from_typed_data(
            typed_data, expected_kind=statements.NODE_PROFILE_UPDATE
        )
        node = self.self_node()
        message = statement.message
        current = (node.url, node.title, node.description or "", node.profile_version)
        claimed = (message["url"], message["title"], message["description"], message["profileVersion"])
        if message["publisherAddress"] != node.address or claimed != current:
            raise ValidationFailedError("Statement does not describe the current profile")
        if not signatures.verify(statement, signature, node.address):
            logger.warning("Rejected profile broadcast: bad signature")
            raise SignatureMismatchError("Invalid signature")

        peers = self.db.query(Node).filter(Node.is_self.is_(False)).all()
        delivered = 0
        for peer in peers:
            try:
                await federation.push_profile_update(peer.url, statement.typed_data(), signature)
                delivered += 1
            except FederationError as exc:
                logger.error("Failed to push profile update to %s: %s", peer.url, exc)
        logger.info("Profile version %d pushed to %d of %d nodes", node.profile_version, delivered, len(peers))
        return delivered

    async def refresh_remote(
        self, address: str, announced_version: int, federation: FederationClient
    ) -> bool:
        """Re-fetch a known node's profile when a peer announces a newer version.

        Returns:
            True if the stored profile was replaced.
        """
        node = self.db.get(Node, address)
        if node is None or node.is_self or announced_version <= node.profile_version:
            return False
        try:
            profile = await federation.fetch_profile(node.url)
        except FederationError as exc:
            logger.error("Could not refresh profile of %s: %s", node.address, exc)
            return False
        if profile.address.lower() != node.address.lower():
            logger.warning("Profile served at %s belongs to %s", node.url, profile.address)
            return False
        if profile.profile_version <= node.profile_version:
            return False
        node.title = profile.title
        node.description = profile.description
        node.profile_version = profile.profile_version
        self.db.commit()
        logger.info("Refreshed profile of %s to version %d", node.address, node.profile_version)
        return True

    def apply_remote_update(self, typed_data: Mapping[str, Any], signature: str) -> Node:
        """Apply a NodeProfileUpdate received from a known node.

        Raises:
            NotFoundError: If the publisher is not a known node.
            SignatureMismatchError: If the publisher did not sign it.
            ConflictError: If the update is not newer than the stored profile.
        """
        statement = statements.statement_from_typed_data(
            typed_data, expected_kind=statements.NODE_PROFILE_UPDATE
        )
        message = statement.message
        node = self.db.get(Node, message["publisherAddress"])
        if node is None or node.is_self:
            raise NotFoundError("Node not found")
        if not signatures.verify(statement, signature, node.address):
            logger.warning("Rejected profile update for %s: bad signature", node.address)
            raise SignatureMismatchError("Invalid signature")
        if message["profileVersion"] <= node.profile_version:
            raise ConflictError("Profile update is not newer than the stored profile")
        if not is_http_url(message["url"]):
            raise ValidationFailedError("URL must start with http:// or https://")
        url = normalize_url(message["url"])
        clash = self.db.query(Node).filter(Node.url == url, Node.address != node.address)
        if clash.first() is not None:
            raise ConflictError("Another node is registered at this URL")

        node.url = url
        node.title = message["title"]
        node.description = message["description"]
        node.profile_version = message["profileVersion"]
        self.db.commit()
        self.db.refresh(node)
        logger.info("Applied profile version %d for %s", node.profile_version, node.address)
        return node
