"""Follow relationships between nodes.

A follow is one ``CreateConnection`` statement signed by the follower and
recorded on both sides: the followee's node checks it first (public API),
then forwards it to the follower's node (EWP) before storing its own copy.
Unfollowing works the same way with ``DeleteConnection``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from epress_node.core.settings import settings
from epress_node.db.time import within_window
from epress_node.errors import (
    ConflictError,
    FeatureDisabledError,
    FederationError,
    ForbiddenError,
    NotFoundError,
    SignatureMismatchError,
    ValidationFailedError,
)
from epress_node.models import Connection, Node
from epress_node.services import signatures, statements
from epress_node.services.federation import FederationClient, RemoteProfile
from epress_node.services.node_settings import ALLOW_FOLLOW, get_flag, get_self_node
from epress_node.utils.urls import is_http_url, normalize_url

logger = logging.getLogger(__name__)


def _same_address(left: str, right: str) -> bool:
    return left.lower() == right.lower()


def _search(query: Query[Node], search: str | None) -> Query[Node]:
    if not search or not search.strip():
        return query
    pattern = f"%{search.strip()}%"
    return query.filter(or_(Node.title.ilike(pattern), Node.description.ilike(pattern)))


class ConnectionService:
    """Create, delete and list follow relationships."""

    def __init__(self, db: Session, federation: FederationClient) -> None:
        self.db = db
        self.federation = federation

    # --- helpers -------------------------------------------------------------------

    def _self_node(self) -> Node:
        node = get_self_node(self.db)
        if node is None:
            raise NotFoundError("Node is not installed")
        return node

    @staticmethod
    def _check_timestamp(timestamp: int) -> None:
        if not within_window(timestamp, settings.statement_timestamp_window_seconds):
            raise ValidationFailedError("Timestamp is outside the acceptable range")

    @staticmethod
    def _check_urls(*urls: str) -> None:
        for url in urls:
            if not is_http_url(url):
                raise ValidationFailedError(f"Invalid URL: {url}")

    def _upsert_node(self, profile: RemoteProfile, address: str) -> Node:
        url = normalize_url(profile.url)
        clash = self.db.query(Node).filter(Node.url == url, Node.address != address).first()
        if clash is not None:
            raise ConflictError("Another node is registered at this URL")
        node = self.db.get(Node, address)
        if node is None:
            node = Node(
                address=address,
                url=url,
                title=profile.title,
                description=profile.description,
                is_self=False,
                profile_version=profile.profile_version,
            )
            self.db.add(node)
        elif not node.is_self:
            node.url = url
            node.title = profile.title
            node.description = profile.description
            node.profile_version = max(node.profile_version, profile.profile_version)
        return node

    def _find(self, follower_address: str, followee_address: str) -> Connection | None:
        return (
            self.db.query(Connection)
            .filter(
                Connection.follower_address == follower_address,
                Connection.followee_address == followee_address,
            )
            .first()
        )

    # --- follow ----------------------------------------------------------------------

    async def follow(self, typed_data: Mapping[str, Any], signature: str) -> Node:
        """Accept a follower on the followee's node (this node).

        Returns:
            The follower's node row.

        Raises:
            FeatureDisabledError: If the owner switched following off.
            SignatureMismatchError: If the signer is not the follower at
                ``followerUrl``.
            ConflictError: If the follower already follows this node.
        """
        if not get_flag(self.db, ALLOW_FOLLOW):
            raise FeatureDisabledError("Following is disabled", code="FOLLOW_DISABLED")
        statement = statements.statement_from_typed_data(
            typed_data, expected_kind=statements.CREATE_CONNECTION
        )
        message = statement.message
        signer = signatures.recover_signer(statement, signature)
        if signer is None:
            raise SignatureMismatchError("Invalid signature")
        self._check_timestamp(message["timestamp"])
        self._check_urls(message["followeeUrl"], message["followerUrl"])

        self_node = self._self_node()
        if not _same_address(message["followeeAddress"], self_node.address):
            raise ValidationFailedError("Followee identity mismatch")

        profile = await self.federation.fetch_profile(message["followerUrl"])
        if not _same_address(profile.address, signer):
            logger.warning("Follower profile at %s does not match signer", message["followerUrl"])
            raise SignatureMismatchError("Signer does not match the follower profile")
        if self._find(signer, self_node.address) is not None:
            raise ConflictError("Connection already exists")

        follower = self._upsert_node(profile, signer)
        try:
            await self.federation.send_connection(
                message["followerUrl"], statement.typed_data(), signature
            )
        except FederationError:
            self.db.rollback()
            raise

        self.db.add(
            Connection(
                follower_address=follower.address,
                followee_address=self_node.address,
                signature=signature,
            )
        )
        self.db.commit()
        self.db.refresh(follower)
        logger.info("Node %s now follows this node", follower.address)
        return follower

    async def accept_outgoing(self, typed_data: Mapping[str, Any], signature: str) -> Node:
        """Record on the follower's node (this node) that it follows a remote node.

        The statement must be signed by this node's own address.
        """
        statement = statements.statement_from_typed_data(
            typed_data, expected_kind=statements.CREATE_CONNECTION
        )
        message = statement.message
        self_node = self._self_node()
        if not signatures.verify(statement, signature, self_node.address):
            logger.warning("Rejected outgoing connection: not signed by this node")
            raise SignatureMismatchError("Invalid signature")
        self._check_timestamp(message["timestamp"])
        self._check_urls(message["followeeUrl"], message["followerUrl"])

        profile = await self.federation.fetch_profile(message["followeeUrl"])
        if not _same_address(profile.address, message["followeeAddress"]):
            raise ForbiddenError("Followee identity mismatch")

        followee_address = message["followeeAddress"]
        if self._find(self_node.address, followee_address) is not None:
            raise ConflictError("Connection already exists")
        followee = self._upsert_node(profile, followee_address)
        self.db.add(
            Connection(
                follower_address=self_node.address,
                followee_address=followee.address,
                signature=signature,
            )
        )
        self.db.commit()
        self.db.refresh(followee)
        logger.info("This node now follows %s", followee.address)
        return followee

    # --- unfollow --------------------------------------------------------------------

    def _deletion(
        self, typed_data: Mapping[str, Any], signature: str
    ) -> tuple[statements.TypedStatement, Node, Connection]:
        statement = statements.statement_from_typed_data(
            typed_data, expected_kind=statements.DELETE_CONNECTION
        )
        message = statement.message
        self._check_timestamp(message["timestamp"])
        if not signatures.verify(statement, signature, message["followerAddress"]):
            logger.warning("Rejected unfollow: signer is not %s", message["followerAddress"])
            raise SignatureMismatchError("Invalid signature")

        self_node = self._self_node()
        if _same_address(message["followerAddress"], self_node.address):
            counterpart = self.db.get(Node, message["followeeAddress"])
        elif _same_address(message["followeeAddress"], self_node.address):
            counterpart = self.db.get(Node, message["followerAddress"])
        else:
            raise ForbiddenError("This node is not part of the connection")
        if counterpart is None:
            raise NotFoundError("Node not found")
        connection = self._find(message["followerAddress"], message["followeeAddress"])
        if connection is None:
            raise NotFoundError("Connection not found")
        return statement, counterpart, connection

    async def unfollow(self, typed_data: Mapping[str, Any], signature: str) -> Node:
        """Delete a connection initiated on this node and notify the counterpart.

        Returns:
            The counterpart node.
        """
        statement, counterpart, connection = self._deletion(typed_data, signature)
        await self.federation.send_disconnection(
            counterpart.url, statement.typed_data(), signature
        )
        pair = (connection.follower_address, connection.followee_address)
        self.db.delete(connection)
        self.db.commit()
        logger.info("Connection %s -> %s deleted", *pair)
        return counterpart

    def accept_disconnection(self, typed_data: Mapping[str, Any], signature: str) -> None:
        """Delete a connection on request of the counterpart node (EWP)."""
        _, _, connection = self._deletion(typed_data, signature)
        pair = (connection.follower_address, connection.followee_address)
        self.db.delete(connection)
        self.db.commit()
        logger.info("Connection %s -> %s removed by remote request", *pair)

    # --- queries ---------------------------------------------------------------------

    def followers(self, search: str | None = None) -> list[Node]:
        """Nodes following this one, newest first; ``search`` matches title or description."""
        self_node = self._self_node()
        query = (
            self.db.query(Node)
            .join(Connection, Connection.follower_address == Node.address)
            .filter(Connection.followee_address == self_node.address)
        )
        return (
            _search(query, search)
            .order_by(Connection.created_at.desc())
            .all()
        )

    def following(self, search: str | None = None) -> list[Node]:
        self_node = self._self_node()
        query = (
            self.db.query(Node)
            .join(Connection, Connection.followee_address == Node.address)
            .filter(Connection.follower_address == self_node.address)
        )
        return (
            _search(query, search)
            .order_by(Connection.created_at.desc())
            .all()
        )
