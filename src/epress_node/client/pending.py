"""Client-side store for comments that are not confirmed yet.

Each publication view holds at most one pending comment. The entry survives
cancelled signing prompts and dropped connections so the draft never has to
be retyped; it is removed only when a refetch shows the comment confirmed,
or when the user cancels it.

Protocol rejections move an entry to ``FAILED``. Nothing is retried
automatically; :meth:`PendingCommentStore.retry` is always a user action.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from epress_node.client.api import EpressApiClient
from epress_node.errors import ProtocolError, SigningCancelled, TransientChannelError
from epress_node.services import statements
from epress_node.services.signatures import Signer
from epress_node.utils.hash import body_hash

logger = logging.getLogger(__name__)

DRAFT = "DRAFT"
NEEDS_SIGNATURE = "NEEDS_SIGNATURE"
RETRYABLE = "RETRYABLE"
FAILED = "FAILED"
SUBMITTED = "SUBMITTED"
AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"

_RESUBMITTABLE = frozenset({NEEDS_SIGNATURE, RETRYABLE, FAILED})
_ACCEPTED = frozenset({SUBMITTED, AWAITING_CONFIRMATION})


class PendingConflictError(Exception):
    """A publication already has a pending comment."""


@dataclass(frozen=True)
class WalletChannel:
    address: str


@dataclass(frozen=True)
class EmailChannel:
    email: str


Channel = WalletChannel | EmailChannel


@dataclass
class PendingComment:
    """A drafted comment and how far its submission got."""

    publication_id: int
    body: str
    author_name: str
    channel: Channel
    state: str = NEEDS_SIGNATURE
    comment_id: int | None = None
    signature: str | None = None
    timestamp: int | None = None
    error: str | None = None
    attempts: int = 0
    drafted_at: float = field(default_factory=time.time)

    def as_item(self) -> dict[str, Any]:
        """Render the entry in the shape of a listed comment."""
        return {
            "id": self.comment_id,
            "publication_id": self.publication_id,
            "body": self.body,
            "author_name": self.author_name,
            "auth_type": "ETHEREUM" if isinstance(self.channel, WalletChannel) else "EMAIL",
            "credential": self.signature,
            "status": self.state,
            "pending": True,
        }


class PendingCommentStore:
    """Optimistic comment state for one client session."""

    def __init__(self, api: EpressApiClient, signer: Signer | None = None) -> None:
        self.api = api
        self.signer = signer
        self._entries: dict[int, PendingComment] = {}

    def get(self, publication_id: int) -> PendingComment | None:
        return self._entries.get(publication_id)

    def draft(
        self,
        publication_id: int,
        body: str,
        author_name: str,
        channel: Channel,
    ) -> PendingComment:
        """Hold a new comment for ``publication_id``.

        Raises:
            PendingConflictError: If the publication already has one.
        """
        if publication_id in self._entries:
            raise PendingConflictError(
                f"Publication {publication_id} already has a pending comment"
            )
        if isinstance(channel, WalletChannel) and self.signer is None:
            raise ValueError("A signer is required for wallet comments")
        initial = NEEDS_SIGNATURE if isinstance(channel, WalletChannel) else DRAFT
        entry = PendingComment(
            publication_id=publication_id,
            body=body,
            author_name=author_name,
            channel=channel,
            state=initial,
        )
        self._entries[publication_id] = entry
        return entry

    def _entry(self, publication_id: int) -> PendingComment:
        entry = self._entries.get(publication_id)
        if entry is None:
            raise LookupError(f"No pending comment for publication {publication_id}")
        return entry

    async def _sign(self, entry: PendingComment, channel: WalletChannel) -> str:
        if self.signer is None:
            raise ValueError("A signer is required for wallet comments")
        node_address = await self.api.node_address()
        timestamp = int(time.time())
        statement = statements.comment_signature(
            node_address, channel.address, entry.publication_id, body_hash(entry.body), timestamp
        )
        result = self.signer.sign(statement.signable())
        if inspect.isawaitable(result):
            result = await result
        entry.timestamp = timestamp
        return str(result)

    async def _auth(self, entry: PendingComment) -> dict[str, Any]:
        match entry.channel:
            case WalletChannel() as channel:
                entry.signature = await self._sign(entry, channel)
                return {
                    "type": "ETHEREUM",
                    "address": channel.address,
                    "signature": entry.signature,
                    "timestamp": entry.timestamp,
                }
            case EmailChannel(email=email):
                return {"type": "EMAIL", "email": email}
        raise TypeError(f"Unsupported channel: {entry.channel!r}")

    async def _submit(self, entry: PendingComment) -> PendingComment:
        entry.attempts += 1
        entry.error = None
        try:
            auth = await self._auth(entry)
        except SigningCancelled:
            logger.info("Signing cancelled for publication %s", entry.publication_id)
            entry.signature = None
            entry.state = NEEDS_SIGNATURE
            return entry
        except (httpx.TransportError, TransientChannelError) as exc:
            logger.warning("Could not prepare comment for %s: %s", entry.publication_id, exc)
            entry.state = RETRYABLE
            return entry

        try:
            result = await self.api.submit_comment(
                entry.publication_id, entry.body, entry.author_name, auth
            )
        except (httpx.TransportError, TransientChannelError) as exc:
            logger.warning("Comment submission for %s interrupted: %s", entry.publication_id, exc)
            entry.state = RETRYABLE
            return entry
        except ProtocolError as err:
            logger.info("Comment for %s rejected: %s", entry.publication_id, err.message)
            entry.state = FAILED
            entry.error = err.message
            return entry

        comment_id = result.get("id")
        entry.comment_id = int(comment_id) if comment_id is not None else None
        entry.state = SUBMITTED if isinstance(entry.channel, WalletChannel) else AWAITING_CONFIRMATION
        return entry

    async def submit(self, publication_id: int) -> PendingComment:
        """Sign if needed and send the pending comment.

        Entries that were already accepted or that failed are returned
        unchanged; use :meth:`retry` to resend a failed one.
        """
        entry = self._entry(publication_id)
        if entry.state not in (DRAFT, NEEDS_SIGNATURE, RETRYABLE):
            return entry
        return await self._submit(entry)

    async def retry(self, publication_id: int) -> PendingComment:
        """Re-sign and resubmit the same body after a cancel, drop or rejection."""
        entry = self._entry(publication_id)
        if entry.state not in _RESUBMITTABLE:
            return entry
        entry.signature = None
        entry.timestamp = None
        return await self._submit(entry)

    def cancel(self, publication_id: int) -> PendingComment | None:
        return self._entries.pop(publication_id, None)

    @staticmethod
    def _matches(entry: PendingComment, remote: Mapping[str, Any]) -> bool:
        # Only a comment the node accepted can show up confirmed.
        if entry.state not in _ACCEPTED:
            return False
        if entry.comment_id is not None:
            return remote.get("id") == entry.comment_id
        if entry.signature:
            return remote.get("credential") == entry.signature
        return remote.get("body") == entry.body and remote.get("author_name") == entry.author_name

    def reconcile(self, publication_id: int, remote: Iterable[Mapping[str, Any]]) -> bool:
        """Drop the pending entry if ``remote`` confirmed comments contain it.

        Only entries the node accepted are matched: by id once it is known,
        otherwise by signature or by body and author name.

        Returns:
            True if the entry was cleared.
        """
        entry = self._entries.get(publication_id)
        if entry is None:
            return False
        if any(self._matches(entry, comment) for comment in remote):
            del self._entries[publication_id]
            logger.debug("Pending comment for %s confirmed", publication_id)
            return True
        return False

    def visible(
        self, publication_id: int, confirmed: Iterable[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        """Return the list to render: pending entry first, then confirmed comments."""
        confirmed = list(confirmed)
        items = [dict(comment, pending=False) for comment in confirmed]
        entry = self._entries.get(publication_id)
        if entry is not None and not any(self._matches(entry, c) for c in confirmed):
            items.insert(0, entry.as_item())
        return items

    async def refresh(self, publication_id: int) -> list[dict[str, Any]]:
        """Refetch confirmed comments, reconcile, and return the visible list."""
        confirmed = await self.api.list_comments(publication_id)
        self.reconcile(publication_id, confirmed)
        return self.visible(publication_id, confirmed)
