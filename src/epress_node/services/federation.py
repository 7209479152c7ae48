"""HTTP client for node-to-node (EWP) calls.

This module provides the FederationClient class used to talk to remote
nodes: fetching profiles and content, and pushing connection, replication
and profile update statements. Network and protocol failures surface as
:class:`~epress_node.errors.FederationError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from datetime import datetime
from urllib.parse import unquote

import httpx

from epress_node.core.settings import settings
from epress_node.db.time import to_unix
from epress_node.errors import FederationError

logger = logging.getLogger(__name__)

PROFILE_VERSION_HEADER = "X-Epress-Profile-Version"


@dataclass(frozen=True)
class RemoteProfile:
    """Profile document served by ``GET /ewp/profile``."""

    address: str
    url: str
    title: str
    description: str | None
    profile_version: int = 0


@dataclass(frozen=True)
class RemoteContent:
    """Content bytes served by ``GET /ewp/contents/{hash}``."""

    data: bytes
    mimetype: str
    filename: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class RemotePublication:
    """One entry of a publisher's ``GET /ewp/publications`` feed."""

    content_hash: str
    author_address: str
    signature: str | None
    timestamp: int
    comment_count: int = 0


@dataclass(frozen=True)
class RemoteFeedPage:
    items: list[RemotePublication]
    page: int
    total: int
    has_next_page: bool


def _base(url: str) -> str:
    return url.rstrip("/")


def _feed_timestamp(entry: Mapping[str, Any]) -> int:
    if entry.get("timestamp") is not None:
        return int(entry["timestamp"])
    # Nodes that only publish created_at send an ISO-8601 string.
    return to_unix(datetime.fromisoformat(str(entry["created_at"])))


def _filename_from_disposition(header: str | None) -> str | None:
    if not header:
        return None
    for part in header.split(";"):
        part = part.strip()
        if part.lower().startswith("filename*="):
            _, _, encoded = part.partition("''")
            return unquote(encoded)
    for part in header.split(";"):
        part = part.strip()
        if part.lower().startswith("filename="):
            return part.split("=", 1)[1].strip('"')
    return None


class FederationClient:
    """HTTP client wrapper for EWP interactions."""

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.federation_http_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_data: Any | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        try:
            return await client.request(
                method, url, json=json_data, params=params, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.error("Federation request %s %s failed: %s", method, url, exc)
            raise FederationError(f"Remote node unreachable: {url}") from exc

    async def fetch_profile(self, base_url: str) -> RemoteProfile:
        """Fetch and parse the profile of the node at ``base_url``."""
        response = await self._request("GET", f"{_base(base_url)}/ewp/profile")
        if response.status_code != httpx.codes.OK:
            raise FederationError(
                f"Profile fetch from {base_url} returned {response.status_code}"
            )
        try:
            payload = response.json()
            return RemoteProfile(
                address=str(payload["address"]),
                url=str(payload["url"]),
                title=str(payload.get("title") or ""),
                description=payload.get("description"),
                profile_version=int(payload.get("profile_version") or 0),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise FederationError(f"Malformed profile from {base_url}") from exc

    async def fetch_content(
        self,
        base_url: str,
        content_hash: str,
        *,
        timestamp: int | None = None,
    ) -> RemoteContent:
        """Download the bytes of ``content_hash`` published at ``base_url``."""
        params = {"timestamp": str(timestamp)} if timestamp is not None else None
        response = await self._request(
            "GET", f"{_base(base_url)}/ewp/contents/{content_hash}", params=params
        )
        if response.status_code != httpx.codes.OK:
            raise FederationError(
                f"Content fetch of {content_hash} from {base_url} returned {response.status_code}"
            )
        mimetype = response.headers.get("content-type", "application/octet-stream")
        description = response.headers.get("content-description")
        return RemoteContent(
            data=response.content,
            mimetype=mimetype.split(";")[0].strip(),
            filename=_filename_from_disposition(response.headers.get("content-disposition")),
            description=unquote(description) if description else None,
        )

    async def fetch_publications(
        self,
        base_url: str,
        *,
        since: datetime | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> RemoteFeedPage:
        """Read one page of the signed publications feed of ``base_url``."""
        params: dict[str, str] = {"page": str(page), "limit": str(limit)}
        if since is not None:
            params["since"] = since.isoformat()
        response = await self._request(
            "GET", f"{_base(base_url)}/ewp/publications", params=params
        )
        if response.status_code != httpx.codes.OK:
            raise FederationError(
                f"Feed fetch from {base_url} returned {response.status_code}"
            )
        try:
            payload = response.json()
            pagination = payload["pagination"]
            items = [
                RemotePublication(
                    content_hash=str(entry["content_hash"]),
                    author_address=str(entry["author_address"]),
                    signature=entry.get("signature"),
                    timestamp=_feed_timestamp(entry),
                    comment_count=int(entry.get("comment_count") or 0),
                )
                for entry in payload["data"]
            ]
            return RemoteFeedPage(
                items=items,
                page=int(pagination["page"]),
                total=int(pagination["total"]),
                has_next_page=bool(pagination["hasNextPage"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise FederationError(f"Malformed feed from {base_url}") from exc

    async def send_connection(
        self, base_url: str, typed_data: Mapping[str, Any], signature: str
    ) -> None:
        """Deliver a CreateConnection statement to the follower's node.

        An already existing connection on the remote side counts as success.
        """
        response = await self._request(
            "POST",
            f"{_base(base_url)}/ewp/connections",
            json_data={"typedData": dict(typed_data), "signature": signature},
        )
        if response.status_code == httpx.codes.CONFLICT:
            logger.info("Connection already recorded at %s", base_url)
            return
        if response.status_code not in (httpx.codes.OK, httpx.codes.CREATED):
            raise FederationError(
                f"Connection handshake with {base_url} returned {response.status_code}"
            )

    async def send_disconnection(
        self, base_url: str, typed_data: Mapping[str, Any], signature: str
    ) -> None:
        """Deliver a DeleteConnection statement to the counterpart node."""
        response = await self._request(
            "DELETE",
            f"{_base(base_url)}/ewp/connections",
            json_data={"typedData": dict(typed_data), "signature": signature},
        )
        if response.status_code >= httpx.codes.BAD_REQUEST:
            raise FederationError(
                f"Disconnection at {base_url} returned {response.status_code}"
            )

    async def replicate(
        self,
        base_url: str,
        typed_data: Mapping[str, Any],
        signature: str,
        *,
        profile_version: int = 0,
    ) -> bool:
        """Push a signed StatementOfSource to a follower.

        Returns:
            True if the follower stored (or already had) the publication.

        Raises:
            FederationError: If the follower is unreachable or refuses.
        """
        response = await self._request(
            "POST",
            f"{_base(base_url)}/ewp/replications",
            json_data={"typedData": dict(typed_data), "signature": signature},
            headers={PROFILE_VERSION_HEADER: str(profile_version)},
        )
        if response.status_code == httpx.codes.CONFLICT:
            return True
        if response.status_code not in (httpx.codes.OK, httpx.codes.CREATED):
            raise FederationError(
                f"Replication to {base_url} returned {response.status_code}"
            )
        return True

    async def push_profile_update(
        self, base_url: str, typed_data: Mapping[str, Any], signature: str
    ) -> None:
        """Send a signed NodeProfileUpdate to a known node."""
        response = await self._request(
            "POST",
            f"{_base(base_url)}/ewp/nodes/updates",
            json_data={"typedData": dict(typed_data), "signature": signature},
        )
        if response.status_code >= httpx.codes.BAD_REQUEST:
            raise FederationError(
                f"Profile update at {base_url} returned {response.status_code}"
            )


_federation_client: FederationClient | None = None


def get_federation_client() -> FederationClient:
    """Return a singleton federation client instance."""
    global _federation_client
    if _federation_client is None:
        _federation_client = FederationClient()
    return _federation_client


__all__ = [
    "FederationClient",
    "RemoteContent",
    "RemoteFeedPage",
    "RemoteProfile",
    "RemotePublication",
    "get_federation_client",
]
