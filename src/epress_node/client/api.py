"""HTTP client for the public comment API of an epress node.

Used by client-side tooling such as :mod:`epress_node.client.pending`.
Server rejections surface as :class:`~epress_node.errors.ProtocolError`
subclasses; network failures are left as ``httpx.TransportError`` so callers
can tell a refusal from a dropped connection.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from epress_node.errors import (
    ConflictError,
    FeatureDisabledError,
    FederationError,
    ForbiddenError,
    ImmutabilityError,
    NotFoundError,
    ProtocolError,
    SignatureMismatchError,
    TokenRejectedError,
    TransientChannelError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

ERRORS_BY_CODE: dict[str, type[ProtocolError]] = {
    "VALIDATION_FAILED": ValidationFailedError,
    "INVALID_SIGNATURE": SignatureMismatchError,
    "VERIFICATION_FAILED": TokenRejectedError,
    "IMMUTABLE": ImmutabilityError,
    "FORBIDDEN": ForbiddenError,
    "FEATURE_DISABLED": FeatureDisabledError,
    "COMMENT_DISABLED": FeatureDisabledError,
    "FOLLOW_DISABLED": FeatureDisabledError,
    "NOT_FOUND": NotFoundError,
    "CONFLICT": ConflictError,
    "FEDERATION_FAILED": FederationError,
}


def _rejection(response: httpx.Response) -> ProtocolError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    detail = payload.get("detail") if isinstance(payload, Mapping) else None
    if isinstance(detail, Mapping) and "code" in detail:
        code = str(detail["code"])
        error_class = ERRORS_BY_CODE.get(code, ProtocolError)
        return error_class(str(detail.get("message", "")), code=code)
    if response.status_code == httpx.codes.UNPROCESSABLE_ENTITY:
        return ValidationFailedError("Request failed validation")
    message = detail if isinstance(detail, str) else f"Request failed with {response.status_code}"
    return ProtocolError(message)


class EpressApiClient:
    """Async wrapper around the ``/api/v1`` comment endpoints of one node."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._node_address: str | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
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
        path: str,
        *,
        json_data: Any | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            ProtocolError: If the node refused the request (4xx).
            TransientChannelError: If the node failed while handling it (5xx).
            httpx.TransportError: If the node could not be reached.
        """
        client = await self._ensure_client()
        response = await client.request(method, path, json=json_data)
        if response.status_code >= httpx.codes.INTERNAL_SERVER_ERROR:
            logger.error("%s %s failed with %s", method, path, response.status_code)
            raise TransientChannelError(f"Node answered {response.status_code}")
        if response.status_code >= httpx.codes.BAD_REQUEST:
            raise _rejection(response)
        if response.status_code == httpx.codes.NO_CONTENT:
            return None
        return response.json()

    async def node_address(self) -> str:
        """Return the account address of the node, fetched once."""
        if self._node_address is None:
            profile = await self._request("GET", "/api/v1/profile")
            self._node_address = str(profile["address"])
        return self._node_address

    async def submit_comment(
        self,
        publication_id: int,
        body: str,
        author_name: str,
        auth: Mapping[str, Any],
    ) -> dict[str, Any]:
        payload = {
            "publication_id": publication_id,
            "body": body,
            "author_name": author_name,
            "auth": dict(auth),
        }
        result: dict[str, Any] = await self._request("POST", "/api/v1/comments", json_data=payload)
        return result

    async def list_comments(self, publication_id: int) -> list[dict[str, Any]]:
        """Return the confirmed comments of a publication."""
        result = await self._request("GET", f"/api/v1/publications/{publication_id}/comments")
        return list(result["items"])
