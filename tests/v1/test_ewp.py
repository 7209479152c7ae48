# tests/v1/test_ewp.py
from __future__ import annotations

import time
from urllib.parse import quote

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from epress_node.db.time import from_unix, to_unix
from epress_node.models import Connection, Node, Publication
from epress_node.services import statements
from epress_node.services.federation import PROFILE_VERSION_HEADER, FederationClient
from epress_node.services.publications import PublicationService
from epress_node.services.signatures import LocalAccountSigner
from epress_node.utils.hash import content_hash
from tests.conftest import PEER_URL, SELF_URL, FakePeers

PEER_POST = "# From the peer\n\nHello followers."


def _signed(statement: statements.TypedStatement, signer: LocalAccountSigner) -> dict:
    return {"typedData": statement.typed_data(), "signature": signer.sign_statement(statement)}


@pytest.fixture()
def following_peer(db_session: Session, self_node: Node, peer_node: Node) -> Node:
    db_session.add(
        Connection(follower_address=self_node.address, followee_address=peer_node.address)
    )
    db_session.commit()
    return peer_node


@pytest.fixture()
def peer_publication(peer_signer: LocalAccountSigner, peers: FakePeers) -> tuple[dict, int]:
    timestamp = int(time.time())
    digest = content_hash(PEER_POST)
    peers.route(
        "GET",
        f"{PEER_URL}/ewp/contents/{digest}",
        httpx.Response(200, content=PEER_POST.encode(), headers={"content-type": "text/markdown"}),
    )
    statement = statements.statement_of_source(digest, peer_signer.address, timestamp)
    return _signed(statement, peer_signer), timestamp


class TestServing:
    def test_profile_document(self, client: TestClient, self_node: Node) -> None:
        data = client.get("/ewp/profile").json()
        assert data["address"] == self_node.address
        assert data["url"] == SELF_URL
        assert data["profile_version"] == 0

    def test_signed_post_bytes(self, client: TestClient, signed_publication: Publication) -> None:
        response = client.get(f"/ewp/contents/{signed_publication.content_hash}")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/markdown")
        assert content_hash(response.content) == signed_publication.content_hash

        stamped = client.get(
            f"/ewp/contents/{signed_publication.content_hash}",
            params={"timestamp": to_unix(signed_publication.created_at)},
        )
        assert stamped.status_code == 200
        other = client.get(
            f"/ewp/contents/{signed_publication.content_hash}",
            params={"timestamp": to_unix(signed_publication.created_at) + 1},
        )
        assert other.status_code == 404

    def test_drafts_are_not_served(self, client: TestClient, publication: Publication) -> None:
        assert client.get(f"/ewp/contents/{publication.content_hash}").status_code == 404

    def test_file_headers(
        self, client: TestClient, db_session: Session, owner_signer: LocalAccountSigner, self_node
    ) -> None:
        service = PublicationService(db_session)
        publication = service.create_file("résumé.pdf", "application/pdf", b"%PDF-1.7", "My CV")
        service.sign(publication.id, owner_signer.sign_statement(service.statement_for(publication)))

        response = client.get(f"/ewp/contents/{publication.content_hash}")
        assert response.status_code == 200
        assert response.content == b"%PDF-1.7"
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"] == (
            f"attachment; filename*=UTF-8''{quote('résumé.pdf')}"
        )
        assert response.headers["content-description"] == "My%20CV"


class TestReplication:
    def test_followed_publisher_is_replicated(
        self,
        client: TestClient,
        following_peer: Node,
        peer_publication: tuple[dict, int],
        federation: FederationClient,
    ) -> None:
        payload, timestamp = peer_publication
        response = client.post("/ewp/replications", json=payload)
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["author_address"] == following_peer.address
        assert data["content_hash"] == content_hash(PEER_POST)
        assert data["is_signed"] is True
        assert data["signature"] == payload["signature"]

        again = client.post("/ewp/replications", json=payload)
        assert again.status_code == 409

    def test_unfollowed_publisher_is_refused(
        self,
        client: TestClient,
        peer_node: Node,
        self_node: Node,
        peer_publication: tuple[dict, int],
        federation: FederationClient,
        peers: FakePeers,
    ) -> None:
        payload, _ = peer_publication
        response = client.post("/ewp/replications", json=payload)
        assert response.status_code == 403
        assert peers.requests == []

    def test_content_must_match_hash(
        self,
        client: TestClient,
        following_peer: Node,
        peer_publication: tuple[dict, int],
        federation: FederationClient,
        peers: FakePeers,
    ) -> None:
        payload, _ = peer_publication
        peers.route(
            "GET",
            f"{PEER_URL}/ewp/contents/{content_hash(PEER_POST)}",
            httpx.Response(200, content=b"tampered", headers={"content-type": "text/markdown"}),
        )
        response = client.post("/ewp/replications", json=payload)
        assert response.status_code == 400
        assert client.get("/api/v1/publications").json()["total"] == 0

    def test_forged_signature(
        self,
        client: TestClient,
        following_peer: Node,
        peer_publication: tuple[dict, int],
        federation: FederationClient,
    ) -> None:
        payload, _ = peer_publication
        payload["signature"] = LocalAccountSigner.create().sign_statement(
            statements.statement_from_typed_data(payload["typedData"])
        )
        response = client.post("/ewp/replications", json=payload)
        assert response.status_code == 400

    def test_newer_profile_version_triggers_refresh(
        self,
        client: TestClient,
        db_session: Session,
        following_peer: Node,
        peer_signer: LocalAccountSigner,
        peer_publication: tuple[dict, int],
        federation: FederationClient,
        peers: FakePeers,
    ) -> None:
        peers.profile(peer_signer.address, title="Renamed peer", profile_version=3)
        payload, _ = peer_publication
        response = client.post(
            "/ewp/replications", json=payload, headers={PROFILE_VERSION_HEADER: "3"}
        )
        assert response.status_code == 201
        db_session.refresh(following_peer)
        assert following_peer.title == "Renamed peer"
        assert following_peer.profile_version == 3


class TestConnectionsFromPeers:
    def test_follower_side_records_outgoing_follow(
        self,
        client: TestClient,
        self_node: Node,
        owner_signer: LocalAccountSigner,
        peer_signer: LocalAccountSigner,
        peers: FakePeers,
        federation: FederationClient,
    ) -> None:
        peers.profile(peer_signer.address)
        statement = statements.create_connection(
            peer_signer.address, PEER_URL, SELF_URL, int(time.time())
        )
        response = client.post("/ewp/connections", json=_signed(statement, owner_signer))
        assert response.status_code == 201, response.text
        assert response.json()["address"] == peer_signer.address

        following = client.get("/api/v1/connections/following").json()
        assert [node["address"] for node in following["items"]] == [peer_signer.address]

    def test_outgoing_follow_must_be_signed_by_this_node(
        self,
        client: TestClient,
        self_node: Node,
        peer_signer: LocalAccountSigner,
        peers: FakePeers,
        federation: FederationClient,
    ) -> None:
        peers.profile(peer_signer.address)
        statement = statements.create_connection(
            peer_signer.address, PEER_URL, SELF_URL, int(time.time())
        )
        response = client.post("/ewp/connections", json=_signed(statement, peer_signer))
        assert response.status_code == 400

    def test_remote_disconnection(
        self,
        client: TestClient,
        db_session: Session,
        self_node: Node,
        peer_node: Node,
        peer_signer: LocalAccountSigner,
        federation: FederationClient,
    ) -> None:
        db_session.add(
            Connection(follower_address=peer_node.address, followee_address=self_node.address)
        )
        db_session.commit()
        statement = statements.delete_connection(
            self_node.address, peer_node.address, int(time.time())
        )
        response = client.request("DELETE", "/ewp/connections", json=_signed(statement, peer_signer))
        assert response.status_code == 204
        assert client.get("/api/v1/connections/followers").json()["total"] == 0


class TestProfileUpdates:
    def test_known_node_update(
        self,
        client: TestClient,
        db_session: Session,
        self_node: Node,
        peer_node: Node,
        peer_signer: LocalAccountSigner,
    ) -> None:
        statement = statements.node_profile_update(
            peer_node.address, "https://moved.example", "Moved", "", int(time.time()), 1
        )
        payload = _signed(statement, peer_signer)
        response = client.post("/ewp/nodes/updates", json=payload)
        assert response.status_code == 200
        assert response.json() == {"status": "updated"}

        db_session.refresh(peer_node)
        assert peer_node.url == "https://moved.example"
        assert peer_node.profile_version == 1
        assert client.post("/ewp/nodes/updates", json=payload).status_code == 409

    def test_unknown_node_update(self, client: TestClient, self_node: Node) -> None:
        stranger = LocalAccountSigner.create()
        statement = statements.node_profile_update(
            stranger.address, "https://x.example", "X", "", int(time.time()), 1
        )
        response = client.post("/ewp/nodes/updates", json=_signed(statement, stranger))
        assert response.status_code == 404


class TestFeed:
    def _sign(self, db_session: Session, signer: LocalAccountSigner, body: str) -> Publication:
        service = PublicationService(db_session)
        publication = service.create_post(body)
        statement = service.statement_for(publication)
        return service.sign(publication.id, signer.sign_statement(statement))

    def test_only_signed_publications_oldest_first(
        self,
        client: TestClient,
        db_session: Session,
        self_node: Node,
        owner_signer: LocalAccountSigner,
    ) -> None:
        first = self._sign(db_session, owner_signer, "# One")
        second = self._sign(db_session, owner_signer, "# Two")
        PublicationService(db_session).create_post("# Draft")

        response = client.get("/ewp/publications")
        assert response.status_code == 200
        body = response.json()
        assert [item["content_hash"] for item in body["data"]] == [
            first.content_hash,
            second.content_hash,
        ]
        assert body["data"][0]["signature"] == first.signature
        assert body["data"][0]["timestamp"] == to_unix(first.created_at)
        assert body["pagination"] == {
            "page": 1,
            "limit": 100,
            "total": 2,
            "totalPages": 1,
            "hasNextPage": False,
            "hasPrevPage": False,
        }

    def test_paging(
        self,
        client: TestClient,
        db_session: Session,
        self_node: Node,
        owner_signer: LocalAccountSigner,
    ) -> None:
        signed = [self._sign(db_session, owner_signer, f"# Post {n}") for n in range(3)]

        body = client.get("/ewp/publications", params={"page": 2, "limit": 2}).json()
        assert [item["content_hash"] for item in body["data"]] == [signed[2].content_hash]
        assert body["pagination"]["totalPages"] == 2
        assert body["pagination"]["hasPrevPage"] is True
        assert body["pagination"]["hasNextPage"] is False

    def test_since_filter(
        self,
        client: TestClient,
        db_session: Session,
        self_node: Node,
        owner_signer: LocalAccountSigner,
    ) -> None:
        old = self._sign(db_session, owner_signer, "# Old")
        old.created_at = from_unix(to_unix(old.created_at) - 3600)
        db_session.commit()
        recent = self._sign(db_session, owner_signer, "# Recent")

        since = from_unix(to_unix(recent.created_at) - 60).isoformat()
        body = client.get("/ewp/publications", params={"since": since}).json()
        assert [item["content_hash"] for item in body["data"]] == [recent.content_hash]

    @pytest.mark.parametrize(
        ("params", "status_code"),
        [
            ({"limit": 0}, 400),
            ({"limit": 1001}, 400),
            ({"page": 0}, 400),
            ({"limit": 1000}, 200),
        ],
    )
    def test_bounds(
        self, client: TestClient, self_node: Node, params: dict, status_code: int
    ) -> None:
        response = client.get("/ewp/publications", params=params)
        assert response.status_code == status_code
        if status_code == 400:
            assert response.json()["detail"]["code"] == "VALIDATION_FAILED"
