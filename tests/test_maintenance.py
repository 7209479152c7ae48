# tests/test_maintenance.py
from __future__ import annotations

import time
from datetime import timedelta

import httpx
import pytest
from sqlalchemy.orm import Session

from epress_node.db.time import to_unix, utcnow
from epress_node.models import (
    AUTH_TYPE_EMAIL,
    COMMENT_STATUS_PENDING,
    Comment,
    Connection,
    Node,
    Publication,
)
from epress_node.scripts import maintenance
from epress_node.services import statements
from epress_node.services.contents import ContentService
from epress_node.services.federation import FederationClient
from epress_node.services.signatures import LocalAccountSigner
from epress_node.utils.hash import content_hash
from tests.conftest import PEER_URL, FakePeers


@pytest.fixture
def patched_session(db_session: Session, mocker) -> Session:
    mocker.patch.object(db_session, "close")
    mocker.patch("epress_node.scripts.maintenance.SessionLocal", return_value=db_session)
    return db_session


def test_expire_comments(
    patched_session: Session, publication: Publication, capsys: pytest.CaptureFixture[str]
) -> None:
    stale = Comment(
        publication_id=publication.id,
        body="Old",
        status=COMMENT_STATUS_PENDING,
        auth_type=AUTH_TYPE_EMAIL,
        author_name="Reader",
        author_id="r@example.com",
        created_at=utcnow() - timedelta(days=30),
    )
    patched_session.add(stale)
    patched_session.commit()

    assert maintenance.main(["expire-comments"]) == 0
    assert "expire-comments: 1 rows affected" in capsys.readouterr().out
    patched_session.refresh(stale)
    assert stale.status == "EXPIRED"


def test_cleanup_contents(
    patched_session: Session, publication: Publication, capsys: pytest.CaptureFixture[str]
) -> None:
    ContentService(patched_session).create_post("nobody points at this")
    patched_session.commit()

    assert maintenance.main(["cleanup-contents"]) == 0
    assert "cleanup-contents: 1 rows affected" in capsys.readouterr().out
    assert ContentService(patched_session).get(publication.content_hash) is not None


def test_failing_task_returns_error(mocker, patched_session: Session) -> None:
    mocker.patch.dict(
        maintenance.TASKS, {"expire-comments": mocker.Mock(side_effect=RuntimeError("db gone"))}
    )
    assert maintenance.main(["expire-comments"]) == 1


def test_unknown_task_exits() -> None:
    with pytest.raises(SystemExit):
        maintenance.main(["reticulate-splines"])


@pytest.fixture
def followed_peer(patched_session: Session, self_node: Node, peer_node: Node) -> Node:
    patched_session.add(
        Connection(follower_address=self_node.address, followee_address=peer_node.address)
    )
    patched_session.commit()
    return peer_node


@pytest.fixture
def peer_federation(mocker, peers: FakePeers) -> FakePeers:
    mocker.patch(
        "epress_node.scripts.maintenance.FederationClient",
        side_effect=lambda: FederationClient(transport=httpx.MockTransport(peers)),
    )
    return peers


def test_sync_following(
    patched_session: Session,
    followed_peer: Node,
    peer_signer: LocalAccountSigner,
    peer_federation: FakePeers,
    capsys: pytest.CaptureFixture[str],
) -> None:
    body = "# Missed\n\nPublished while we were away."
    digest = content_hash(body)
    timestamp = int(time.time()) - 3600
    statement = statements.statement_of_source(digest, peer_signer.address, timestamp)
    peer_federation.route(
        "GET",
        f"{PEER_URL}/ewp/publications",
        httpx.Response(
            200,
            json={
                "data": [
                    {
                        "content_hash": digest,
                        "author_address": peer_signer.address,
                        "signature": peer_signer.sign_statement(statement),
                        "timestamp": timestamp,
                    }
                ],
                "pagination": {"page": 1, "limit": 100, "total": 1, "hasNextPage": False},
            },
        ),
    )
    peer_federation.route(
        "GET",
        f"{PEER_URL}/ewp/contents/{digest}",
        httpx.Response(200, content=body.encode(), headers={"content-type": "text/markdown"}),
    )

    assert maintenance.main(["sync-following"]) == 0
    assert "sync-following: 1 rows affected" in capsys.readouterr().out
    replicated = (
        patched_session.query(Publication)
        .filter(Publication.author_address == followed_peer.address)
        .one()
    )
    assert replicated.content_hash == digest
    assert to_unix(replicated.created_at) == timestamp


def test_sync_following_survives_unreachable_peer(
    patched_session: Session,
    followed_peer: Node,
    peer_federation: FakePeers,
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert maintenance.main(["sync-following"]) == 0
    assert "sync-following: 0 rows affected" in capsys.readouterr().out
