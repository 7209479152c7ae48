# tests/services/test_publications.py
from __future__ import annotations

import time
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from epress_node.db.time import from_unix, to_unix
from epress_node.errors import ForbiddenError, ImmutabilityError, NotFoundError, ValidationFailedError
from epress_node.models import Connection, Hashtag, Node, Publication
from epress_node.services import signatures, statements
from epress_node.services.federation import FederationClient
from epress_node.services.publications import PublicationService
from epress_node.services.signatures import LocalAccountSigner
from epress_node.utils.hash import content_hash
from tests.conftest import PEER_URL, FakePeers


def _tags(publication: Publication) -> list[str]:
    return [tag.hashtag for tag in publication.hashtags]


@pytest.fixture()
def service(db_session: Session) -> PublicationService:
    return PublicationService(db_session)


class TestHashtags:
    def test_post_hashtags_are_extracted(
        self, service: PublicationService, self_node: Node
    ) -> None:
        publication = service.create_post("Notes on #Python and #python, plus #日本語.")
        assert _tags(publication) == ["python", "日本語"]

    def test_file_hashtags_come_from_description(
        self, service: PublicationService, self_node: Node
    ) -> None:
        publication = service.create_file("a.png", "image/png", b"\x89PNG", "Sunset #photo")
        assert _tags(publication) == ["photo"]

    def test_tags_are_shared_and_replaced_on_edit(
        self, db_session: Session, service: PublicationService, self_node: Node
    ) -> None:
        first = service.create_post("#travel day one")
        second = service.create_post("#travel day two #food")
        assert db_session.query(Hashtag).filter(Hashtag.hashtag == "travel").count() == 1

        edited = service.update(first.id, body="rewritten #notes")
        assert _tags(edited) == ["notes"]
        assert _tags(second) == ["food", "travel"]

    def test_filter_by_hashtag(self, service: PublicationService, self_node: Node) -> None:
        tagged = service.create_post("#release 1.0 is out")
        service.create_post("no tags here")

        items, total = service.list_publications(hashtag="#Release")
        assert total == 1
        assert [item.id for item in items] == [tagged.id]
        assert service.list_publications(hashtag="missing") == ([], 0)

    def test_search_matches_bodies_and_captions(
        self, service: PublicationService, self_node: Node
    ) -> None:
        post = service.create_post("Gardening in spring")
        caption = service.create_file("g.jpg", "image/jpeg", b"jpeg", "My garden")
        service.create_post("Unrelated")

        items, total = service.list_publications(search="garden")
        assert total == 2
        assert {item.id for item in items} == {post.id, caption.id}


class TestSigning:
    def test_signature_is_not_overwritten_by_a_concurrent_signer(
        self,
        db_session: Session,
        service: PublicationService,
        publication: Publication,
        owner_signer: LocalAccountSigner,
        mocker,
    ) -> None:
        signature = owner_signer.sign_statement(service.statement_for(publication))
        winner = "0x" + "ab" * 65

        def sign_elsewhere(*args, **kwargs) -> bool:
            db_session.execute(
                update(Publication)
                .where(Publication.id == publication.id)
                .values(signature=winner),
                execution_options={"synchronize_session": False},
            )
            return True

        mocker.patch.object(
            signatures, "verify_statement_of_source", side_effect=sign_elsewhere
        )
        with pytest.raises(ImmutabilityError):
            service.sign(publication.id, signature)

        db_session.refresh(publication)
        assert publication.signature == winner


class TestFeed:
    def _signed_post(
        self, service: PublicationService, signer: LocalAccountSigner, body: str
    ) -> Publication:
        publication = service.create_post(body)
        return service.sign(
            publication.id, signer.sign_statement(service.statement_for(publication))
        )

    def test_feed_is_signed_and_oldest_first(
        self,
        service: PublicationService,
        self_node: Node,
        owner_signer: LocalAccountSigner,
    ) -> None:
        first = self._signed_post(service, owner_signer, "one")
        second = self._signed_post(service, owner_signer, "two")
        service.create_post("draft")

        items, total = service.feed()
        assert total == 2
        assert [item.id for item in items] == [first.id, second.id]

    def test_feed_pages_and_since(
        self,
        db_session: Session,
        service: PublicationService,
        self_node: Node,
        owner_signer: LocalAccountSigner,
    ) -> None:
        old = self._signed_post(service, owner_signer, "old")
        old.created_at = old.created_at - timedelta(hours=2)
        db_session.commit()
        recent = [self._signed_post(service, owner_signer, f"post {n}") for n in range(3)]

        page, total = service.feed(page=2, limit=2)
        assert total == 4
        assert [item.id for item in page] == [recent[1].id, recent[2].id]

        since = from_unix(to_unix(old.created_at) + 60)
        items, total = service.feed(since=since)
        assert total == 3
        assert old.id not in {item.id for item in items}

    @pytest.mark.parametrize(("page", "limit"), [(0, 10), (1, 0), (1, 1001)])
    def test_feed_bounds(
        self, service: PublicationService, self_node: Node, page: int, limit: int
    ) -> None:
        with pytest.raises(ValidationFailedError):
            service.feed(page=page, limit=limit)


PEER_POSTS = ["# First\n\nfrom the peer", "# Second\n\n#followme"]


@pytest.fixture()
def following_peer(db_session: Session, self_node: Node, peer_node: Node) -> Node:
    db_session.add(
        Connection(follower_address=self_node.address, followee_address=peer_node.address)
    )
    db_session.commit()
    return peer_node


def _serve_feed(
    peers: FakePeers,
    signer: LocalAccountSigner,
    bodies: list[str],
    *,
    per_page: int = 1,
    author: str | None = None,
) -> list[int]:
    author = author or signer.address
    base = int(time.time()) - 600
    entries = []
    for offset, body in enumerate(bodies):
        digest = content_hash(body)
        timestamp = base + offset
        statement = statements.statement_of_source(digest, author, timestamp)
        entries.append(
            {
                "content_hash": digest,
                "author_address": author,
                "signature": signer.sign_statement(statement),
                "comment_count": 0,
                "timestamp": timestamp,
            }
        )
        peers.route(
            "GET",
            f"{PEER_URL}/ewp/contents/{digest}",
            httpx.Response(200, content=body.encode(), headers={"content-type": "text/markdown"}),
        )

    def feed(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        chunk = entries[(page - 1) * per_page : page * per_page]
        pages = -(-len(entries) // per_page)
        return httpx.Response(
            200,
            json={
                "data": chunk,
                "pagination": {
                    "page": page,
                    "limit": per_page,
                    "total": len(entries),
                    "totalPages": pages,
                    "hasNextPage": page < pages,
                    "hasPrevPage": page > 1,
                },
            },
        )

    peers.route("GET", f"{PEER_URL}/ewp/publications", feed)
    return [entry["timestamp"] for entry in entries]


class TestCatchUp:
    @pytest.mark.asyncio
    async def test_missing_publications_are_replicated(
        self,
        db_session: Session,
        service: PublicationService,
        following_peer: Node,
        peer_signer: LocalAccountSigner,
        peers: FakePeers,
    ) -> None:
        federation = FederationClient(transport=httpx.MockTransport(peers))
        timestamps = _serve_feed(peers, peer_signer, PEER_POSTS)

        assert await service.catch_up(following_peer.address, federation) == 2
        stored = (
            db_session.query(Publication)
            .filter(Publication.author_address == following_peer.address)
            .order_by(Publication.created_at)
            .all()
        )
        assert [to_unix(item.created_at) for item in stored] == timestamps
        assert _tags(stored[1]) == ["followme"]
        assert len(peers.calls("GET", f"{PEER_URL}/ewp/publications")) == 2

        # The second run starts from the newest stored publication.
        assert await service.catch_up(following_peer.address, federation) == 0
        last_feed = peers.calls("GET", f"{PEER_URL}/ewp/publications")[-1]
        assert "since" in last_feed.url.params
        await federation.aclose()

    @pytest.mark.asyncio
    async def test_forged_items_are_skipped(
        self,
        db_session: Session,
        service: PublicationService,
        following_peer: Node,
        peer_signer: LocalAccountSigner,
        peers: FakePeers,
    ) -> None:
        federation = FederationClient(transport=httpx.MockTransport(peers))
        _serve_feed(
            peers,
            LocalAccountSigner.create(),
            PEER_POSTS,
            per_page=5,
            author=peer_signer.address,
        )

        assert await service.catch_up(following_peer.address, federation) == 0
        assert (
            db_session.query(Publication)
            .filter(Publication.author_address == following_peer.address)
            .count()
            == 0
        )
        assert not [r for r in peers.requests if "/ewp/contents/" in r.url.path]
        await federation.aclose()

    @pytest.mark.asyncio
    async def test_requires_a_followed_node(
        self,
        service: PublicationService,
        peer_node: Node,
        self_node: Node,
        peer_signer: LocalAccountSigner,
        peers: FakePeers,
    ) -> None:
        federation = FederationClient(transport=httpx.MockTransport(peers))
        _serve_feed(peers, peer_signer, PEER_POSTS)

        with pytest.raises(ForbiddenError):
            await service.catch_up(peer_node.address, federation)
        with pytest.raises(NotFoundError):
            await service.catch_up("0x" + "00" * 20, federation)
        await federation.aclose()
