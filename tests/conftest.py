# tests/conftest.py
from __future__ import annotations

import os
import tempfile
import time
from collections.abc import Callable, Generator, Iterator
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-epress")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="epress-uploads-"))

from epress_node.api.v1.dependencies import get_federation, get_mailer_dep
from epress_node.db.session import Base
from epress_node.db.session import get_db as app_get_session
from epress_node.main import app as fastapi_app
from epress_node.models import Node, Publication
from epress_node.services import statements, tokens
from epress_node.services.federation import FederationClient
from epress_node.services.mailer import LogMailer
from epress_node.services.publications import PublicationService
from epress_node.services.signatures import LocalAccountSigner
from epress_node.utils.hash import body_hash

TEST_DB_URL = "sqlite://"
SELF_URL = "http://test"
PEER_URL = "http://peer.example"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url=SELF_URL) as test_client:
        yield test_client


@pytest.fixture()
def mailer(app: FastAPI) -> Iterator[LogMailer]:
    """Capture outgoing mail instead of the process-wide mailer."""
    captured = LogMailer(sender="node@test")
    app.dependency_overrides[get_mailer_dep] = lambda: captured
    try:
        yield captured
    finally:
        app.dependency_overrides.pop(get_mailer_dep, None)


class FakePeers:
    """Answers federation requests with canned per-URL handlers."""

    def __init__(self) -> None:
        self.handlers: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def route(
        self,
        method: str,
        url: str,
        handler: Callable[[httpx.Request], httpx.Response] | httpx.Response,
    ) -> None:
        if isinstance(handler, httpx.Response):
            canned = handler
            self.handlers[(method, url)] = lambda request: httpx.Response(
                canned.status_code, headers=canned.headers, content=canned.content
            )
        else:
            self.handlers[(method, url)] = handler

    def profile(self, signer_address: str, url: str = PEER_URL, **extra: Any) -> None:
        document = {
            "address": signer_address,
            "url": url,
            "title": extra.get("title", "Peer"),
            "description": extra.get("description", "A peer node"),
            "profile_version": extra.get("profile_version", 0),
        }
        self.route("GET", f"{url}/ewp/profile", httpx.Response(200, json=document))

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and str(request.url.copy_with(query=None)) == url
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url.copy_with(query=None)))
        handler = self.handlers.get(key)
        if handler is None:
            return httpx.Response(404, json={"detail": "not routed"})
        return handler(request)


@pytest.fixture()
def peers() -> FakePeers:
    return FakePeers()


@pytest.fixture()
def federation(app: FastAPI, peers: FakePeers) -> Iterator[FederationClient]:
    federation_client = FederationClient(transport=httpx.MockTransport(peers))
    app.dependency_overrides[get_federation] = lambda: federation_client
    try:
        yield federation_client
    finally:
        app.dependency_overrides.pop(get_federation, None)


@pytest.fixture()
def owner_signer() -> LocalAccountSigner:
    return LocalAccountSigner.create()


@pytest.fixture()
def peer_signer() -> LocalAccountSigner:
    return LocalAccountSigner.create()


@pytest.fixture()
def commenter() -> LocalAccountSigner:
    return LocalAccountSigner.create()


@pytest.fixture()
def self_node(db_session: Session, owner_signer: LocalAccountSigner) -> Node:
    node = Node(
        address=owner_signer.address,
        url=SELF_URL,
        title="Test Node",
        description="Personal publishing node",
        is_self=True,
        profile_version=0,
    )
    db_session.add(node)
    db_session.commit()
    return node


@pytest.fixture()
def peer_node(db_session: Session, peer_signer: LocalAccountSigner) -> Node:
    node = Node(
        address=peer_signer.address,
        url=PEER_URL,
        title="Peer",
        description="A peer node",
        is_self=False,
        profile_version=0,
    )
    db_session.add(node)
    db_session.commit()
    return node


@pytest.fixture()
def auth_headers(self_node: Node) -> dict[str, str]:
    return {"Authorization": f"Bearer {tokens.issue_session(self_node.address)}"}


@pytest.fixture()
def publication(db_session: Session, self_node: Node) -> Publication:
    return PublicationService(db_session).create_post("# Hello\n\nFirst post.")


@pytest.fixture()
def signed_publication(
    db_session: Session, publication: Publication, owner_signer: LocalAccountSigner
) -> Publication:
    statement = PublicationService.statement_for(publication)
    return PublicationService(db_session).sign(
        publication.id, owner_signer.sign_statement(statement)
    )


@pytest.fixture()
def sign_comment(self_node: Node) -> Callable[..., dict[str, Any]]:
    """Return a factory building the ETHEREUM ``auth`` block for a comment."""

    def _sign(
        signer: LocalAccountSigner,
        publication_id: int,
        body: str,
        *,
        timestamp: int | None = None,
        node_address: str | None = None,
    ) -> dict[str, Any]:
        stamp = int(time.time()) if timestamp is None else timestamp
        statement = statements.comment_signature(
            node_address or self_node.address,
            signer.address,
            publication_id,
            body_hash(body),
            stamp,
        )
        return {
            "type": "ETHEREUM",
            "address": signer.address,
            "signature": signer.sign_statement(statement),
            "timestamp": stamp,
        }

    return _sign
