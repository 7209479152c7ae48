"""Unit tests for the ORM models defined in epress_node.models.

These tests verify basic mapping correctness: table names, composite
primary keys, and the derived properties the services rely on.
"""

from sqlalchemy.orm import Session, attributes

from epress_node import models
from epress_node.models import Comment, Node, Publication
from epress_node.services.node_settings import (
    ALLOW_COMMENT,
    DEFAULTS,
    all_settings,
    get_flag,
    get_self_node,
    set_setting,
)


def test_table_names():
    """Model classes expose expected __tablename__ values."""
    assert models.Node.__tablename__ == "node"
    assert models.Content.__tablename__ == "content"
    assert models.Publication.__tablename__ == "publication"
    assert models.Comment.__tablename__ == "comment"
    assert models.Connection.__tablename__ == "connection"
    assert models.Setting.__tablename__ == "setting"
    assert models.Hashtag.__tablename__ == "hashtag"
    assert models.PublicationHashtag.__tablename__ == "publication_hashtag"


def test_connection_composite_primary_key():
    """A connection is identified by its (follower, followee) pair."""
    pk_names = {c.name for c in models.Connection.__table__.primary_key}
    assert pk_names == {"follower_address", "followee_address"}


def test_content_is_keyed_by_hash():
    pk_names = {c.name for c in models.Content.__table__.primary_key}
    assert pk_names == {"content_hash"}


def test_relationships_are_instrumented():
    assert isinstance(Publication.content, attributes.InstrumentedAttribute)
    assert isinstance(Publication.author, attributes.InstrumentedAttribute)


def test_publication_is_signed_follows_signature():
    assert Publication(signature=None).is_signed is False
    assert Publication(signature="0x" + "ab" * 65).is_signed is True


def test_comment_terminal_states():
    assert Comment(status="PENDING").is_terminal is False
    for status in ("CONFIRMED", "REJECTED", "EXPIRED"):
        assert Comment(status=status).is_terminal is True


def test_settings_fall_back_to_defaults(db_session: Session):
    assert get_flag(db_session, ALLOW_COMMENT) is True
    set_setting(db_session, ALLOW_COMMENT, False)
    db_session.commit()
    assert get_flag(db_session, ALLOW_COMMENT) is False
    values = all_settings(db_session)
    assert set(DEFAULTS) <= set(values)
    assert values[ALLOW_COMMENT] == "false"


def test_self_node_lookup(db_session: Session, self_node: Node, peer_node: Node):
    assert get_self_node(db_session).address == self_node.address
