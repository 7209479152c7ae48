# tests/test_statements.py
from __future__ import annotations

import pytest
from eth_account.messages import SignableMessage

from epress_node.errors import MalformedStatementError
from epress_node.services import statements
from epress_node.utils.hash import content_hash

ADDRESS = "0x" + "ab" * 20
OTHER_ADDRESS = "0x" + "cd" * 20
HASH = content_hash(b"hello world")


class TestBuilders:
    def test_statement_of_source_is_deterministic(self) -> None:
        first = statements.statement_of_source(HASH, ADDRESS, 1_700_000_000)
        second = statements.statement_of_source(HASH, ADDRESS, 1_700_000_000)
        assert first.digest() == second.digest()
        assert first.canonical_bytes() == second.canonical_bytes()
        assert first.canonical_bytes()[:2] == b"\x19\x01"
        assert len(first.digest()) == 32

    def test_changing_any_field_changes_the_digest(self) -> None:
        base = statements.statement_of_source(HASH, ADDRESS, 1_700_000_000)
        other_time = statements.statement_of_source(HASH, ADDRESS, 1_700_000_001)
        other_author = statements.statement_of_source(HASH, OTHER_ADDRESS, 1_700_000_000)
        other_hash = statements.statement_of_source(content_hash(b"x"), ADDRESS, 1_700_000_000)
        digests = {s.digest() for s in (base, other_time, other_author, other_hash)}
        assert len(digests) == 4

    def test_addresses_are_checksummed(self) -> None:
        statement = statements.statement_of_source(HASH, ADDRESS.upper().replace("0X", "0x"), 1)
        assert statement.message["publisherAddress"] == statements.normalize_address(ADDRESS)

    def test_uppercase_hash_is_normalized(self) -> None:
        statement = statements.statement_of_source(HASH.upper().replace("0X", "0x"), ADDRESS, 1)
        assert statement.message["contentHash"] == HASH

    def test_typed_data_shape(self) -> None:
        typed = statements.create_connection(ADDRESS, "https://a.example", "https://b.example", 5)
        payload = typed.typed_data()
        assert payload["primaryType"] == statements.CREATE_CONNECTION
        assert payload["domain"] == {"name": "epress world", "version": "1", "chainId": 1}
        assert "EIP712Domain" in payload["types"]
        assert isinstance(typed.signable(), SignableMessage)

    def test_install_statement_nests_structs(self) -> None:
        typed = statements.install(
            {"address": ADDRESS, "url": "https://me.example", "title": "Me"},
            {"defaultLanguage": "en"},
            10,
        )
        assert set(typed.types) == {"EIP712Domain", "Install", "NodeInfo", "InstallSettings"}
        assert typed.message["node"]["description"] == ""
        assert typed.message["settings"]["defaultTheme"] == ""

    @pytest.mark.parametrize(
        "build",
        [
            lambda: statements.statement_of_source("0x1234", ADDRESS, 1),
            lambda: statements.statement_of_source(HASH, "not-an-address", 1),
            lambda: statements.statement_of_source(HASH, ADDRESS, -1),
            lambda: statements.statement_of_source(HASH, ADDRESS, 2**64),
            lambda: statements.create_connection(ADDRESS, "", "https://b.example", 1),
            lambda: statements.comment_signature(ADDRESS, ADDRESS, True, HASH, 1),
        ],
    )
    def test_malformed_fields_are_rejected(self, build) -> None:
        with pytest.raises(MalformedStatementError):
            build()


class TestParsing:
    def test_round_trip_through_typed_data(self) -> None:
        original = statements.comment_signature(ADDRESS, OTHER_ADDRESS, 7, HASH, 99)
        parsed = statements.statement_from_typed_data(
            original.typed_data(), expected_kind=statements.COMMENT_SIGNATURE
        )
        assert parsed.digest() == original.digest()

    def test_client_types_are_ignored(self) -> None:
        payload = statements.delete_comment(ADDRESS, 3, OTHER_ADDRESS).typed_data()
        payload["types"] = {"DeleteComment": [{"name": "commentId", "type": "string"}]}
        parsed = statements.statement_from_typed_data(payload)
        assert parsed.types["DeleteComment"] == statements.STATEMENT_TYPES["DeleteComment"][
            "DeleteComment"
        ]

    def test_foreign_domain_is_rejected(self) -> None:
        payload = statements.delete_comment(ADDRESS, 3, OTHER_ADDRESS).typed_data()
        payload["domain"] = {"name": "another app", "version": "1", "chainId": 1}
        with pytest.raises(MalformedStatementError):
            statements.statement_from_typed_data(payload)

    def test_wrong_kind_is_rejected(self) -> None:
        payload = statements.delete_comment(ADDRESS, 3, OTHER_ADDRESS).typed_data()
        with pytest.raises(MalformedStatementError):
            statements.statement_from_typed_data(
                payload, expected_kind=statements.STATEMENT_OF_SOURCE
            )

    def test_unknown_kind_is_rejected(self) -> None:
        payload = {
            "domain": statements.default_domain(),
            "primaryType": "Mint",
            "message": {},
        }
        with pytest.raises(MalformedStatementError):
            statements.statement_from_typed_data(payload)


def test_login_message_layout() -> None:
    text = statements.login_message("https://me.example", ADDRESS, "abc", 42)
    lines = text.split("\n")
    assert lines[0] == "https://me.example wants you to sign in with your account:"
    assert lines[1] == statements.normalize_address(ADDRESS)
    assert lines[3] == "Nonce: abc"
    assert lines[4] == "Issued At: 42"
