"""Tests for signed record builders and parsers."""

import pytest

from common.constants import SERVER_LIST_KIND
from common.events import (
    build_auth_event,
    build_server_list_event,
    compute_event_id,
    encode_auth_header,
    parse_relay_list_event,
    parse_server_list_event,
    serialize_for_id,
)

from conftest import OWNER, SERVER_A, SERVER_B, decode_auth_header


def test_id_serialization_is_compact_and_ordered():
    event = {"pubkey": OWNER, "created_at": 1, "kind": 10063, "tags": [["server", SERVER_A]], "content": ""}
    assert serialize_for_id(event) == f'[0,"{OWNER}",1,10063,[["server","{SERVER_A}"]],""]'.encode()


def test_server_list_event_keeps_order():
    event = build_server_list_event([SERVER_B, SERVER_A], OWNER, created_at=500)

    assert event["kind"] == SERVER_LIST_KIND
    assert event["tags"] == [["server", SERVER_B], ["server", SERVER_A]]
    assert event["id"] == compute_event_id(event)


def test_parse_server_list_dedupes_and_normalizes():
    event = {
        "kind": SERVER_LIST_KIND,
        "pubkey": OWNER,
        "created_at": 900,
        "content": "",
        "tags": [["server", SERVER_A + "/"], ["server", SERVER_A], ["relay", "wss://x"], ["server", SERVER_B]],
    }

    server_list = parse_server_list_event(event)

    assert server_list.servers == (SERVER_A, SERVER_B)
    assert server_list.updated_at == 900
    assert server_list.primary == SERVER_A
    assert server_list.mirrors == (SERVER_B,)


def test_parse_server_list_rejects_other_kinds():
    with pytest.raises(ValueError):
        parse_server_list_event({"kind": 1, "pubkey": OWNER, "tags": []})


def test_parse_relay_list_markers():
    event = {
        "kind": 10002,
        "pubkey": OWNER,
        "tags": [["r", "wss://both"], ["r", "wss://r", "read"], ["r", "wss://w", "write"], ["p", "x"]],
    }

    assert parse_relay_list_event(event) == {
        "wss://both": {"read": True, "write": True},
        "wss://r": {"read": True, "write": False},
        "wss://w": {"read": False, "write": True},
    }


def test_auth_event_without_hash_has_no_x_tag():
    event = build_auth_event(OWNER, "list", SERVER_A)
    assert [t[0] for t in event["tags"]] == ["t", "server", "expiration"]


def test_auth_header_roundtrip():
    signed = {"id": "1", "sig": "2", "kind": 24242}
    header = encode_auth_header(signed)

    assert header.startswith("Nostr ")
    assert decode_auth_header(header) == signed