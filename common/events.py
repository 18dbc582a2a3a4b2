"""Signed record shapes: server list, relay list and authorization events."""

import base64
import hashlib
import json
import time
from typing import Dict, List, Optional

from common.constants import (
    AUTH_EVENT_KIND,
    AUTH_TOKEN_LIFETIME_SECONDS,
    RELAY_LIST_KIND,
    SERVER_LIST_KIND,
)
from common.types import ServerList


def serialize_for_id(event: dict) -> bytes:
    """Canonical serialization used to derive an event id."""
    payload = [
        0,
        event["pubkey"],
        event["created_at"],
        event["kind"],
        event["tags"],
        event["content"],
    ]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_event_id(event: dict) -> str:
    return hashlib.sha256(serialize_for_id(event)).hexdigest()


def _unsigned(kind: int, owner: str, tags: List[List[str]], content: str = "",
              created_at: Optional[int] = None) -> dict:
    event = {
        "kind": kind,
        "pubkey": owner,
        "created_at": int(created_at if created_at is not None else time.time()),
        "tags": tags,
        "content": content,
    }
    event["id"] = compute_event_id(event)
    return event


def build_server_list_event(servers, owner: str, created_at: Optional[int] = None) -> dict:
    """
    Build the unsigned replaceable record holding an owner's server list.

    Args:
        servers: Ordered server URLs, primary first
        owner: Owner public key (hex)
        created_at: Optional timestamp, defaults to now

    Returns:
        Unsigned event dict with an id
    """
    tags = [["server", url] for url in servers]
    return _unsigned(SERVER_LIST_KIND, owner, tags, created_at=created_at)


def parse_server_list_event(event: dict) -> ServerList:
    """
    Turn a server list record into a ServerList.

    Duplicate server tags keep their first position.

    Raises:
        ValueError: If the event is not a server list record
    """
    if event.get("kind") != SERVER_LIST_KIND:
        raise ValueError(f"Expected kind {SERVER_LIST_KIND}, got {event.get('kind')}")

    servers: List[str] = []
    for tag in event.get("tags", []):
        if len(tag) >= 2 and tag[0] == "server" and tag[1]:
            url = tag[1].rstrip("/")
            if url not in servers:
                servers.append(url)

    return ServerList(
        owner=event["pubkey"],
        servers=tuple(servers),
        updated_at=int(event.get("created_at", 0)),
    )


def parse_relay_list_event(event: dict) -> Dict[str, Dict[str, bool]]:
    """
    Parse an owner's declared relay list.

    A relay tag without a marker is both readable and writable; a "read" or
    "write" marker restricts it to that direction.

    Returns:
        Mapping of relay URL to {"read": bool, "write": bool}
    """
    if event.get("kind") != RELAY_LIST_KIND:
        raise ValueError(f"Expected kind {RELAY_LIST_KIND}, got {event.get('kind')}")

    relays: Dict[str, Dict[str, bool]] = {}
    for tag in event.get("tags", []):
        if len(tag) < 2 or tag[0] != "r" or not tag[1]:
            continue
        marker = tag[2] if len(tag) > 2 else None
        relays[tag[1]] = {
            "read": marker in (None, "read"),
            "write": marker in (None, "write"),
        }
    return relays


def build_auth_event(
    owner: str,
    action: str,
    server: str,
    content_hash: Optional[str] = None,
    lifetime: int = AUTH_TOKEN_LIFETIME_SECONDS,
    description: Optional[str] = None,
) -> dict:
    """
    Build an unsigned authorization record scoped to one action on one server.

    Args:
        owner: Owner public key
        action: One of "upload", "delete", "list", "get"
        server: Server URL the record is valid for
        content_hash: Blob the action applies to, if any
        lifetime: Seconds until the record expires

    Returns:
        Unsigned event dict with an id
    """
    now = int(time.time())
    tags = [["t", action]]
    if content_hash:
        tags.append(["x", content_hash])
    tags.append(["server", server])
    tags.append(["expiration", str(now + lifetime)])
    content = description or f"{action.capitalize()} {content_hash[:8] if content_hash else 'blobs'}"
    return _unsigned(AUTH_EVENT_KIND, owner, tags, content=content, created_at=now)


def encode_auth_header(signed_event: dict) -> str:
    """Encode a signed authorization record as an Authorization header value."""
    raw = json.dumps(signed_event, separators=(",", ":")).encode("utf-8")
    return "Nostr " + base64.b64encode(raw).decode("ascii")
