"""Shared pytest fixtures for all tests."""

import base64
import hashlib
import json
import time
from collections import defaultdict
from typing import Dict, List, Optional, Set

import httpx
import pytest

from cli.config import Config
from common.events import compute_event_id
from common.types import Blob, BlobMetadata, RelayAck, ServerAvailability, ServerList
from orchestrator.blob_orchestrator import BlobOrchestrator
from orchestrator.context import MediaContext
from orchestrator.discovery import Discovery
from orchestrator.retry_policy import RetryPolicy
from orchestrator.signer import ExtensionSigner
from orchestrator.storage_client import StorageClient

OWNER = "3bf0c63fcb93463407af97a5e5ee64fa883d107ef9e558472c4eb9aaaefa459d"
OTHER_OWNER = "82341f882b6eabcd2ba7f1ef90aad961cf074af15b9ef44a09f9d2a8fbfbe6a2"

SERVER_A = "https://a.example"
SERVER_B = "https://b.example"
SERVER_C = "https://c.example"


def decode_auth_header(header: str) -> dict:
    """Decode an Authorization: Nostr header back into the signed record."""
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "nostr" or not value:
        raise ValueError("Not a Nostr authorization header")
    return json.loads(base64.b64decode(value))


def tag_value(event: dict, name: str) -> Optional[str]:
    for tag in event.get("tags", []):
        if len(tag) >= 2 and tag[0] == name:
            return tag[1]
    return None


def fake_sign(unsigned: dict) -> dict:
    """Sign by recomputing the id and attaching a dummy signature."""
    return {**unsigned, "id": compute_event_id(unsigned), "sig": "f" * 128}


def make_blob(data: bytes, servers=(SERVER_A,), mime_type: str = "image/png",
              uploaded_at: int = 1700000000, filename: Optional[str] = None) -> Blob:
    """Blob snapshot present on servers."""
    content_hash = hashlib.sha256(data).hexdigest()
    return Blob(
        hash=content_hash,
        size=len(data),
        mime_type=mime_type,
        uploaded_at=uploaded_at,
        url=f"{servers[0]}/{content_hash}" if servers else "",
        metadata=BlobMetadata(filename=filename) if filename else None,
        availability=tuple(ServerAvailability(server=s, present=True, checked_at=0.0) for s in servers),
    )


class FakeBlobServer:
    """
    In-memory storage server speaking the upload/get/head/delete/list surface.

    Scripted failures are consumed one per request, before normal handling.
    """

    def __init__(self, url: str):
        self.url = url
        self.blobs: Dict[str, dict] = {}
        self.requests: List[tuple] = []
        self.failures: List[int] = []
        self.down = False
        self.reject_auth = False
        self.timeout_methods: Set[str] = set()

    def store(self, data: bytes, mime_type: str = "application/octet-stream",
              uploaded: int = 1700000000, name: Optional[str] = None) -> str:
        content_hash = hashlib.sha256(data).hexdigest()
        self.blobs[content_hash] = {"data": data, "type": mime_type, "uploaded": uploaded, "name": name}
        return content_hash

    def fail_next(self, *statuses: int) -> None:
        self.failures.extend(statuses)

    def descriptor(self, content_hash: str) -> dict:
        blob = self.blobs[content_hash]
        payload = {
            "url": f"{self.url}/{content_hash}",
            "sha256": content_hash,
            "size": len(blob["data"]),
            "type": blob["type"],
            "uploaded": blob["uploaded"],
        }
        if blob["name"]:
            payload["name"] = blob["name"]
        return payload

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.requests if m == method)

    def _authorized(self, request: httpx.Request, action: str) -> bool:
        header = request.headers.get("Authorization")
        if not header or self.reject_auth:
            return False
        event = decode_auth_header(header)
        return tag_value(event, "t") == action and tag_value(event, "server") == self.url

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))

        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if request.method in self.timeout_methods:
            raise httpx.ReadTimeout("read timed out", request=request)
        if self.failures:
            status = self.failures.pop(0)
            headers = {"Retry-After": "0"} if status == 429 else {}
            return httpx.Response(status, headers=headers)

        if request.method == "PUT" and path == "/upload":
            if not self._authorized(request, "upload"):
                return httpx.Response(401)
            content_hash = self.store(
                request.content,
                request.headers.get("Content-Type", "application/octet-stream"),
                uploaded=int(time.time()),
            )
            return httpx.Response(200, json=self.descriptor(content_hash))

        if request.method == "GET" and path.startswith("/list/"):
            return httpx.Response(200, json=[self.descriptor(h) for h in self.blobs])

        content_hash = path.lstrip("/").split(".", 1)[0]
        if request.method == "DELETE":
            if not self._authorized(request, "delete"):
                return httpx.Response(401)
            if self.blobs.pop(content_hash, None) is None:
                return httpx.Response(404)
            return httpx.Response(200)

        if content_hash not in self.blobs:
            return httpx.Response(404)
        if request.method == "HEAD":
            return httpx.Response(200)
        if request.method == "GET":
            return httpx.Response(200, content=self.blobs[content_hash]["data"])
        return httpx.Response(405)


class FakeNetwork:
    """Routes MockTransport requests to FakeBlobServers by host."""

    def __init__(self):
        self.servers: Dict[str, FakeBlobServer] = {}

    def add(self, url: str) -> FakeBlobServer:
        server = FakeBlobServer(url)
        self.servers[httpx.URL(url).host] = server
        return server

    def __getitem__(self, url: str) -> FakeBlobServer:
        return self.servers[httpx.URL(url).host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        server = self.servers.get(request.url.host)
        if server is None:
            raise httpx.ConnectError(f"unknown host {request.url.host}", request=request)
        return server.handle(request)


def _matches(event: dict, filter: dict) -> bool:
    if "kinds" in filter and event.get("kind") not in filter["kinds"]:
        return False
    if "authors" in filter and event.get("pubkey") not in filter["authors"]:
        return False
    return True


class InMemoryDiscovery(Discovery):
    """Relay discovery backed by a dict of relay URL to stored records."""

    def __init__(self):
        self.records: Dict[str, List[dict]] = defaultdict(list)
        self.queries: List[tuple] = []
        self.published: List[tuple] = []
        self.rejecting = set()
        self.failing = False

    def add(self, relay: str, event: dict) -> None:
        self.records[relay].append(event)

    async def query(self, relays, filter, timeout=None):
        self.queries.append((list(relays), filter))
        if self.failing:
            raise ConnectionError("relays unreachable")
        return [e for relay in relays for e in self.records.get(relay, []) if _matches(e, filter)]

    async def publish(self, relays, event, timeout=None):
        self.published.append((list(relays), event))
        acks = {}
        for relay in relays:
            if relay in self.rejecting:
                acks[relay] = RelayAck(relay=relay, accepted=False, message="blocked: not allowed")
            else:
                self.records[relay].append(event)
                acks[relay] = RelayAck(relay=relay, accepted=True)
        return acks


class RecordingSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Returns:
        Path to temporary .mediafleet directory
    """
    config_dir = tmp_path / '.mediafleet'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """Config instance backed by a temp config file."""
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample image file for upload tests.

    Returns:
        Path to sample file
    """
    file_path = tmp_path / 'cat.png'
    file_path.write_bytes(b'\x89PNG sample content for testing')
    return file_path


@pytest.fixture
def signer():
    return ExtensionSigner(OWNER, fake_sign)


@pytest.fixture
def network():
    """Three reachable fake storage servers."""
    net = FakeNetwork()
    for url in (SERVER_A, SERVER_B, SERVER_C):
        net.add(url)
    return net


@pytest.fixture
def storage(network):
    """StorageClient whose requests are served by the fake network."""
    return StorageClient(client=httpx.AsyncClient(transport=httpx.MockTransport(network.handler)))


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def retry_policy(sleeper):
    return RetryPolicy(max_attempts=3, base_delay=0.01, sleep=sleeper, jitter=lambda: 0.5)


@pytest.fixture
def orchestrator(signer, storage, retry_policy):
    return BlobOrchestrator(signer, storage, retry_policy=retry_policy)


@pytest.fixture
def server_list():
    return ServerList(owner=OWNER, servers=(SERVER_A, SERVER_B, SERVER_C), updated_at=1700000000)


@pytest.fixture
def discovery():
    return InMemoryDiscovery()


@pytest.fixture
def context(signer, discovery, storage, retry_policy, server_list):
    """MediaContext wired to fakes, already holding the three-server list."""
    ctx = MediaContext(
        signer,
        discovery,
        storage=storage,
        retry_policy=retry_policy,
        default_relays=["wss://relay.one", "wss://relay.two"],
    )
    ctx.server_list = server_list
    return ctx
