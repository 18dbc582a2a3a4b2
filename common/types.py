"""Shared data type definitions (ServerList, Blob, CacheEntry, results)."""

import hashlib
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple

from common.constants import CONTENT_HASH_LENGTH

_HASH_RE = re.compile(rf"^[0-9a-f]{{{CONTENT_HASH_LENGTH}}}$")


def hash_content(data: bytes) -> str:
    """
    Compute the content hash of a blob.

    Args:
        data: Raw blob bytes

    Returns:
        Lowercase hex SHA-256 digest
    """
    return hashlib.sha256(data).hexdigest()


def is_content_hash(value: str) -> bool:
    """Check that value looks like a content hash (64 lowercase hex chars)."""
    return bool(value) and bool(_HASH_RE.match(value))


@dataclass(frozen=True)
class ServerList:
    """
    Ordered list of storage servers owned by one identity.

    Index 0 is the primary server. The value is immutable; edits go through
    ServerListStore.with_servers which returns a new instance.
    """
    owner: str
    servers: Tuple[str, ...] = ()
    updated_at: int = 0

    def __post_init__(self):
        if len(set(self.servers)) != len(self.servers):
            raise ValueError(f"Server list for {self.owner[:8]} contains duplicate URLs")

    @property
    def primary(self) -> Optional[str]:
        return self.servers[0] if self.servers else None

    @property
    def mirrors(self) -> Tuple[str, ...]:
        return self.servers[1:]

    def is_empty(self) -> bool:
        return not self.servers


@dataclass(frozen=True)
class ServerAvailability:
    """Presence of a blob on one server at the time it was checked."""
    server: str
    present: bool
    checked_at: float


@dataclass(frozen=True)
class BlobMetadata:
    """Optional client-side metadata attached to a blob."""
    filename: Optional[str] = None


@dataclass(frozen=True)
class Blob:
    """
    A stored blob as seen across the user's servers.

    availability is a best-effort snapshot, not authoritative truth.
    """
    hash: str
    size: int
    mime_type: str
    uploaded_at: int
    url: str = ""
    metadata: Optional[BlobMetadata] = None
    availability: Tuple[ServerAvailability, ...] = ()

    @property
    def filename(self) -> Optional[str]:
        return self.metadata.filename if self.metadata else None

    def present_on(self) -> Tuple[str, ...]:
        """Servers that reported holding this blob, in snapshot order."""
        return tuple(a.server for a in self.availability if a.present)

    def with_availability(self, availability) -> "Blob":
        return replace(self, availability=tuple(availability))


@dataclass(frozen=True)
class CacheEntry:
    """
    Merged blob view built by one successful listing round.

    Attributes:
        blobs: Mapping of content hash to Blob
        fingerprint: Fingerprint of the server list the entry was built from
        fetched_at: Monotonic-clock timestamp of the listing
        unreachable: Servers that failed during the listing
    """
    blobs: Mapping[str, Blob]
    fingerprint: str
    fetched_at: float
    unreachable: Tuple[str, ...] = ()

    @property
    def partial(self) -> bool:
        return bool(self.unreachable)

    def without(self, content_hash: str) -> "CacheEntry":
        blobs = {h: b for h, b in self.blobs.items() if h != content_hash}
        return replace(self, blobs=blobs)


@dataclass(frozen=True)
class ListingResult:
    """Outcome of listing blobs across a server list."""
    blobs: Dict[str, Blob]
    reachability: Dict[str, bool]
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def unreachable(self) -> Tuple[str, ...]:
        return tuple(server for server, ok in self.reachability.items() if not ok)

    @property
    def partial(self) -> bool:
        return bool(self.unreachable)


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a delete with fallback."""
    hash: str
    server: str
    attempted: Tuple[str, ...]
    failures: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MirrorResult:
    """Outcome of mirroring one blob to one target server."""
    target: str
    success: bool
    already_present: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a server URL."""
    valid: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


@dataclass(frozen=True)
class RelayAck:
    """Per-relay outcome of publishing a record."""
    relay: str
    accepted: bool
    message: str = ""
