"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal, Optional


@dataclass(frozen=True)
class ServersCommand:
    """Show the server list."""

    command: Literal["servers"] = "servers"


@dataclass(frozen=True)
class AddServerCommand:
    """Append a server to the list."""

    url: str
    command: Literal["add-server"] = "add-server"


@dataclass(frozen=True)
class RemoveServerCommand:
    """Remove a server from the list."""

    url: str
    command: Literal["remove-server"] = "remove-server"


@dataclass(frozen=True)
class ReorderCommand:
    """Apply a new server priority order."""

    order: tuple[str, ...]
    command: Literal["reorder"] = "reorder"


@dataclass(frozen=True)
class UploadCommand:
    """Upload a local file."""

    path: str
    mime_type: Optional[str] = None
    command: Literal["upload"] = "upload"


@dataclass(frozen=True)
class ListCommand:
    """List cached media with optional search, kind filter and sort order."""

    search: str = ""
    kind: str = "all"
    sort: str = "newest"
    command: Literal["list"] = "list"


@dataclass(frozen=True)
class DeleteCommand:
    """Delete a blob by hash or hash prefix."""

    hash_prefix: str
    command: Literal["delete"] = "delete"


@dataclass(frozen=True)
class MirrorCommand:
    """Mirror a blob to explicit targets, or to every server missing it."""

    hash_prefix: str
    targets: tuple[str, ...] = ()
    command: Literal["mirror"] = "mirror"


@dataclass(frozen=True)
class CheckCommand:
    """Probe servers for a blob."""

    hash_prefix: str
    command: Literal["check"] = "check"


@dataclass(frozen=True)
class RefreshCommand:
    """Force a listing round."""

    command: Literal["refresh"] = "refresh"


@dataclass(frozen=True)
class WhoamiCommand:
    """Show identity and relay settings."""

    command: Literal["whoami"] = "whoami"


@dataclass(frozen=True)
class SetOwnerCommand:
    """Set the owner public key."""

    pubkey: str
    command: Literal["set-owner"] = "set-owner"


CommandRequest = (
    ServersCommand
    | AddServerCommand
    | RemoveServerCommand
    | ReorderCommand
    | UploadCommand
    | ListCommand
    | DeleteCommand
    | MirrorCommand
    | CheckCommand
    | RefreshCommand
    | WhoamiCommand
    | SetOwnerCommand
)
