"""Owner's ordered storage server list: discovery, validation, mutation, persistence."""

import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urlparse

from common.constants import LOCAL_HOSTS, RELAY_LIST_KIND, SERVER_LIST_KIND
from common.events import build_server_list_event, parse_relay_list_event, parse_server_list_event
from common.exceptions import TotalFailure, ValidationError
from common.logging_config import get_logger
from common.types import ServerList, ValidationResult
from orchestrator.config import ALLOW_LOCAL_HTTP, DEFAULT_RELAYS, DISCOVERY_TIMEOUT_SECONDS
from orchestrator.discovery import Discovery
from orchestrator.signer import Signer

logger = get_logger(__name__)


def normalize_server_url(url: str) -> str:
    return url.strip().rstrip("/")


class ServerListStore:
    """
    Owns the server list record: the only component that reads or writes it.

    Every edit builds a new ServerList, signs the replaceable record and
    publishes it to the publish targets.
    """

    def __init__(
        self,
        signer: Signer,
        discovery: Discovery,
        default_relays: Sequence[str] = DEFAULT_RELAYS,
        timeout: float = DISCOVERY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        allow_local_http: bool = ALLOW_LOCAL_HTTP,
    ):
        self.signer = signer
        self.discovery = discovery
        self.timeout = timeout
        self.allow_local_http = allow_local_http
        self._clock = clock
        self._default_relays: List[str] = list(dict.fromkeys(default_relays))
        self._publish_relays: List[str] = []

    @property
    def default_relays(self) -> List[str]:
        return list(self._default_relays)

    @property
    def publish_relays(self) -> List[str]:
        """Relays used to persist the list; falls back to the default relays."""
        return list(self._publish_relays or self._default_relays)

    def set_publish_targets(self, urls: Iterable[str]) -> None:
        self._publish_relays = list(dict.fromkeys(urls))
        logger.info(f"Publish targets set to {len(self._publish_relays)} relay(s)")

    async def _query(self, relays: Sequence[str], filter: dict) -> List[dict]:
        if not relays:
            return []
        try:
            return await self.discovery.query(relays, filter, self.timeout)
        except Exception as e:
            logger.warning(f"Discovery query failed for kinds={filter.get('kinds')}: {e}")
            return []

    @staticmethod
    def _newest(events: List[dict], owner: str, kind: int) -> Optional[dict]:
        candidates = [e for e in events if e.get("kind") == kind and e.get("pubkey") == owner]
        if not candidates:
            return None
        return max(candidates, key=lambda e: e.get("created_at", 0))

    async def fetch_relay_list(self, owner: str) -> Optional[Dict[str, Dict[str, bool]]]:
        """
        Fetch the owner's declared relays from the default relays.

        Returns:
            Mapping of relay URL to read/write flags, or None if not found
        """
        events = await self._query(
            self._default_relays, {"kinds": [RELAY_LIST_KIND], "authors": [owner], "limit": 1}
        )
        latest = self._newest(events, owner, RELAY_LIST_KIND)
        if latest is None:
            return None
        return parse_relay_list_event(latest)

    async def resolve(self, owner: str) -> Optional[ServerList]:
        """
        Find the owner's most recent server list.

        Looks on the default relays first, then on the owner's own declared
        relays. Timeouts and discovery errors count as "nothing found".

        Returns:
            Newest ServerList by updated_at, or None
        """
        server_filter = {"kinds": [SERVER_LIST_KIND], "authors": [owner], "limit": 1}

        events = await self._query(self._default_relays, server_filter)
        if not self._newest(events, owner, SERVER_LIST_KIND):
            logger.info(f"No server list for {owner[:8]} on default relays, checking owner's relay list")
            relay_list = await self.fetch_relay_list(owner)
            if relay_list:
                logger.info(f"Found owner relay list with {len(relay_list)} relay(s), checking for server list")
                events = events + await self._query(list(relay_list), server_filter)

        latest = self._newest(events, owner, SERVER_LIST_KIND)
        if latest is None:
            logger.info(f"No server list found for {owner[:8]}")
            return None

        server_list = parse_server_list_event(latest)
        logger.info(f"Resolved server list for {owner[:8]}: {len(server_list.servers)} server(s)")
        return server_list

    @staticmethod
    def validate(url: str, allow_local_http: bool = False) -> ValidationResult:
        """
        Check that url is usable as a storage server.

        https is required. Plain http to a local host passes only when
        allow_local_http is set.
        """
        if not url or not url.strip():
            return ValidationResult(False, "URL is empty")
        try:
            parsed = urlparse(url.strip())
            hostname = parsed.hostname
        except ValueError as e:
            return ValidationResult(False, f"Malformed URL: {e}")

        if parsed.scheme not in ("https", "http"):
            return ValidationResult(False, f"Unsupported scheme '{parsed.scheme or '(none)'}', use https")
        if not hostname:
            return ValidationResult(False, "URL has no host")
        if parsed.scheme == "http" and not (allow_local_http and hostname in LOCAL_HOSTS):
            return ValidationResult(False, "Insecure scheme 'http', use https")
        if parsed.username or parsed.password:
            return ValidationResult(False, "URL must not embed credentials")
        if parsed.query or parsed.fragment:
            return ValidationResult(False, "URL must not contain a query or fragment")
        return ValidationResult(True)

    def with_servers(self, server_list: ServerList, new_servers: Iterable[str]) -> ServerList:
        """
        Build a new list with new_servers, leaving server_list untouched.

        Duplicates keep their first position. updated_at always moves forward
        so the replacement record supersedes the previous one.
        """
        servers = tuple(dict.fromkeys(normalize_server_url(u) for u in new_servers))
        updated_at = max(int(self._clock()), server_list.updated_at + 1)
        return ServerList(owner=server_list.owner, servers=servers, updated_at=updated_at)

    async def _persist(self, server_list: ServerList) -> ServerList:
        unsigned = build_server_list_event(server_list.servers, server_list.owner, created_at=server_list.updated_at)
        signed = await self.signer.sign(unsigned)

        relays = self.publish_relays
        acks = await self.discovery.publish(relays, signed, self.timeout)
        if not any(ack.accepted for ack in acks.values()):
            reasons = {relay: (ack.message or "rejected") for relay, ack in acks.items()}
            raise TotalFailure("publish server list", reasons)

        logger.info(
            f"Saved server list for {server_list.owner[:8]}: {len(server_list.servers)} server(s), "
            f"accepted by {sum(a.accepted for a in acks.values())}/{len(relays)} relay(s)"
        )
        return parse_server_list_event(signed)

    async def save(self, owner: str, servers: Sequence[str]) -> ServerList:
        """
        Create (or replace) the owner's list from scratch.

        Invalid URLs are dropped; at least one must be valid.

        Raises:
            ValidationError: If no URL is valid
        """
        valid = [u for u in servers if self.validate(u, self.allow_local_http)]
        if not valid:
            raise ValidationError("No valid server URLs provided")
        return await self._persist(self.with_servers(ServerList(owner=owner), valid))

    async def add(self, server_list: ServerList, url: str) -> ServerList:
        """
        Append a server at lowest priority.

        Raises:
            ValidationError: If url is invalid or already in the list
        """
        result = self.validate(url, self.allow_local_http)
        if not result:
            raise ValidationError(f"Invalid server URL '{url}': {result.reason}")
        url = normalize_server_url(url)
        if url in server_list.servers:
            raise ValidationError(f"Server already in list: {url}")
        return await self._persist(self.with_servers(server_list, server_list.servers + (url,)))

    async def remove(self, server_list: ServerList, url: str) -> ServerList:
        url = normalize_server_url(url)
        return await self._persist(self.with_servers(server_list, (s for s in server_list.servers if s != url)))

    async def reorder(self, server_list: ServerList, order: Sequence[str]) -> ServerList:
        """
        Apply a caller-supplied order.

        URLs not already in the list, and invalid URLs, are dropped silently so
        a stale client view cannot re-add or break anything.
        """
        current = set(server_list.servers)
        kept = [
            normalize_server_url(u)
            for u in order
            if normalize_server_url(u) in current and self.validate(u, self.allow_local_http)
        ]
        return await self._persist(self.with_servers(server_list, kept))

    async def publish(self, server_list: ServerList) -> ServerList:
        """Re-publish an existing list unchanged (same servers, same updated_at)."""
        return await self._persist(server_list)

    @staticmethod
    def derive_write_relays(relay_list: Dict[str, Dict[str, bool]]) -> Set[str]:
        """Relays the owner allows writing to; a missing write flag counts as writable."""
        return {url for url, flags in relay_list.items() if flags.get("write", True) is not False}

    async def set_publish_targets_from_owner(self, owner: str) -> bool:
        """
        Use the owner's writable relays as publish targets.

        Returns:
            True if targets were set, False if defaults remain in use
        """
        relay_list = await self.fetch_relay_list(owner)
        if relay_list:
            write_relays = self.derive_write_relays(relay_list)
            if write_relays:
                self.set_publish_targets(sorted(write_relays))
                return True
        logger.info(f"No writable relays declared by {owner[:8]}, publishing to default relays")
        return False
