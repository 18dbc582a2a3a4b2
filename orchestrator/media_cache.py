"""Client-side media cache built from merged server listings."""

import asyncio
import hashlib
import time
from enum import Enum
from typing import Callable, List, Optional, Set

from common.logging_config import get_logger
from common.types import Blob, CacheEntry, ServerList
from orchestrator.blob_orchestrator import BlobOrchestrator
from orchestrator.config import CACHE_TTL_SECONDS

logger = get_logger(__name__)


class CacheState(Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    STALE = "stale"


_TRANSITIONS = {
    CacheState.EMPTY: {CacheState.LOADING},
    CacheState.LOADING: {CacheState.READY, CacheState.STALE},
    CacheState.READY: {CacheState.LOADING, CacheState.STALE},
    CacheState.STALE: {CacheState.LOADING, CacheState.READY},
}


def fingerprint(server_list: ServerList) -> str:
    """Order-sensitive digest of the server URLs."""
    return hashlib.sha256("\n".join(server_list.servers).encode("utf-8")).hexdigest()


class MediaCache:
    """
    Holds the merged blob view for one owner.

    At most one listing round is in flight at a time; concurrent fetches
    attach to it. A failed round keeps the previous entry visible and marks
    the cache STALE instead of clearing it.
    """

    def __init__(
        self,
        orchestrator: BlobOrchestrator,
        ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator = orchestrator
        self.ttl = ttl
        self._clock = clock
        self._state = CacheState.EMPTY
        self._entry: Optional[CacheEntry] = None
        self._inflight: Optional[asyncio.Future] = None
        self._removed_while_loading: Set[str] = set()
        self.last_error: Optional[BaseException] = None
        self.rounds = 0

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    @property
    def media(self) -> List[Blob]:
        """Cached blobs, newest first."""
        if self._entry is None:
            return []
        return sorted(self._entry.blobs.values(), key=lambda b: b.uploaded_at, reverse=True)

    def _transition(self, new_state: CacheState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal cache transition {self._state.value} -> {new_state.value}")
        logger.debug(f"Media cache {self._state.value} -> {new_state.value}")
        self._state = new_state

    def is_stale(self, server_list: ServerList) -> bool:
        """True if the entry was built from another server list or is older than the TTL."""
        if self._entry is None:
            return True
        if self._entry.fingerprint != fingerprint(server_list):
            return True
        return self._clock() - self._entry.fetched_at > self.ttl

    def sync(self, server_list: ServerList) -> CacheState:
        """
        Re-evaluate READY/STALE against the current server list without any
        network call.
        """
        stale = self.is_stale(server_list)
        if self._state is CacheState.READY and stale:
            self._transition(CacheState.STALE)
        elif self._state is CacheState.STALE and not stale and self.last_error is None:
            self._transition(CacheState.READY)
        return self._state

    async def fetch(self, server_list: ServerList, force: bool = False) -> CacheEntry:
        """
        Return the cached entry, refreshing it when needed.

        The listing round runs in its own task and every caller waits on it
        through a shield, so cancelling one caller only detaches that caller.

        Args:
            server_list: Current server list
            force: Refresh even if the entry is fresh

        Returns:
            The fresh entry, or the retained previous entry if refreshing failed

        Raises:
            The listing error, when a refresh fails and there is no previous entry
        """
        if self._inflight is not None:
            logger.debug("Listing already in flight, attaching")
            return await asyncio.shield(self._inflight)

        if not force and self._state is CacheState.READY and not self.is_stale(server_list):
            return self._entry

        self._transition(CacheState.LOADING)
        self._removed_while_loading = set()
        self.rounds += 1
        self._inflight = asyncio.ensure_future(self._run_round(server_list))
        return await asyncio.shield(self._inflight)

    async def _run_round(self, server_list: ServerList) -> CacheEntry:
        try:
            result = await self.orchestrator.list_blobs(server_list)
        except asyncio.CancelledError:
            self._transition(CacheState.STALE)
            raise
        except Exception as e:
            self.last_error = e
            self._transition(CacheState.STALE)
            logger.warning(f"Media refresh failed, keeping previous entry: {e}")
            if self._entry is None:
                raise
            return self._entry
        else:
            blobs = {h: b for h, b in result.blobs.items() if h not in self._removed_while_loading}
            self._entry = CacheEntry(
                blobs=blobs,
                fingerprint=fingerprint(server_list),
                fetched_at=self._clock(),
                unreachable=result.unreachable,
            )
            self.last_error = None
            self._transition(CacheState.READY)
            logger.info(
                f"Media cache refreshed: {len(blobs)} blob(s)"
                + (f", {len(result.unreachable)} server(s) unreachable" if result.partial else "")
            )
            return self._entry
        finally:
            self._inflight = None
            self._removed_while_loading = set()

    def remove_media(self, content_hash: str) -> bool:
        """
        Optimistically drop a blob from the cached view.

        The cache never puts it back by itself; if the remote delete fails the
        caller must force a refresh.

        Returns:
            True if the blob was in the cached view
        """
        if self._state is CacheState.LOADING:
            self._removed_while_loading.add(content_hash)
        if self._entry is None or content_hash not in self._entry.blobs:
            return False
        self._entry = self._entry.without(content_hash)
        logger.debug(f"Removed {content_hash[:8]} from media cache")
        return True

    def replace_blob(self, blob: Blob) -> None:
        """Swap in an updated snapshot of a blob already in the view."""
        if self._entry is not None and blob.hash in self._entry.blobs:
            blobs = dict(self._entry.blobs)
            blobs[blob.hash] = blob
            self._entry = CacheEntry(
                blobs=blobs,
                fingerprint=self._entry.fingerprint,
                fetched_at=self._entry.fetched_at,
                unreachable=self._entry.unreachable,
            )
