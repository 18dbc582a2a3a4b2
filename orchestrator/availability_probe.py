"""Per-blob existence checks across storage servers."""

import asyncio
import time
from typing import Callable, Dict, Iterable, List, Sequence

from common.logging_config import get_logger
from common.types import Blob, ServerAvailability
from orchestrator.config import REQUEST_TIMEOUT_SECONDS
from orchestrator.storage_client import StorageClient

logger = get_logger(__name__)


class AvailabilityProbe:
    """
    Checks which servers currently serve a blob.

    A check that times out or errors counts as not present, so redundancy is
    never claimed without confirmation.
    """

    def __init__(
        self,
        storage: StorageClient,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.timeout = timeout
        self._clock = clock

    async def _check_one(self, server: str, content_hash: str) -> bool:
        try:
            return await asyncio.wait_for(self.storage.has_blob(server, content_hash), self.timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Availability check timed out [server={server}, hash={content_hash[:8]}]")
            return False
        except Exception as e:
            logger.debug(f"Availability check failed [server={server}, hash={content_hash[:8]}]: {e}")
            return False

    async def check(self, content_hash: str, servers: Sequence[str]) -> Dict[str, bool]:
        """
        Check presence of a blob on each candidate server concurrently.

        Args:
            content_hash: Blob to look for
            servers: Candidate server URLs

        Returns:
            Mapping of server URL to presence, in candidate order
        """
        servers = list(dict.fromkeys(servers))
        results = await asyncio.gather(*(self._check_one(s, content_hash) for s in servers))
        presence = dict(zip(servers, results))
        logger.debug(
            f"Availability of {content_hash[:8]}: {sum(presence.values())}/{len(presence)} server(s)"
        )
        return presence

    async def mirror_candidates(self, content_hash: str, servers: Sequence[str]) -> List[str]:
        """Servers in the list that do not report holding the blob."""
        presence = await self.check(content_hash, servers)
        return [server for server, present in presence.items() if not present]

    async def refresh(self, blob: Blob, servers: Sequence[str]) -> Blob:
        """Return blob with a freshly checked availability snapshot."""
        presence = await self.check(blob.hash, servers)
        checked_at = self._clock()
        return blob.with_availability(
            ServerAvailability(server=server, present=present, checked_at=checked_at)
            for server, present in presence.items()
        )

    @staticmethod
    def redundancy(blobs: Iterable[Blob]) -> float:
        """
        Fraction of blobs confirmed present on more than one server.

        Returns:
            Value in [0.0, 1.0]; 0.0 for an empty collection
        """
        blobs = list(blobs)
        if not blobs:
            return 0.0
        redundant = sum(1 for blob in blobs if len(blob.present_on()) > 1)
        return redundant / len(blobs)
