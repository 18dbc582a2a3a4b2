"""Context object owning one user's orchestration components."""

from typing import Dict, List, Optional, Sequence

from common.exceptions import MediaFleetError, ValidationError
from common.logging_config import get_logger
from common.types import Blob, CacheEntry, DeleteResult, MirrorResult, ServerList
from orchestrator.availability_probe import AvailabilityProbe
from orchestrator.blob_orchestrator import BlobOrchestrator
from orchestrator.config import CACHE_TTL_SECONDS, DEFAULT_RELAYS
from orchestrator.discovery import Discovery
from orchestrator.media_cache import MediaCache
from orchestrator.retry_policy import RetryPolicy
from orchestrator.server_list_store import ServerListStore
from orchestrator.signer import Signer
from orchestrator.storage_client import StorageClient

logger = get_logger(__name__)


class MediaContext:
    """
    Wires ServerListStore, BlobOrchestrator, AvailabilityProbe and MediaCache
    around injected Signer and Discovery collaborators.

    Holds the current ServerList and applies the reconciliation contract:
    blob actions go to the orchestrator first and the cache is told
    afterwards.
    """

    def __init__(
        self,
        signer: Signer,
        discovery: Discovery,
        storage: Optional[StorageClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_relays: Sequence[str] = DEFAULT_RELAYS,
        cache_ttl: float = CACHE_TTL_SECONDS,
    ):
        self.signer = signer
        self.owner = signer.pubkey
        self.storage = storage or StorageClient()
        self.probe = AvailabilityProbe(self.storage)
        self.store = ServerListStore(signer, discovery, default_relays=default_relays)
        self.orchestrator = BlobOrchestrator(signer, self.storage, probe=self.probe, retry_policy=retry_policy)
        self.cache = MediaCache(self.orchestrator, ttl=cache_ttl)
        self.server_list = ServerList(owner=self.owner)

    async def close(self) -> None:
        await self.orchestrator.wait_for_mirrors()
        await self.storage.close()

    def _use(self, server_list: ServerList) -> ServerList:
        self.server_list = server_list
        self.cache.sync(server_list)
        return server_list

    async def load_server_list(self) -> ServerList:
        """Resolve the owner's list; an owner without one gets an empty list."""
        resolved = await self.store.resolve(self.owner)
        return self._use(resolved or ServerList(owner=self.owner))

    async def save_servers(self, servers: Sequence[str]) -> ServerList:
        return self._use(await self.store.save(self.owner, servers))

    async def add_server(self, url: str) -> ServerList:
        return self._use(await self.store.add(self.server_list, url))

    async def remove_server(self, url: str) -> ServerList:
        if url.rstrip("/") not in self.server_list.servers:
            raise ValidationError(f"Server not in list: {url}")
        return self._use(await self.store.remove(self.server_list, url))

    async def reorder_servers(self, order: Sequence[str]) -> ServerList:
        return self._use(await self.store.reorder(self.server_list, order))

    async def refresh(self, force: bool = False) -> CacheEntry:
        return await self.cache.fetch(self.server_list, force=force)

    async def _reconcile(self) -> None:
        try:
            await self.cache.fetch(self.server_list, force=True)
        except MediaFleetError as e:
            logger.warning(f"Reconciling media cache failed: {e}")

    async def upload(self, data: bytes, filename: Optional[str] = None, mime_type: Optional[str] = None) -> Blob:
        blob = await self.orchestrator.upload(data, self.server_list, filename=filename, mime_type=mime_type)
        await self._reconcile()
        return blob

    async def delete(self, content_hash: str) -> DeleteResult:
        """
        Remove a blob from the view right away, then delete it remotely.

        If the remote delete fails the cache is force-refreshed before the
        error is raised, so the blob reappears only if servers still list it.
        """
        self.cache.remove_media(content_hash)
        try:
            return await self.orchestrator.delete_with_fallback(content_hash, self.server_list)
        except MediaFleetError:
            await self._reconcile()
            raise

    def find_blob(self, content_hash: str) -> Optional[Blob]:
        entry = self.cache.entry
        if entry is None:
            return None
        return entry.blobs.get(content_hash)

    async def mirror(self, content_hash: str, targets: Optional[List[str]] = None) -> Dict[str, MirrorResult]:
        """
        Mirror a cached blob from a server holding it to the servers missing it.

        Raises:
            ValidationError: If the blob is not in the view or no server holds it
        """
        blob = self.find_blob(content_hash)
        if blob is None:
            raise ValidationError(f"Blob {content_hash[:8]} is not in the media view, refresh first")

        holders = blob.present_on()
        if not holders:
            raise ValidationError(f"No server is known to hold {content_hash[:8]}")

        if targets is None:
            targets = self.orchestrator.mirror_candidates(blob, self.server_list)
        results = await self.orchestrator.mirror(content_hash, holders[0], targets, mime_type=blob.mime_type)
        await self._reconcile()
        return results

    async def check(self, content_hash: str) -> Dict[str, bool]:
        """Probe every server in the list and update the cached snapshot."""
        blob = self.find_blob(content_hash)
        if blob is None:
            return await self.probe.check(content_hash, self.server_list.servers)

        refreshed = await self.probe.refresh(blob, self.server_list.servers)
        self.cache.replace_blob(refreshed)
        return {a.server: a.present for a in refreshed.availability}
