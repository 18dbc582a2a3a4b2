"""Upload, delete, mirror and list blobs across an ordered server list."""

import asyncio
import mimetypes
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Set
from urllib.parse import urlparse

from common.exceptions import (
    NoServersConfigured,
    PartialRedundancyFailure,
    SigningError,
    TotalFailure,
    ValidationError,
)
from common.logging_config import get_logger
from common.types import (
    Blob,
    BlobMetadata,
    DeleteResult,
    ListingResult,
    MirrorResult,
    ServerAvailability,
    ServerList,
    hash_content,
    is_content_hash,
)
from orchestrator.availability_probe import AvailabilityProbe
from orchestrator.retry_policy import RetryPolicy
from orchestrator.schemas import BlobDescriptor
from orchestrator.signer import Signer, mint_auth_token
from orchestrator.storage_client import StorageClient

logger = get_logger(__name__)


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class BlobOrchestrator:
    """
    Executes blob operations against a ServerList.

    Holds no server-list state; every call receives the list to use. The
    primary server (index 0) decides upload success, delete falls back
    through the list in order, and listing merges every server's view.
    """

    def __init__(
        self,
        signer: Signer,
        storage: StorageClient,
        probe: Optional[AvailabilityProbe] = None,
        retry_policy: Optional[RetryPolicy] = None,
        authorize_listing: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            signer: Mints per-request authorization tokens
            storage: HTTP surface of the storage servers
            probe: Availability probe (built on storage if omitted)
            retry_policy: Retry policy for single remote calls
            authorize_listing: Send an authorization token with listing requests
            clock: Wall clock used for availability timestamps
        """
        self.signer = signer
        self.storage = storage
        self.probe = probe or AvailabilityProbe(storage)
        self.retry_policy = retry_policy or RetryPolicy()
        self.authorize_listing = authorize_listing
        self._clock = clock
        self.mirror_failures: Dict[str, PartialRedundancyFailure] = {}
        self._mirror_tasks: Set[asyncio.Task] = set()

    async def _upload_to(self, server: str, data: bytes, content_hash: str, mime_type: str) -> BlobDescriptor:
        async def attempt():
            token = await mint_auth_token(self.signer, "upload", server, content_hash)
            return await self.storage.upload(server, data, content_hash, token, mime_type)

        return await self.retry_policy.run(attempt, description=f"upload {content_hash[:8]} to {server}")

    async def upload(
        self,
        data: bytes,
        server_list: ServerList,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Blob:
        """
        Upload to the primary server, then mirror to the rest in the background.

        Args:
            data: File content
            server_list: Servers to use, primary first
            filename: Optional original filename kept as metadata
            mime_type: Content type (guessed from filename when omitted)

        Returns:
            Blob as stored on the primary server

        Raises:
            NoServersConfigured: If the list is empty (no network call is made)
            ValidationError: If data is empty
            Any error from the primary upload once retries are exhausted
        """
        if server_list.is_empty():
            raise NoServersConfigured("No storage servers configured, cannot upload")
        if not data:
            raise ValidationError("Cannot upload an empty file")

        content_hash = hash_content(data)
        if mime_type is None and filename:
            mime_type = mimetypes.guess_type(filename)[0]
        mime_type = mime_type or "application/octet-stream"

        primary = server_list.primary
        logger.info(f"Uploading {content_hash[:8]} ({len(data)} bytes) to primary {primary}")
        descriptor = await self._upload_to(primary, data, content_hash, mime_type)
        blob = descriptor.to_blob(primary, self._clock(), filename=filename)

        if server_list.mirrors:
            self._schedule_mirroring(data, content_hash, mime_type, list(server_list.mirrors))

        return blob

    def _schedule_mirroring(self, data: bytes, content_hash: str, mime_type: str, targets: List[str]) -> None:
        task = asyncio.create_task(
            self._mirror_uploaded(data, content_hash, mime_type, targets),
            name=f"mirror-{content_hash[:8]}",
        )
        self._mirror_tasks.add(task)
        task.add_done_callback(self._mirror_tasks.discard)
        logger.debug(f"Scheduled background mirroring of {content_hash[:8]} to {len(targets)} server(s)")

    async def _mirror_uploaded(
        self, data: bytes, content_hash: str, mime_type: str, targets: List[str]
    ) -> Dict[str, MirrorResult]:
        results = await self._push_to_targets(data, content_hash, mime_type, targets)
        self._record_mirror_outcome(content_hash, results)
        return results

    async def _push_to_targets(
        self, data: bytes, content_hash: str, mime_type: str, targets: Sequence[str]
    ) -> Dict[str, MirrorResult]:
        outcomes = await asyncio.gather(
            *(self._upload_to(target, data, content_hash, mime_type) for target in targets),
            return_exceptions=True,
        )
        results: Dict[str, MirrorResult] = {}
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                results[target] = MirrorResult(target=target, success=False, error=_describe(outcome))
            else:
                results[target] = MirrorResult(target=target, success=True)
        return results

    def _record_mirror_outcome(self, content_hash: str, results: Dict[str, MirrorResult]) -> None:
        previous = self.mirror_failures.get(content_hash)
        reasons = dict(previous.reasons) if previous else {}
        for target, result in results.items():
            if result.success:
                reasons.pop(target, None)
            else:
                reasons[target] = result.error or "unknown error"

        if reasons:
            failure = PartialRedundancyFailure(content_hash, reasons)
            self.mirror_failures[content_hash] = failure
            logger.warning(str(failure))
        else:
            self.mirror_failures.pop(content_hash, None)
            succeeded = sum(1 for r in results.values() if r.success)
            logger.info(f"Mirrored {content_hash[:8]} to {succeeded} server(s)")

    async def wait_for_mirrors(self) -> None:
        """Wait until every scheduled background mirror has settled."""
        pending = [task for task in self._mirror_tasks if not task.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [task for task in self._mirror_tasks if not task.done()]

    async def _delete_from(self, server: str, content_hash: str) -> None:
        async def attempt():
            token = await mint_auth_token(self.signer, "delete", server, content_hash)
            await self.storage.delete(server, content_hash, token)

        await self.retry_policy.run(attempt, description=f"delete {content_hash[:8]} from {server}")

    async def delete_with_fallback(self, content_hash: str, server_list: ServerList) -> DeleteResult:
        """
        Delete a blob, trying servers strictly in priority order.

        Stops at the first server that confirms deletion; servers after it
        are never contacted.

        Raises:
            ValidationError: If content_hash is malformed
            SigningError: If a delete authorization cannot be signed
            TotalFailure: If every server failed or the list is empty
        """
        if not is_content_hash(content_hash):
            raise ValidationError(f"Not a content hash: {content_hash!r}")

        attempted: List[str] = []
        failures: Dict[str, str] = {}

        for server in server_list.servers:
            attempted.append(server)
            try:
                await self._delete_from(server, content_hash)
            except SigningError:
                raise
            except Exception as e:
                failures[server] = _describe(e)
                logger.warning(f"Delete of {content_hash[:8]} failed on {server}: {e}")
                continue

            logger.info(f"Deleted {content_hash[:8]} from {server} after {len(attempted)} attempt(s)")
            return DeleteResult(hash=content_hash, server=server, attempted=tuple(attempted), failures=failures)

        raise TotalFailure("delete", failures)

    def _source_blob_url(self, source_url: str, content_hash: str) -> str:
        path = urlparse(source_url).path.rstrip("/")
        last_segment = path.rsplit("/", 1)[-1]
        if last_segment.split(".", 1)[0] == content_hash:
            return source_url
        return self.storage.blob_url(source_url, content_hash)

    async def mirror(
        self,
        content_hash: str,
        source_url: str,
        target_urls: Sequence[str],
        mime_type: Optional[str] = None,
    ) -> Dict[str, MirrorResult]:
        """
        Copy a blob from one server to several others.

        The bytes are fetched once from source_url (a server URL or a blob
        URL) and verified against content_hash. Targets already holding the
        blob are reported as successful no-ops.

        Returns:
            One MirrorResult per target, in target order

        Raises:
            ValidationError: If content_hash is malformed or the fetched bytes do not match it
            Any error from fetching the source once retries are exhausted
        """
        if not is_content_hash(content_hash):
            raise ValidationError(f"Not a content hash: {content_hash!r}")

        targets = list(dict.fromkeys(target_urls))
        if not targets:
            return {}

        blob_url = self._source_blob_url(source_url, content_hash)
        data = await self.retry_policy.run(
            lambda: self.storage.fetch_url(blob_url, source_url),
            description=f"fetch {content_hash[:8]} from {source_url}",
        )
        if hash_content(data) != content_hash:
            raise ValidationError(f"Content fetched from {source_url} does not match {content_hash[:8]}")

        presence = await self.probe.check(content_hash, targets)
        results: Dict[str, MirrorResult] = {
            target: MirrorResult(target=target, success=True, already_present=True)
            for target, present in presence.items()
            if present
        }

        missing = [target for target in targets if not presence.get(target)]
        if missing:
            pushed = await self._push_to_targets(
                data, content_hash, mime_type or "application/octet-stream", missing
            )
            results.update(pushed)
            self._record_mirror_outcome(content_hash, pushed)

        succeeded = sum(1 for r in results.values() if r.success)
        logger.info(f"Mirror of {content_hash[:8]} from {source_url}: {succeeded}/{len(targets)} target(s) hold it")
        return {target: results[target] for target in targets}

    async def _list_from(self, server: str, owner: str) -> List[BlobDescriptor]:
        async def attempt():
            token = await mint_auth_token(self.signer, "list", server) if self.authorize_listing else None
            return await self.storage.list_blobs(server, owner, token)

        return await self.retry_policy.run(attempt, description=f"list {owner[:8]} on {server}")

    async def list_blobs(self, server_list: ServerList, owner: Optional[str] = None) -> ListingResult:
        """
        List blobs on every server concurrently and merge them by hash.

        A hash reported by several servers becomes one Blob whose availability
        is the union of the reporting servers. Failing servers contribute
        nothing and are marked unreachable.

        Args:
            server_list: Servers to query
            owner: Identity whose blobs to list (defaults to the list owner)

        Raises:
            TotalFailure: If every server failed or the list is empty
        """
        owner = owner or server_list.owner
        servers = list(server_list.servers)
        if not servers:
            raise TotalFailure("list", {})

        outcomes = await asyncio.gather(
            *(self._list_from(server, owner) for server in servers),
            return_exceptions=True,
        )

        checked_at = self._clock()
        merged: Dict[str, Blob] = {}
        reachability: Dict[str, bool] = {}
        errors: Dict[str, str] = {}

        for server, outcome in zip(servers, outcomes):
            if isinstance(outcome, BaseException):
                reachability[server] = False
                errors[server] = _describe(outcome)
                logger.warning(f"Listing failed on {server}: {outcome}")
                continue

            reachability[server] = True
            for descriptor in outcome:
                self._merge(merged, descriptor, server, checked_at)

        if not any(reachability.values()):
            raise TotalFailure("list", errors)

        logger.info(
            f"Listed {len(merged)} blob(s) for {owner[:8]} from "
            f"{sum(reachability.values())}/{len(servers)} server(s)"
        )
        return ListingResult(blobs=merged, reachability=reachability, errors=errors)

    @staticmethod
    def _merge(merged: Dict[str, Blob], descriptor: BlobDescriptor, server: str, checked_at: float) -> None:
        existing = merged.get(descriptor.hash)
        if existing is None:
            merged[descriptor.hash] = descriptor.to_blob(server, checked_at)
            return
        if server in existing.present_on():
            return

        updated = existing.with_availability(
            existing.availability + (ServerAvailability(server=server, present=True, checked_at=checked_at),)
        )
        if updated.metadata is None and descriptor.filename:
            updated = replace(updated, metadata=BlobMetadata(filename=descriptor.filename))
        merged[descriptor.hash] = updated

    @staticmethod
    def mirror_candidates(blob: Blob, server_list: ServerList) -> List[str]:
        """Servers in the list that do not report holding blob."""
        present = set(blob.present_on())
        return [server for server in server_list.servers if server not in present]
