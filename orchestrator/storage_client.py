"""HTTP client for the content-addressed storage server surface."""

from typing import List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from common.exceptions import AuthError, RateLimited, StorageRejected, TransientServerError
from common.logging_config import get_logger
from orchestrator.config import REQUEST_TIMEOUT_SECONDS
from orchestrator.schemas import BlobDescriptor
from orchestrator.signer import AuthToken

logger = get_logger(__name__)


def _parse_retry_after(value: Optional[str], default: float = 1.0) -> float:
    if not value:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default


class StorageClient:
    """
    One-shot HTTP calls against storage servers.

    Each method performs exactly one request and maps failures onto the
    error taxonomy; retrying is the caller's concern.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = REQUEST_TIMEOUT_SECONDS):
        """
        Args:
            client: Optional pre-built AsyncClient (tests inject a MockTransport)
            timeout: Per-request timeout in seconds
        """
        self.timeout = timeout
        self._owns_client = client is None
        self.session = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_client:
            await self.session.aclose()

    @staticmethod
    def blob_url(server: str, content_hash: str) -> str:
        return f"{server.rstrip('/')}/{content_hash}"

    async def _send(self, method: str, url: str, server: str, **kwargs) -> httpx.Response:
        try:
            response = await self.session.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientServerError(f"{method} {url} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise TransientServerError(f"{method} {url} failed: {type(e).__name__}: {e}") from e

        logger.debug(f"{method} {url} -> {response.status_code}")
        self._raise_for_status(server, method, response)
        return response

    @staticmethod
    def _raise_for_status(server: str, method: str, response: httpx.Response) -> None:
        """Map a non-2xx response onto the error taxonomy."""
        status = response.status_code
        if status < 400:
            return

        reason = response.headers.get("X-Reason") or response.reason_phrase or "error"
        message = f"{method} on {server} returned {status}: {reason}"

        if status in (401, 403):
            raise AuthError(message)
        if status == 429:
            raise RateLimited(message, retry_after=_parse_retry_after(response.headers.get("Retry-After")))
        if status >= 500:
            raise TransientServerError(message, status_code=status)
        raise StorageRejected(message, status_code=status)

    async def upload(
        self,
        server: str,
        data: bytes,
        content_hash: str,
        token: AuthToken,
        mime_type: Optional[str] = None,
    ) -> BlobDescriptor:
        """
        PUT a blob to one server.

        Returns:
            Descriptor reported by the server

        Raises:
            StorageRejected: If the server stored something with a different hash
        """
        headers = {
            "Authorization": token.consume(server),
            "Content-Type": mime_type or "application/octet-stream",
            "X-SHA-256": content_hash,
        }
        response = await self._send("PUT", f"{server.rstrip('/')}/upload", server, content=data, headers=headers)
        descriptor = self._parse_descriptor(server, self._json(server, response))
        if descriptor.hash != content_hash:
            raise StorageRejected(
                f"{server} reported hash {descriptor.hash[:8]} for upload of {content_hash[:8]}"
            )
        return descriptor

    async def fetch_url(self, url: str, server: Optional[str] = None) -> bytes:
        """GET raw bytes from a blob URL."""
        response = await self._send("GET", url, server or url)
        return response.content

    async def has_blob(self, server: str, content_hash: str) -> bool:
        """
        HEAD a blob on one server.

        Returns:
            True on 2xx, False on 404
        """
        try:
            await self._send("HEAD", self.blob_url(server, content_hash), server)
        except StorageRejected as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def delete(self, server: str, content_hash: str, token: AuthToken) -> None:
        headers = {"Authorization": token.consume(server)}
        await self._send("DELETE", self.blob_url(server, content_hash), server, headers=headers)

    async def list_blobs(self, server: str, owner: str, token: Optional[AuthToken] = None) -> List[BlobDescriptor]:
        """
        List an owner's blobs on one server.

        Malformed descriptors are skipped with a warning.
        """
        headers = {"Authorization": token.consume(server)} if token else {}
        response = await self._send("GET", f"{server.rstrip('/')}/list/{owner}", server, headers=headers)

        payload = self._json(server, response)
        if not isinstance(payload, list):
            raise TransientServerError(f"{server} returned a non-list listing payload")

        descriptors = []
        for item in payload:
            try:
                descriptors.append(BlobDescriptor.model_validate(item))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed descriptor from {server}: {e.errors()[0]['msg']}")
        return descriptors

    @staticmethod
    def _json(server: str, response: httpx.Response):
        try:
            return response.json()
        except ValueError as e:
            raise TransientServerError(f"{server} returned a body that is not JSON") from e

    @staticmethod
    def _parse_descriptor(server: str, payload) -> BlobDescriptor:
        try:
            return BlobDescriptor.model_validate(payload)
        except PydanticValidationError as e:
            raise TransientServerError(f"{server} returned an invalid descriptor: {e.errors()[0]['msg']}") from e
