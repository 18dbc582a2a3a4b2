"""Custom exception classes for the media orchestration core."""

from typing import Dict, Optional


class MediaFleetError(Exception):
    """
    Base exception class for all orchestration errors.
    """
    pass


class ValidationError(MediaFleetError):
    """
    Raised when input is rejected before any network call (bad URL, bad file).
    Never retried.
    """
    pass


class NoServersConfigured(ValidationError):
    """
    Raised when an operation needs at least one server and the list is empty.
    """
    pass


class StorageRejected(ValidationError):
    """
    Raised when a storage server refuses a request for a permanent reason
    (missing blob, unsupported type, payload too large).
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientServerError(MediaFleetError):
    """
    Raised on timeouts, connection failures and 5xx responses. Retried by RetryPolicy.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(TransientServerError):
    """
    Raised on 429 responses. Retried once after the indicated wait.
    """

    def __init__(self, message: str, retry_after: float = 1.0):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class AuthError(MediaFleetError):
    """
    Raised when signing fails or a server rejects the authorization. Never retried.
    """
    pass


class PartialRedundancyFailure(MediaFleetError):
    """
    Recorded when the primary upload succeeded but one or more mirrors failed.
    Does not fail the calling operation.
    """

    def __init__(self, content_hash: str, reasons: Dict[str, str]):
        self.content_hash = content_hash
        self.reasons = dict(reasons)
        failed = ", ".join(sorted(self.reasons))
        super().__init__(f"Mirroring of {content_hash[:8]} failed on {len(self.reasons)} server(s): {failed}")


class TotalFailure(MediaFleetError):
    """
    Raised when every server in the relevant list failed.

    Attributes:
        reasons: Mapping of server (or relay) URL to the failure description
    """

    def __init__(self, operation: str, reasons: Optional[Dict[str, str]] = None):
        self.operation = operation
        self.reasons = dict(reasons or {})
        if self.reasons:
            details = "; ".join(f"{server}: {reason}" for server, reason in self.reasons.items())
            message = f"{operation} failed on every server ({details})"
        else:
            message = f"{operation} failed: no servers to try"
        super().__init__(message)


class SigningError(AuthError):
    """
    Raised when the Signer fails to produce a record. Fatal for the whole
    operation since no server can be authorized without it.
    """
    pass
