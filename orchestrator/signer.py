"""Signer capability and single-use authorization tokens."""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

from common.events import build_auth_event, compute_event_id, encode_auth_header
from common.exceptions import AuthError, SigningError
from common.logging_config import get_logger

logger = get_logger(__name__)

SignCallable = Callable[[dict], Union[dict, Awaitable[dict]]]


class Signer(ABC):
    """
    Produces signed records for the owner.

    Used both for the persisted server list and for per-request
    authorization tokens. Any failure surfaces as SigningError, an AuthError.
    """

    method: str = "unknown"

    def __init__(self, pubkey: str):
        self.pubkey = pubkey

    @abstractmethod
    async def _sign(self, unsigned: dict) -> dict:
        """Variant-specific signing."""

    async def sign(self, unsigned: dict) -> dict:
        """
        Sign an unsigned record.

        Args:
            unsigned: Record with kind, pubkey, created_at, tags, content

        Returns:
            Signed record carrying id and sig

        Raises:
            SigningError: If signing fails or returns a malformed record
        """
        if unsigned.get("pubkey") != self.pubkey:
            raise SigningError(
                f"Refusing to sign for {str(unsigned.get('pubkey'))[:8]} with {self.method} signer of {self.pubkey[:8]}"
            )
        try:
            signed = await self._sign(dict(unsigned))
        except SigningError:
            raise
        except Exception as e:
            logger.error(f"{self.method} signer failed for kind {unsigned.get('kind')}: {e}")
            raise SigningError(f"Signing failed: {e}") from e

        self._check_signed(unsigned, signed)
        return signed

    @staticmethod
    def _check_signed(unsigned: dict, signed: Any) -> None:
        if not isinstance(signed, dict) or not signed.get("sig"):
            raise SigningError("Signer returned a record without a signature")
        for key in ("kind", "pubkey", "created_at", "tags", "content"):
            if signed.get(key) != unsigned.get(key):
                raise SigningError(f"Signer altered field '{key}' of the record")
        if signed.get("id") != compute_event_id(signed):
            raise SigningError("Signed record id does not match its content")


class ExtensionSigner(Signer):
    """
    Delegates to an external signer (browser extension bridge, remote
    signer, signing command). The private key never enters this process.
    """

    method = "extension"

    def __init__(self, pubkey: str, sign_event: SignCallable):
        super().__init__(pubkey)
        self._sign_event = sign_event

    async def _sign(self, unsigned: dict) -> dict:
        result = self._sign_event(unsigned)
        if inspect.isawaitable(result):
            result = await result
        return result


class KeySigner(Signer):
    """
    Holds a raw secret key and signs event ids with an injected primitive.

    Args:
        pubkey: Public key matching secret_key
        secret_key: Hex secret key
        sign_digest: Callable(secret_key, digest) -> hex signature
    """

    method = "key"

    def __init__(self, pubkey: str, secret_key: str, sign_digest: Callable[[str, bytes], str]):
        super().__init__(pubkey)
        self._secret_key = secret_key
        self._sign_digest = sign_digest

    def __repr__(self) -> str:
        return f"KeySigner(pubkey={self.pubkey[:8]}..., secret_key=***)"

    async def _sign(self, unsigned: dict) -> dict:
        event_id = compute_event_id(unsigned)
        signature = self._sign_digest(self._secret_key, bytes.fromhex(event_id))
        return {**unsigned, "id": event_id, "sig": signature}


def create_signer(method: str, pubkey: str, **kwargs) -> Signer:
    """
    Select a signer variant at construction time.

    Args:
        method: "extension" or "key"
        pubkey: Owner public key
        **kwargs: sign_event for extension; secret_key and sign_digest for key
    """
    if method == ExtensionSigner.method:
        return ExtensionSigner(pubkey, kwargs["sign_event"])
    if method == KeySigner.method:
        return KeySigner(pubkey, kwargs["secret_key"], kwargs["sign_digest"])
    raise ValueError(f"Unknown signing method: {method}")


class AuthToken:
    """
    Authorization for one action on one server. Consumed exactly once.
    """

    def __init__(self, action: str, server: str, content_hash: Optional[str], event: dict):
        self.action = action
        self.server = server
        self.content_hash = content_hash
        self._event = event
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self, server: str) -> str:
        """
        Return the Authorization header value and mark the token used.

        Raises:
            AuthError: If already consumed or presented to another server
        """
        if self._consumed:
            raise AuthError(f"Auth token for {self.action} on {self.server} was already used")
        if server != self.server:
            raise AuthError(f"Auth token scoped to {self.server} cannot be used for {server}")
        self._consumed = True
        return encode_auth_header(self._event)

    def __repr__(self) -> str:
        state = "used" if self._consumed else "fresh"
        return f"AuthToken(action={self.action}, server={self.server}, {state})"


async def mint_auth_token(
    signer: Signer,
    action: str,
    server: str,
    content_hash: Optional[str] = None,
) -> AuthToken:
    """
    Sign a fresh authorization record scoped to action and server.

    Raises:
        SigningError: If signing fails
    """
    unsigned = build_auth_event(signer.pubkey, action, server, content_hash)
    signed = await signer.sign(unsigned)
    logger.debug(f"Minted {action} token [server={server}]")
    return AuthToken(action, server, content_hash, signed)
