"""Project-wide constants (event kinds, default relays, timeouts)."""

SERVER_LIST_KIND: int = 10063
RELAY_LIST_KIND: int = 10002
AUTH_EVENT_KIND: int = 24242

DEFAULT_DISCOVERY_RELAYS: tuple = (
    "wss://relay.damus.io",
    "wss://relay.nostr.band",
    "wss://relay.primal.net",
    "wss://relay.snort.social",
    "wss://nos.lol",
    "wss://nostr.oxtr.dev",
)

CONTENT_HASH_LENGTH: int = 64

DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 10.0
DEFAULT_DISCOVERY_TIMEOUT_SECONDS: float = 5.0
DEFAULT_CACHE_TTL_SECONDS: float = 300.0

DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_BACKOFF_BASE_SECONDS: float = 0.5
DEFAULT_BACKOFF_CAP_SECONDS: float = 8.0

AUTH_TOKEN_LIFETIME_SECONDS: int = 60

LOCAL_HOSTS: tuple = ("localhost", "127.0.0.1", "::1")
