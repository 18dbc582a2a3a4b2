"""Configuration settings for the orchestration core."""

import os

from common.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_CAP_SECONDS,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_DISCOVERY_RELAYS,
    DEFAULT_DISCOVERY_TIMEOUT_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
)


REQUEST_TIMEOUT_SECONDS = float(
    os.environ.get("MEDIAFLEET_REQUEST_TIMEOUT", str(DEFAULT_REQUEST_TIMEOUT_SECONDS))
)

DISCOVERY_TIMEOUT_SECONDS = float(
    os.environ.get("MEDIAFLEET_DISCOVERY_TIMEOUT", str(DEFAULT_DISCOVERY_TIMEOUT_SECONDS))
)

CACHE_TTL_SECONDS = float(os.environ.get("MEDIAFLEET_CACHE_TTL", str(DEFAULT_CACHE_TTL_SECONDS)))

MAX_ATTEMPTS = int(os.environ.get("MEDIAFLEET_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS)))

BACKOFF_BASE_SECONDS = float(
    os.environ.get("MEDIAFLEET_BACKOFF_BASE", str(DEFAULT_BACKOFF_BASE_SECONDS))
)

BACKOFF_CAP_SECONDS = float(
    os.environ.get("MEDIAFLEET_BACKOFF_CAP", str(DEFAULT_BACKOFF_CAP_SECONDS))
)

_relays_env = os.environ.get("MEDIAFLEET_DEFAULT_RELAYS", "")
DEFAULT_RELAYS = tuple(r.strip() for r in _relays_env.split(",") if r.strip()) or DEFAULT_DISCOVERY_RELAYS

# Plain http to a local host is accepted only when this is enabled
ALLOW_LOCAL_HTTP = os.environ.get("MEDIAFLEET_ALLOW_LOCAL_HTTP", "false").lower() in ("1", "true", "yes")
