"""Discovery capability: query and publish signed records on relays."""

import asyncio
import json
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import aiohttp

from common.logging_config import get_logger
from common.types import RelayAck
from orchestrator.config import DISCOVERY_TIMEOUT_SECONDS

logger = get_logger(__name__)


class Discovery(ABC):
    """Where signed records (server lists, relay lists) are found and stored."""

    @abstractmethod
    async def query(self, relays: Sequence[str], filter: dict, timeout: Optional[float] = None) -> List[dict]:
        """Return records matching filter from any of the relays."""

    @abstractmethod
    async def publish(self, relays: Sequence[str], event: dict, timeout: Optional[float] = None) -> Dict[str, RelayAck]:
        """Publish a signed record, returning one ack per relay."""


class RelayDiscovery(Discovery):
    """
    Relay websocket adapter.

    Speaks the minimal message set needed here: REQ / EVENT / EOSE / CLOSE
    for queries and EVENT / OK for publishing. One short-lived connection
    per relay per call; relays are contacted concurrently.
    """

    def __init__(self, timeout: float = DISCOVERY_TIMEOUT_SECONDS):
        self.timeout = timeout

    async def query(self, relays: Sequence[str], filter: dict, timeout: Optional[float] = None) -> List[dict]:
        """
        Query every relay concurrently and merge results by record id.

        Relays that fail or time out contribute what they sent before failing.
        """
        timeout = timeout or self.timeout
        relays = list(dict.fromkeys(relays))
        if not relays:
            return []

        async with aiohttp.ClientSession() as session:
            outcomes = await asyncio.gather(
                *(self._query_relay(session, relay, filter, timeout) for relay in relays),
                return_exceptions=True,
            )

        merged: Dict[str, dict] = {}
        for relay, outcome in zip(relays, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Relay query failed [relay={relay}]: {outcome}")
                continue
            for event in outcome:
                if isinstance(event, dict) and event.get("id"):
                    merged.setdefault(event["id"], event)

        logger.debug(f"Relay query kinds={filter.get('kinds')} -> {len(merged)} record(s) from {len(relays)} relay(s)")
        return list(merged.values())

    async def _query_relay(self, session: aiohttp.ClientSession, relay: str, filter: dict, timeout: float) -> List[dict]:
        subscription = uuid.uuid4().hex[:16]
        events: List[dict] = []

        async def collect():
            async with session.ws_connect(relay) as ws:
                await ws.send_str(json.dumps(["REQ", subscription, filter]))
                async for msg in ws:
                    if msg.type != aiohttp.WSMsgType.TEXT:
                        break
                    try:
                        message = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed frame [relay={relay}]")
                        continue
                    if not isinstance(message, list) or len(message) < 2:
                        continue
                    if message[0] == "EVENT" and message[1] == subscription and len(message) > 2:
                        events.append(message[2])
                    elif message[0] in ("EOSE", "CLOSED") and message[1] == subscription:
                        break
                await ws.send_str(json.dumps(["CLOSE", subscription]))

        try:
            await asyncio.wait_for(collect(), timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Relay query timed out after {timeout}s [relay={relay}, received={len(events)}]")
        return events

    async def publish(self, relays: Sequence[str], event: dict, timeout: Optional[float] = None) -> Dict[str, RelayAck]:
        """Send a signed record to each relay and collect OK responses."""
        timeout = timeout or self.timeout
        relays = list(dict.fromkeys(relays))

        async with aiohttp.ClientSession() as session:
            outcomes = await asyncio.gather(
                *(self._publish_relay(session, relay, event, timeout) for relay in relays),
                return_exceptions=True,
            )

        acks: Dict[str, RelayAck] = {}
        for relay, outcome in zip(relays, outcomes):
            if isinstance(outcome, BaseException):
                acks[relay] = RelayAck(relay=relay, accepted=False, message=f"{type(outcome).__name__}: {outcome}")
            else:
                acks[relay] = outcome
        accepted = sum(1 for ack in acks.values() if ack.accepted)
        logger.info(f"Published kind {event.get('kind')} record to {accepted}/{len(relays)} relay(s)")
        return acks

    async def _publish_relay(self, session: aiohttp.ClientSession, relay: str, event: dict, timeout: float) -> RelayAck:
        async def send():
            async with session.ws_connect(relay) as ws:
                await ws.send_str(json.dumps(["EVENT", event]))
                async for msg in ws:
                    if msg.type != aiohttp.WSMsgType.TEXT:
                        break
                    try:
                        message = json.loads(msg.data)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(message, list) and len(message) >= 3 and message[0] == "OK" and message[1] == event.get("id"):
                        return RelayAck(relay=relay, accepted=bool(message[2]), message=message[3] if len(message) > 3 else "")
            return RelayAck(relay=relay, accepted=False, message="connection closed before OK")

        try:
            return await asyncio.wait_for(send(), timeout)
        except asyncio.TimeoutError:
            return RelayAck(relay=relay, accepted=False, message=f"timed out after {timeout}s")
