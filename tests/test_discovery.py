"""Tests for RelayDiscovery against in-process websocket relays."""

import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as RelayServer

from orchestrator.discovery import RelayDiscovery


def make_relay(events=(), accept=True, send_eose=True, garbage=False):
    """Minimal relay: answers REQ with stored events and EVENT with OK."""
    received = []

    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            message = json.loads(msg.data)
            received.append(message)
            if message[0] == "REQ":
                subscription = message[1]
                for event in events:
                    await ws.send_str(json.dumps(["EVENT", subscription, event]))
                    if garbage:
                        await ws.send_str("{not json")
                if send_eose:
                    await ws.send_str(json.dumps(["EOSE", subscription]))
            elif message[0] == "EVENT":
                event = message[1]
                if garbage:
                    await ws.send_str("{not json")
                await ws.send_str(json.dumps(["OK", "0" * 64, True, "other event"]))
                await ws.send_str(json.dumps(["OK", event["id"], accept, "" if accept else "blocked: spam"]))
        return ws

    app = web.Application()
    app.router.add_get("/", handler)
    return app, received


def record(record_id, created_at=1):
    return {"id": record_id, "kind": 10063, "pubkey": "p", "created_at": created_at, "tags": [], "content": ""}


def relay_url(server):
    return str(server.make_url("/")).replace("http://", "ws://")


@pytest.mark.asyncio
async def test_query_merges_records_by_id():
    app_one, received = make_relay([record("1"), record("2")])
    app_two, _ = make_relay([record("2"), record("3")])

    async with RelayServer(app_one) as one, RelayServer(app_two) as two:
        events = await RelayDiscovery(timeout=2).query([relay_url(one), relay_url(two)], {"kinds": [10063]})

    assert sorted(e["id"] for e in events) == ["1", "2", "3"]
    assert received[0][0] == "REQ"
    assert received[0][2] == {"kinds": [10063]}
    assert received[-1] == ["CLOSE", received[0][1]]


@pytest.mark.asyncio
async def test_query_tolerates_unreachable_relay():
    app, _ = make_relay([record("1")])

    async with RelayServer(app) as server:
        events = await RelayDiscovery(timeout=2).query(["ws://127.0.0.1:1/", relay_url(server)], {})

    assert [e["id"] for e in events] == ["1"]


@pytest.mark.asyncio
async def test_query_keeps_records_received_before_timeout():
    app, _ = make_relay([record("slow")], send_eose=False)

    async with RelayServer(app) as server:
        events = await RelayDiscovery().query([relay_url(server)], {}, timeout=0.3)

    assert [e["id"] for e in events] == ["slow"]


@pytest.mark.asyncio
async def test_query_without_relays():
    assert await RelayDiscovery().query([], {}) == []


@pytest.mark.asyncio
async def test_publish_collects_acks_per_relay():
    accepting, _ = make_relay(accept=True)
    rejecting, _ = make_relay(accept=False)
    event = record("a" * 64)

    async with RelayServer(accepting) as ok_server, RelayServer(rejecting) as bad_server:
        ok_url, bad_url = relay_url(ok_server), relay_url(bad_server)
        acks = await RelayDiscovery(timeout=2).publish([ok_url, bad_url, "ws://127.0.0.1:1/"], event)

    assert acks[ok_url].accepted
    assert not acks[bad_url].accepted
    assert acks[bad_url].message == "blocked: spam"
    assert not acks["ws://127.0.0.1:1/"].accepted


@pytest.mark.asyncio
async def test_query_skips_malformed_frames():
    app, _ = make_relay([record("1"), record("2")], garbage=True)

    async with RelayServer(app) as server:
        events = await RelayDiscovery(timeout=2).query([relay_url(server)], {})

    assert sorted(e["id"] for e in events) == ["1", "2"]


@pytest.mark.asyncio
async def test_publish_skips_malformed_frames():
    app, _ = make_relay(accept=True, garbage=True)
    event = record("b" * 64)

    async with RelayServer(app) as server:
        url = relay_url(server)
        acks = await RelayDiscovery(timeout=2).publish([url], event)

    assert acks[url].accepted
