"""Tests for the external signing command bridge."""

import shlex
import sys

import pytest

from cli.signing import command_sign_event, create_command_signer
from common.events import compute_event_id
from common.exceptions import SigningError

from conftest import OWNER

SIGNER_SCRIPT = """
import hashlib, json, sys
event = json.load(sys.stdin)
payload = [0, event["pubkey"], event["created_at"], event["kind"], event["tags"], event["content"]]
event["id"] = hashlib.sha256(json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode()).hexdigest()
event["sig"] = "f" * 128
print(json.dumps(event))
"""


def python_command(script: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(script)}"


def unsigned_event():
    event = {"kind": 1, "pubkey": OWNER, "created_at": 1700000000, "tags": [["t", "upload"]], "content": "hi"}
    return {**event, "id": compute_event_id(event)}


@pytest.mark.asyncio
async def test_command_signer_round_trip():
    signer = create_command_signer(OWNER, python_command(SIGNER_SCRIPT))

    signed = await signer.sign(unsigned_event())

    assert signed["sig"] == "f" * 128
    assert signed["id"] == compute_event_id(signed)


@pytest.mark.asyncio
async def test_nonzero_exit_is_signing_error():
    sign_event = command_sign_event(python_command("import sys; sys.stderr.write('locked'); sys.exit(3)"))

    with pytest.raises(SigningError, match="exited with 3: locked"):
        await sign_event(unsigned_event())


@pytest.mark.asyncio
async def test_non_json_output_is_signing_error():
    sign_event = command_sign_event(python_command("print('not json')"))

    with pytest.raises(SigningError, match="JSON"):
        await sign_event(unsigned_event())


@pytest.mark.asyncio
async def test_missing_program_is_signing_error():
    sign_event = command_sign_event("/nonexistent/mediafleet-signer")

    with pytest.raises(SigningError, match="Could not start"):
        await sign_event(unsigned_event())


@pytest.mark.asyncio
async def test_slow_command_times_out():
    sign_event = command_sign_event(python_command("import time; time.sleep(10)"), timeout=0.2)

    with pytest.raises(SigningError, match="timed out"):
        await sign_event(unsigned_event())


def test_empty_command_rejected():
    with pytest.raises(SigningError):
        command_sign_event("   ")
