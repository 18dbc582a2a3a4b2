"""Bridge from the CLI to an external signing command."""

import asyncio
import json
import shlex

from common.exceptions import SigningError
from common.logging_config import get_logger
from orchestrator.signer import ExtensionSigner

logger = get_logger(__name__)

SIGNER_TIMEOUT_SECONDS = 30.0


def command_sign_event(command: str, timeout: float = SIGNER_TIMEOUT_SECONDS):
    """
    Build a sign callable that runs command for every record.

    The command receives the unsigned record as JSON on stdin and must write
    the signed record as JSON on stdout. The key stays with the command.
    """
    argv = shlex.split(command)
    if not argv:
        raise SigningError("Signer command is empty")

    async def sign_event(unsigned: dict) -> dict:
        logger.debug(f"Running signer command [program={argv[0]}, kind={unsigned.get('kind')}]")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SigningError(f"Could not start signer command '{argv[0]}': {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(json.dumps(unsigned).encode("utf-8")), timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise SigningError(f"Signer command timed out after {timeout}s")

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise SigningError(f"Signer command exited with {process.returncode}: {detail or 'no output'}")

        try:
            return json.loads(stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SigningError(f"Signer command did not print a JSON record: {e}") from e

    return sign_event


def create_command_signer(pubkey: str, command: str) -> ExtensionSigner:
    return ExtensionSigner(pubkey, command_sign_event(command))
