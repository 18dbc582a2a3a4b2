"""Command parser for CLI input."""

import shlex

from cli.models import (
    AddServerCommand,
    CheckCommand,
    CommandRequest,
    DeleteCommand,
    ListCommand,
    MirrorCommand,
    RefreshCommand,
    RemoveServerCommand,
    ReorderCommand,
    ServersCommand,
    SetOwnerCommand,
    UploadCommand,
    WhoamiCommand,
)
from common.types import is_content_hash
from orchestrator.media_query import KIND_FILTERS, SORT_ORDERS

MIN_HASH_PREFIX = 4


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL

    Returns:
        CommandRequest object

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]
    args = tokens[1:]

    if command_name == "servers":
        _expect_no_args(command_name, args)
        return ServersCommand()
    elif command_name == "add-server":
        return AddServerCommand(url=_single(command_name, args, "<url>"))
    elif command_name == "remove-server":
        return RemoveServerCommand(url=_single(command_name, args, "<url>"))
    elif command_name == "reorder":
        return _parse_reorder(args)
    elif command_name == "upload":
        return _parse_upload(args)
    elif command_name == "list":
        return _parse_list(args)
    elif command_name == "delete":
        return DeleteCommand(hash_prefix=_parse_hash_prefix(command_name, _single(command_name, args, "<hash>")))
    elif command_name == "mirror":
        return _parse_mirror(args)
    elif command_name == "check":
        return CheckCommand(hash_prefix=_parse_hash_prefix(command_name, _single(command_name, args, "<hash>")))
    elif command_name == "refresh":
        _expect_no_args(command_name, args)
        return RefreshCommand()
    elif command_name == "whoami":
        _expect_no_args(command_name, args)
        return WhoamiCommand()
    elif command_name == "set-owner":
        return _parse_set_owner(args)
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _expect_no_args(command_name: str, args: list[str]) -> None:
    if args:
        raise ParseError(f"{command_name} takes no arguments")


def _single(command_name: str, args: list[str], usage: str) -> str:
    if len(args) != 1:
        raise ParseError(f"{command_name} requires exactly 1 argument: {usage}")
    return args[0]


def _parse_hash_prefix(command_name: str, value: str) -> str:
    """Accept a full hash or a hex prefix of at least MIN_HASH_PREFIX characters."""
    value = value.lower()
    if is_content_hash(value):
        return value
    if len(value) < MIN_HASH_PREFIX or len(value) > 64 or any(c not in "0123456789abcdef" for c in value):
        raise ParseError(f"{command_name} requires a hex hash or a prefix of at least {MIN_HASH_PREFIX} characters")
    return value


def _parse_reorder(args: list[str]) -> ReorderCommand:
    """Parse 'reorder <url> [url ...]' command."""
    if not args:
        raise ParseError("reorder requires at least one server URL")
    return ReorderCommand(order=tuple(args))


def _parse_upload(args: list[str]) -> UploadCommand:
    """Parse 'upload <file> [mime-type]' command."""
    if len(args) not in (1, 2):
        raise ParseError("upload requires 1 or 2 arguments: <file> [mime-type]")
    mime_type = args[1] if len(args) > 1 else None
    if mime_type is not None and "/" not in mime_type:
        raise ParseError(f"Invalid mime type: {mime_type}")
    return UploadCommand(path=args[0], mime_type=mime_type)


def _parse_list(args: list[str]) -> ListCommand:
    """Parse 'list [search] [--kind K] [--sort S]' command."""
    search_terms = []
    kind = "all"
    sort = "newest"

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("--kind", "--sort"):
            if i + 1 >= len(args):
                raise ParseError(f"{arg} requires a value")
            value = args[i + 1]
            if arg == "--kind":
                if value not in KIND_FILTERS:
                    raise ParseError(f"Unknown kind '{value}', expected one of: {', '.join(KIND_FILTERS)}")
                kind = value
            else:
                if value not in SORT_ORDERS:
                    raise ParseError(f"Unknown sort '{value}', expected one of: {', '.join(SORT_ORDERS)}")
                sort = value
            i += 2
            continue
        if arg.startswith("--"):
            raise ParseError(f"Unknown option: {arg}")
        search_terms.append(arg)
        i += 1

    return ListCommand(search=" ".join(search_terms), kind=kind, sort=sort)


def _parse_mirror(args: list[str]) -> MirrorCommand:
    """Parse 'mirror <hash> [url ...]' command."""
    if not args:
        raise ParseError("mirror requires a hash and optional target server URLs")
    return MirrorCommand(hash_prefix=_parse_hash_prefix("mirror", args[0]), targets=tuple(args[1:]))


def _parse_set_owner(args: list[str]) -> SetOwnerCommand:
    """Parse 'set-owner <pubkey>' command."""
    pubkey = _single("set-owner", args, "<pubkey>").lower()
    if not is_content_hash(pubkey):
        raise ParseError("set-owner requires a 64-character hex public key")
    return SetOwnerCommand(pubkey=pubkey)
