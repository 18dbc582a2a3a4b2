"""Custom completer for MediaFleet CLI."""

from pathlib import Path
from typing import Callable, Iterable, Optional

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from cli.constants import COMMANDS, HASH_COMMANDS, SERVER_COMMANDS
from orchestrator.context import MediaContext


class MediaFleetCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Local file path completion for 'upload'
    - Cached blob hash completion for delete/mirror/check
    - Server URL completion for remove-server/reorder and mirror targets
    """

    def __init__(self, context_provider: Callable[[], Optional[MediaContext]]):
        self._context_provider = context_provider

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        current_word = "" if is_typing_new_token else tokens[-1]
        arg_index = len(tokens) - 1 if is_typing_new_token else len(tokens) - 2

        if command == "upload" and arg_index == 0:
            yield from self._complete_paths(current_word)
        elif command in HASH_COMMANDS and arg_index == 0:
            yield from self._complete_hashes(current_word)
        elif command in SERVER_COMMANDS:
            if command == "remove-server" and arg_index > 0:
                return
            already_typed = set(tokens[1:-1] if not is_typing_new_token else tokens[1:])
            yield from self._complete_servers(current_word, already_typed)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_hashes(self, partial: str) -> Iterable[Completion]:
        context = self._context_provider()
        entry = context.cache.entry if context else None
        if entry is None:
            return
        partial_lower = partial.lower()
        for content_hash, blob in sorted(entry.blobs.items()):
            if content_hash.startswith(partial_lower):
                label = blob.filename or blob.mime_type
                yield Completion(
                    content_hash[:12],
                    start_position=-len(partial),
                    display=f"{content_hash[:12]} {label}",
                )

    def _complete_servers(self, partial: str, exclude: set) -> Iterable[Completion]:
        context = self._context_provider()
        if context is None:
            return
        for url in context.server_list.servers:
            if url in exclude:
                continue
            if url.startswith(partial):
                yield Completion(url, start_position=-len(partial))

    def _complete_paths(self, partial: str) -> Iterable[Completion]:
        """
        Complete files and directories relative to the working directory.

        Hidden entries are only offered when the partial starts with a dot.
        """
        base = Path(partial).parent if "/" in partial else Path(".")
        name_prefix = partial.rsplit("/", 1)[-1]
        directory = Path.cwd() / base

        if not directory.is_dir():
            return

        for item in sorted(directory.iterdir()):
            if item.name.startswith(".") and not name_prefix.startswith("."):
                continue
            if not item.name.startswith(name_prefix):
                continue
            rel_path = item.name if base == Path(".") else f"{base.as_posix()}/{item.name}"
            if item.is_dir():
                yield Completion(f"{rel_path}/", start_position=-len(partial), display=f"{item.name}/")
            elif item.is_file():
                yield Completion(rel_path, start_position=-len(partial))
