"""Tests for MediaFleetCompleter."""

from pathlib import Path
from unittest.mock import patch

import pytest
from prompt_toolkit.document import Document

from cli.completer import MediaFleetCompleter
from cli.constants import COMMANDS
from common.types import CacheEntry

from conftest import SERVER_A, SERVER_B, SERVER_C, make_blob

CAT = make_blob(b"cat", filename="cat.png")


@pytest.fixture
def completer(context):
    """Create a MediaFleetCompleter bound to the test context."""
    context.cache._entry = CacheEntry(blobs={CAT.hash: CAT}, fingerprint="", fetched_at=0.0)
    return MediaFleetCompleter(lambda: context)


@pytest.fixture
def work_dir(tmp_path):
    """Working directory with a few files to upload."""
    (tmp_path / "photos").mkdir()
    (tmp_path / "photos" / "beach.jpg").write_text("content")
    (tmp_path / "notes.txt").write_text("content")
    (tmp_path / ".hidden").write_text("content")
    return tmp_path


def get_completions_list(completer, text):
    """Helper to get list of completion texts from completer."""
    doc = Document(text, len(text))
    return [c.text for c in completer.get_completions(doc, None)]


class TestCommandCompletion:
    """Tests for command name completion."""

    def test_empty_input_shows_all_commands(self, completer):
        """Empty input should suggest all commands."""
        completions = get_completions_list(completer, "")
        for cmd in COMMANDS:
            assert cmd in completions

    def test_partial_command_filters(self, completer):
        completions = get_completions_list(completer, "re")
        assert completions == ["remove-server", "reorder", "refresh"]

    def test_command_completion_case_insensitive(self, completer):
        assert "upload" in get_completions_list(completer, "UP")


class TestArgumentCompletion:
    """Tests for hash, server and path completion."""

    def test_hash_completion(self, completer):
        completions = get_completions_list(completer, f"delete {CAT.hash[:2]}")
        assert completions == [CAT.hash[:12]]

    def test_no_hashes_without_cache(self, context):
        completer = MediaFleetCompleter(lambda: None)
        assert get_completions_list(completer, "check ") == []

    def test_server_completion_excludes_typed(self, completer):
        completions = get_completions_list(completer, f"reorder {SERVER_B} ")
        assert completions == [SERVER_A, SERVER_C]

    def test_mirror_targets_after_hash(self, completer):
        completions = get_completions_list(completer, f"mirror {CAT.hash[:12]} https://c")
        assert completions == [SERVER_C]

    def test_remove_server_takes_one_url(self, completer):
        assert get_completions_list(completer, f"remove-server {SERVER_A} ") == []

    def test_upload_lists_working_directory(self, completer, work_dir):
        with patch.object(Path, "cwd", return_value=work_dir):
            completions = get_completions_list(completer, "upload ")
        assert completions == ["notes.txt", "photos/"]

    def test_upload_descends_into_directories(self, completer, work_dir):
        with patch.object(Path, "cwd", return_value=work_dir):
            completions = get_completions_list(completer, "upload photos/b")
        assert completions == ["photos/beach.jpg"]

    def test_hidden_files_need_a_dot(self, completer, work_dir):
        with patch.object(Path, "cwd", return_value=work_dir):
            completions = get_completions_list(completer, "upload .h")
        assert completions == [".hidden"]

    def test_other_commands_have_no_argument_completion(self, completer):
        assert get_completions_list(completer, "refresh ") == []
