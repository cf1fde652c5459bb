"""Tests for DDriveCompleter."""

import pytest

from prompt_toolkit.document import Document

from cli.completer import DDriveCompleter
from cli.constants import COMMANDS


@pytest.fixture
def completer():
    """Create a DDriveCompleter with a fixed catalog listing."""
    return DDriveCompleter(lambda: ["movie.mkv", "music.zip", "holiday photos.zip"])


@pytest.fixture
def local_dir(tmp_path, monkeypatch):
    """
    Create a working directory with files to upload.

    Returns:
        Path to the temporary working directory
    """
    (tmp_path / "video.mp4").write_text("content")
    (tmp_path / "vacation").mkdir()
    (tmp_path / "vacation" / "beach.jpg").write_text("content")
    (tmp_path / ".hidden").write_text("content")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def get_completions_list(completer, text):
    """Helper to get list of completion texts from completer."""
    doc = Document(text, len(text))
    return [c.text for c in completer.get_completions(doc, None)]


class TestCommandCompletion:
    """Tests for command name completion."""

    def test_empty_input_lists_all_commands(self, completer):
        assert get_completions_list(completer, "") == COMMANDS

    def test_partial_command(self, completer):
        assert get_completions_list(completer, "li") == ["list-files", "list-accounts"]

    def test_case_insensitive(self, completer):
        assert get_completions_list(completer, "UP") == ["upload"]


class TestFileNameCompletion:
    """Tests for managed file name completion."""

    def test_download_completes_catalog_names(self, completer):
        assert get_completions_list(completer, "download mu") == ["music.zip"]

    def test_delete_lists_all_names_sorted(self, completer):
        assert get_completions_list(completer, "delete ") == [
            "'holiday photos.zip'", "movie.mkv", "music.zip",
        ]

    def test_no_listing_callback(self):
        assert get_completions_list(DDriveCompleter(), "delete ") == []


class TestPathCompletion:
    """Tests for local path completion."""

    def test_upload_completes_working_directory(self, completer, local_dir):
        assert get_completions_list(completer, "upload v") == ["vacation/", "video.mp4"]

    def test_upload_descends_into_directories(self, completer, local_dir):
        assert get_completions_list(completer, "upload vacation/") == ["vacation/beach.jpg"]

    def test_hidden_files_need_a_dot_prefix(self, completer, local_dir):
        assert ".hidden" not in get_completions_list(completer, "upload ")
        assert get_completions_list(completer, "upload .h") == [".hidden"]

    def test_download_save_path(self, completer, local_dir):
        assert get_completions_list(completer, "download movie.mkv vac") == ["vacation/"]

    def test_no_completion_for_upload_name_argument(self, completer, local_dir):
        assert get_completions_list(completer, "upload video.mp4 ") == []
