"""Tests for CLI command parsing."""

import pytest

from cli.models import (
    AddAccountCommand,
    DeleteCommand,
    DownloadCommand,
    ListAccountsCommand,
    ListFilesCommand,
    UploadCommand,
)
from cli.parser import ParseError, parse_command, parse_tokens


class TestParseCommand:
    """Tests for parse_command."""

    def test_upload_with_path_only(self):
        assert parse_command("upload ~/video.mp4") == UploadCommand(path="~/video.mp4")

    def test_upload_with_name(self):
        cmd = parse_command('upload "./my backup.tar" backup.tar')

        assert cmd == UploadCommand(path="./my backup.tar", name="backup.tar")

    def test_download(self):
        assert parse_command("download movie.mkv /tmp/") == DownloadCommand(name="movie.mkv", save_path="/tmp/")

    def test_delete_quoted_name(self):
        assert parse_command("delete 'holiday photos.zip'") == DeleteCommand(name="holiday photos.zip")

    def test_add_account(self):
        assert parse_command("add-account") == AddAccountCommand()
        assert parse_command("add-account me@example.com") == AddAccountCommand(email="me@example.com")

    def test_list_commands_and_aliases(self):
        assert parse_command("list-files") == ListFilesCommand()
        assert parse_command("list") == ListFilesCommand()
        assert parse_command("list-accounts") == ListAccountsCommand()
        assert parse_command("accounts") == ListAccountsCommand()

    @pytest.mark.parametrize("line", [
        "",
        "   ",
        "upload",
        "upload a b c",
        "download only-name",
        "delete",
        "delete a b",
        "list-files extra",
        "add-account a b",
        "frobnicate",
        'upload "unterminated',
    ])
    def test_invalid_input(self, line):
        with pytest.raises(ParseError):
            parse_command(line)


def test_parse_tokens_keeps_arguments_verbatim():
    """One-shot mode passes shell arguments without re-splitting."""
    cmd = parse_tokens(["upload", "file with spaces.bin"])

    assert cmd == UploadCommand(path="file with spaces.bin")
