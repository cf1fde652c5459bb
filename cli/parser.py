"""Command parser for CLI input."""

import shlex
from typing import List

from cli.models import (
    AddAccountCommand,
    CommandRequest,
    DeleteCommand,
    DownloadCommand,
    ListAccountsCommand,
    ListFilesCommand,
    UploadCommand,
)


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

    return parse_tokens(tokens)


def parse_tokens(tokens: List[str]) -> CommandRequest:
    """Parse an already tokenized command (one-shot mode passes sys.argv here)."""
    command_name, args = tokens[0], tokens[1:]

    if command_name == "add-account":
        return _parse_add_account(args)
    elif command_name == "upload":
        return _parse_upload(args)
    elif command_name == "download":
        return _parse_download(args)
    elif command_name == "delete":
        return _parse_delete(args)
    elif command_name in ("list-files", "list"):
        return _parse_no_args(args, command_name, ListFilesCommand)
    elif command_name in ("list-accounts", "accounts"):
        return _parse_no_args(args, command_name, ListAccountsCommand)
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_add_account(args: list[str]) -> AddAccountCommand:
    """Parse 'add-account [email]' command."""
    if len(args) > 1:
        raise ParseError("add-account takes at most 1 argument: [email]")
    return AddAccountCommand(email=args[0] if args else None)


def _parse_upload(args: list[str]) -> UploadCommand:
    """Parse 'upload <path> [name]' command."""
    if not 1 <= len(args) <= 2:
        raise ParseError("upload requires 1 or 2 arguments: <path> [name]")
    return UploadCommand(path=args[0], name=args[1] if len(args) > 1 else None)


def _parse_download(args: list[str]) -> DownloadCommand:
    """Parse 'download <name> <save_path>' command."""
    if len(args) != 2:
        raise ParseError("download requires exactly 2 arguments: <name> <save_path>")
    name, save_path = args
    return DownloadCommand(name=name, save_path=save_path)


def _parse_delete(args: list[str]) -> DeleteCommand:
    """Parse 'delete <name>' command."""
    if len(args) != 1:
        raise ParseError("delete requires exactly 1 argument: <name>")
    return DeleteCommand(name=args[0])


def _parse_no_args(args: list[str], command_name: str, command_type):
    if args:
        raise ParseError(f"{command_name} takes no arguments")
    return command_type()
