"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class AddAccountCommand:
    """Authorize and link a Google Drive account."""

    email: str | None = None
    command: Literal["add-account"] = "add-account"


@dataclass(frozen=True)
class UploadCommand:
    """Distribute a local file across linked accounts."""

    path: str
    name: str | None = None
    command: Literal["upload"] = "upload"


@dataclass(frozen=True)
class DownloadCommand:
    """Reassemble a managed file at a local path."""

    name: str
    save_path: str
    command: Literal["download"] = "download"


@dataclass(frozen=True)
class DeleteCommand:
    """Delete a managed file and its remote chunks."""

    name: str
    command: Literal["delete"] = "delete"


@dataclass(frozen=True)
class ListFilesCommand:
    """List managed files."""

    command: Literal["list-files"] = "list-files"


@dataclass(frozen=True)
class ListAccountsCommand:
    """List linked accounts with capacity usage."""

    command: Literal["list-accounts"] = "list-accounts"


CommandRequest = (
    AddAccountCommand
    | UploadCommand
    | DownloadCommand
    | DeleteCommand
    | ListFilesCommand
    | ListAccountsCommand
)
