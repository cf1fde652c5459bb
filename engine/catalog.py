"""Durable catalog of managed files and linked accounts (single JSON document)."""

import copy
import json
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from common.logging_config import get_logger
from common.types import ChunkRecord, ManagedFile, StorageAccount
from engine.chunk_codec import check_part_numbers
from engine.exceptions import (
    CatalogIOError,
    DuplicateFileError,
    FileNotFoundError,
    IncompleteChunkSetError,
    UnknownAccountError,
)

logger = get_logger(__name__)


class AccountEntry(BaseModel):
    """Persisted form of a StorageAccount."""
    token_path: str
    total_space: int
    used_space: int = 0


class ChunkEntry(BaseModel):
    """Persisted form of a ChunkRecord."""
    part: int
    account: str
    drive_file_id: str
    size: int


class FileEntry(BaseModel):
    """Persisted form of a ManagedFile."""
    total_size: int
    chunks: List[ChunkEntry] = Field(default_factory=list)
    folder_ids: Dict[str, str] = Field(default_factory=dict)


class CatalogDocument(BaseModel):
    """Top-level catalog document."""
    accounts: Dict[str, AccountEntry] = Field(default_factory=dict)
    files: Dict[str, FileEntry] = Field(default_factory=dict)


def validate_managed_file(managed_file: ManagedFile) -> None:
    """
    Check the consistency invariants of a ManagedFile.

    Raises:
        IncompleteChunkSetError: If parts are not exactly 1..N or sizes do not add up
    """
    check_part_numbers(c.part_number for c in managed_file.chunks)
    chunk_total = sum(c.size_bytes for c in managed_file.chunks)
    if chunk_total != managed_file.total_size_bytes:
        raise IncompleteChunkSetError(
            f"Chunk sizes of '{managed_file.name}' add up to {chunk_total} bytes, "
            f"expected {managed_file.total_size_bytes}"
        )


class Catalog:
    """
    In-memory catalog with an explicit load/save lifecycle.

    The whole document is read by load() and written back by save(). Mutating
    methods only set the dirty flag; callers decide when to save. A crash in
    the middle of save() can leave a truncated document behind.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Args:
            path: Location of the JSON catalog document
        """
        self.path = Path(path)
        self._files: Dict[str, ManagedFile] = {}
        self._accounts: Dict[str, StorageAccount] = {}
        self.dirty = False

    @property
    def accounts(self) -> Dict[str, StorageAccount]:
        """Live account mapping, shared with the CapacityLedger."""
        return self._accounts

    def load(self) -> "Catalog":
        """
        Read the catalog document, replacing in-memory state.

        A missing document yields an empty catalog.

        Raises:
            CatalogIOError: If the document cannot be read or parsed
        """
        if not self.path.exists():
            logger.info(f"No catalog at {self.path}, starting empty")
            self._files.clear()
            self._accounts.clear()
            self.dirty = False
            return self

        try:
            raw = self.path.read_text(encoding='utf-8')
            document = CatalogDocument.model_validate_json(raw) if raw.strip() else CatalogDocument()
        except (OSError, ValidationError, ValueError) as e:
            raise CatalogIOError(f"Cannot read catalog {self.path}: {e}") from e

        accounts = {
            account_id: StorageAccount(
                account_id=account_id,
                token_path=entry.token_path,
                total_bytes=entry.total_space,
                used_bytes=entry.used_space,
            )
            for account_id, entry in document.accounts.items()
        }
        files = {
            name: ManagedFile(
                name=name,
                total_size_bytes=entry.total_size,
                chunks=tuple(
                    ChunkRecord(
                        part_number=c.part,
                        account_id=c.account,
                        remote_id=c.drive_file_id,
                        size_bytes=c.size,
                    )
                    for c in entry.chunks
                ),
                folder_ids=dict(entry.folder_ids),
            )
            for name, entry in document.files.items()
        }
        # Mutated in place: the CapacityLedger holds a reference to the account mapping.
        self._accounts.clear()
        self._accounts.update(accounts)
        self._files.clear()
        self._files.update(files)
        self.dirty = False

        logger.info(
            f"Catalog loaded from {self.path} "
            f"({len(self._files)} file(s), {len(self._accounts)} account(s))"
        )
        return self

    def to_document(self) -> CatalogDocument:
        return CatalogDocument(
            accounts={
                a.account_id: AccountEntry(
                    token_path=a.token_path,
                    total_space=a.total_bytes,
                    used_space=a.used_bytes,
                )
                for a in self._accounts.values()
            },
            files={
                f.name: FileEntry(
                    total_size=f.total_size_bytes,
                    chunks=[
                        ChunkEntry(
                            part=c.part_number,
                            account=c.account_id,
                            drive_file_id=c.remote_id,
                            size=c.size_bytes,
                        )
                        for c in f.chunks
                    ],
                    folder_ids=dict(f.folder_ids),
                )
                for f in self._files.values()
            },
        )

    def save(self) -> None:
        """
        Write the whole catalog document.

        Raises:
            CatalogIOError: If the write fails (the dirty flag stays set)
        """
        payload = json.dumps(self.to_document().model_dump(), indent=4)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(payload, encoding='utf-8')
        except OSError as e:
            raise CatalogIOError(f"Cannot write catalog {self.path}: {e}") from e

        self.dirty = False
        logger.debug(f"Catalog saved to {self.path}")

    def save_if_dirty(self) -> bool:
        if not self.dirty:
            return False
        self.save()
        return True

    def mark_dirty(self) -> None:
        self.dirty = True

    def contains(self, name: str) -> bool:
        return name in self._files

    def get(self, name: str) -> ManagedFile:
        """
        Raises:
            FileNotFoundError: If name is not in the catalog
        """
        try:
            return self._files[name]
        except KeyError:
            raise FileNotFoundError(name) from None

    def put(self, name: str, managed_file: ManagedFile) -> None:
        """
        Record a newly distributed file.

        Raises:
            DuplicateFileError: If name already exists (remove it first)
            IncompleteChunkSetError: If the record breaks the chunk invariants
            UnknownAccountError: If a chunk names an unlinked account
        """
        if name in self._files:
            raise DuplicateFileError(name)
        validate_managed_file(managed_file)
        for chunk in managed_file.chunks:
            if chunk.account_id not in self._accounts:
                raise UnknownAccountError(chunk.account_id)

        self._files[name] = managed_file
        self.dirty = True

    def remove(self, name: str) -> ManagedFile:
        """
        Raises:
            FileNotFoundError: If name is not in the catalog
        """
        try:
            managed_file = self._files.pop(name)
        except KeyError:
            raise FileNotFoundError(name) from None
        self.dirty = True
        return managed_file

    def list_files(self) -> List[ManagedFile]:
        return list(self._files.values())

    def list_accounts(self) -> List[StorageAccount]:
        """Accounts in link order (the stable placement order)."""
        return list(self._accounts.values())

    def get_account(self, account_id: str) -> StorageAccount:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise UnknownAccountError(account_id) from None

    def add_account(self, account: StorageAccount) -> StorageAccount:
        """
        Link an account, or refresh the credential of an already linked one.

        Re-linking keeps the recorded usage and link order.
        """
        existing = self._accounts.get(account.account_id)
        if existing is not None:
            existing.token_path = account.token_path
            if account.total_bytes >= existing.used_bytes:
                existing.total_bytes = account.total_bytes
            self.dirty = True
            logger.info(f"Refreshed linked account {account.account_id}")
            return existing

        self._accounts[account.account_id] = account
        self.dirty = True
        logger.info(f"Linked account {account.account_id} ({account.total_bytes} bytes)")
        return account

    def snapshot(self) -> "CatalogSnapshot":
        """Read-only copy for listing commands."""
        return CatalogSnapshot(
            files=list(self._files.values()),
            accounts=[copy.copy(a) for a in self._accounts.values()],
        )


class CatalogSnapshot:
    """Point-in-time copy of the catalog contents."""

    def __init__(self, files: List[ManagedFile], accounts: List[StorageAccount]):
        self.files = files
        self.accounts = accounts

    def find_file(self, name: str) -> Optional[ManagedFile]:
        for managed_file in self.files:
            if managed_file.name == name:
                return managed_file
        return None
