"""Upload, download and delete of files distributed across linked accounts."""

import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from common.constants import (
    CHUNK_SIZE_BYTES,
    DEFAULT_ACCOUNT_CAPACITY_BYTES,
    REMOTE_ROOT_FOLDER_NAME,
)
from common.logging_config import get_logger
from common.types import ChunkRecord, ManagedFile, StorageAccount
from engine.backend import Authorizer, BackendFactory, StorageBackend
from engine.capacity_ledger import CapacityLedger, Hold
from engine.catalog import Catalog, CatalogSnapshot
from engine.chunk_codec import chunk_file_name, merge, split_to_files, staging_area
from engine.chunk_placement import AccountChoice, FirstFitPlacementPolicy
from engine.exceptions import (
    AuthenticationRequiredError,
    CatalogIOError,
    DDriveException,
    DuplicateFileError,
    IncompleteChunkSetError,
    InvalidNameError,
    LocalFileError,
    NoAccountsLinkedError,
    RemoteRequestError,
    TransferFailureError,
    UnknownAccountError,
)
from engine.transfer_scheduler import (
    DeleteJob,
    DownloadJob,
    TransferResult,
    TransferScheduler,
    UploadJob,
)

logger = get_logger(__name__)

PathLike = Union[str, Path]


class OperationState(str, Enum):
    """States an engine operation moves through."""
    VALIDATING = "validating"
    LOOKUP = "lookup"
    SPLITTING = "splitting"
    PLACING = "placing"
    TRANSFERRING = "transferring"
    MERGING = "merging"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


StateListener = Callable[[str, OperationState], None]


@dataclass(frozen=True)
class UploadReport:
    name: str
    total_size_bytes: int
    chunk_count: int
    accounts: Tuple[str, ...]


@dataclass(frozen=True)
class DownloadReport:
    name: str
    dest_path: Path
    total_size_bytes: int
    chunk_count: int


@dataclass(frozen=True)
class DeleteReport:
    name: str
    chunk_count: int
    failed_chunks: int
    failures: Tuple[TransferResult, ...] = field(default_factory=tuple)


class _OperationTracker:
    """Logs state transitions of one operation and forwards them to a listener."""

    def __init__(self, operation: str, subject: str, listener: Optional[StateListener]):
        self.operation = operation
        self.subject = subject
        self.listener = listener
        self.state: Optional[OperationState] = None

    def advance(self, state: OperationState) -> None:
        logger.debug(f"{self.operation} '{self.subject}': {self.state and self.state.value} -> {state.value}")
        self.state = state
        if self.listener is not None:
            self.listener(self.operation, state)

    def __enter__(self) -> "_OperationTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self.advance(OperationState.DONE)
        else:
            failed_in = self.state.value if self.state else "start"
            logger.error(f"{self.operation} '{self.subject}' failed while {failed_in}: {exc}")
            self.advance(OperationState.FAILED)
        return False


class DistributionEngine:
    """
    Distributes files across linked accounts and reconstructs them.

    The engine owns the catalog for the duration of each operation. Only one
    operation runs at a time per engine; the capacity ledger lock still
    guards every usage change, including commits from worker threads.
    """

    def __init__(
        self,
        catalog: Catalog,
        backend_factory: BackendFactory,
        scheduler: Optional[TransferScheduler] = None,
        policy: Optional[FirstFitPlacementPolicy] = None,
        chunk_size: int = CHUNK_SIZE_BYTES,
        staging_root: Optional[PathLike] = None,
        cleanup_on_failure: bool = True,
        authorizer: Optional[Authorizer] = None,
        state_listener: Optional[StateListener] = None,
        default_capacity_bytes: int = DEFAULT_ACCOUNT_CAPACITY_BYTES,
    ):
        """
        Args:
            catalog: Loaded catalog
            backend_factory: Creates a backend session for an account
            scheduler: Transfer scheduler (default: 8 concurrent transfers, no progress output)
            policy: Placement policy (default: first-fit)
            chunk_size: Chunk size in bytes
            staging_root: Parent directory for per-operation staging areas
            cleanup_on_failure: Delete already uploaded chunks when an upload fails
            authorizer: Runs the interactive authorization flow for an account
            state_listener: Called with (operation, state) on every transition
            default_capacity_bytes: Capacity assumed when an account reports none
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1 byte, got {chunk_size}")
        self.catalog = catalog
        self.backend_factory = backend_factory
        self.scheduler = scheduler or TransferScheduler()
        self.policy = policy or FirstFitPlacementPolicy()
        self.chunk_size = chunk_size
        self.staging_root = Path(staging_root).expanduser() if staging_root is not None else None
        self.cleanup_on_failure = cleanup_on_failure
        self.authorizer = authorizer
        self.state_listener = state_listener
        self.default_capacity_bytes = default_capacity_bytes
        self.ledger = CapacityLedger(catalog.accounts)

    def upload(self, local_path: PathLike, logical_name: Optional[str] = None) -> UploadReport:
        """
        Split a local file, place its chunks and upload them.

        Raises:
            InvalidNameError: If the logical name is empty or contains a path separator
            LocalFileError: If local_path is not a regular file or local I/O fails
            DuplicateFileError: If the logical name is already in the catalog
            NoAccountsLinkedError: If no account is linked
            EmptyFileError: If the file is empty
            InsufficientCapacityError: If some chunk fits on no account (nothing is transferred)
            TransferFailureError: If any chunk upload failed (no catalog entry is written)
            CatalogIOError: If the catalog cannot be saved after a successful upload
        """
        path = Path(local_path).expanduser()
        name = logical_name or path.name

        with _OperationTracker("upload", name, self.state_listener) as tracker:
            tracker.advance(OperationState.VALIDATING)
            check_logical_name(name)
            if self.catalog.contains(name):
                raise DuplicateFileError(name)
            account_ids = [a.account_id for a in self.catalog.list_accounts()]
            if not account_ids:
                raise NoAccountsLinkedError("No linked accounts. Use 'add-account' first.")
            if not path.is_file():
                raise LocalFileError(f"Not a readable file: {path}")

            with _local_io(f"Cannot upload {path}"), staging_area(self.staging_root) as staging:
                tracker.advance(OperationState.SPLITTING)
                with open(path, 'rb') as source:
                    staged = split_to_files(source, self.chunk_size, staging, name)
                total_size = sum(s.size_bytes for s in staged)
                logger.info(f"Split '{name}' into {len(staged)} chunk(s) ({total_size} bytes)")

                tracker.advance(OperationState.PLACING)
                choices, holds = self._place([s.size_bytes for s in staged], account_ids)
                used_accounts = _unique(c.account_id for c in choices)
                try:
                    with self._sessions(used_accounts) as sessions:
                        folder_ids = self._prepare_folders(name, sessions)

                        tracker.advance(OperationState.TRANSFERRING)
                        jobs = [
                            UploadJob(
                                part_number=chunk.part_number,
                                path=chunk.path,
                                remote_name=chunk.path.name,
                                folder_id=folder_ids[choice.account_id],
                                backend=sessions[choice.account_id],
                                size_bytes=chunk.size_bytes,
                                account_id=choice.account_id,
                                on_success=self._commit_hook(holds[chunk.part_number]),
                                on_failure=self._cancel_hook(holds[chunk.part_number]),
                            )
                            for chunk, choice in zip(staged, choices)
                        ]
                        results = self.scheduler.run_uploads(jobs, label=f"Uploading {name}")

                        failures = [r for r in results if not r.succeeded]
                        if failures:
                            orphaned = self._handle_failed_upload(name, results, choices, sessions)
                            raise TransferFailureError(
                                "upload", failures, len(results), orphaned_chunks=orphaned
                            )
                except Exception:
                    # settled holds are ignored by cancel
                    for hold in holds.values():
                        self.ledger.cancel(hold)
                    raise

                tracker.advance(OperationState.COMMITTING)
                choice_by_part = {c.part_number: c for c in choices}
                managed_file = ManagedFile(
                    name=name,
                    total_size_bytes=total_size,
                    chunks=tuple(
                        ChunkRecord(
                            part_number=r.part_number,
                            account_id=choice_by_part[r.part_number].account_id,
                            remote_id=r.remote_id,
                            size_bytes=choice_by_part[r.part_number].size_bytes,
                        )
                        for r in results
                    ),
                    folder_ids=folder_ids,
                )
                self.catalog.put(name, managed_file)
                self.ledger.changed = False
                self.catalog.save()

        logger.info(f"Uploaded '{name}': {len(choices)} chunk(s) on {len(used_accounts)} account(s)")
        return UploadReport(
            name=name,
            total_size_bytes=total_size,
            chunk_count=len(choices),
            accounts=tuple(used_accounts),
        )

    def download(self, name: str, dest_path: PathLike) -> DownloadReport:
        """
        Fetch every chunk of a file and reassemble it at dest_path.

        Nothing is written to dest_path unless all chunks arrived and merged.

        Raises:
            FileNotFoundError: If name is not in the catalog
            TransferFailureError: If any chunk download failed
            IncompleteChunkSetError: If the recorded chunks are not parts 1..N
            LocalFileError: If staging or writing the destination fails
        """
        with _OperationTracker("download", name, self.state_listener) as tracker:
            tracker.advance(OperationState.LOOKUP)
            managed_file = self.catalog.get(name)
            chunks = managed_file.ordered_chunks()

            dest = Path(dest_path).expanduser()
            if dest.is_dir():
                dest = dest / name

            with self._sessions(managed_file.accounts_used()) as sessions, \
                    _local_io(f"Cannot download '{name}' to {dest}"), \
                    staging_area(self.staging_root) as staging:
                tracker.advance(OperationState.TRANSFERRING)
                jobs = [
                    DownloadJob(
                        part_number=chunk.part_number,
                        remote_id=chunk.remote_id,
                        dest_path=staging / chunk_file_name(name, chunk.part_number),
                        backend=sessions[chunk.account_id],
                        size_bytes=chunk.size_bytes,
                        account_id=chunk.account_id,
                    )
                    for chunk in chunks
                ]
                results = self.scheduler.run_downloads(jobs, label=f"Downloading {name}")

                failures = [r for r in results if not r.succeeded]
                if failures:
                    raise TransferFailureError("download", failures, len(results))

                tracker.advance(OperationState.MERGING)
                dest.parent.mkdir(parents=True, exist_ok=True)
                written = self._merge_into(dest, [(job.part_number, job.dest_path) for job in jobs],
                                           managed_file.total_size_bytes)

        logger.info(f"Downloaded '{name}' ({written} bytes) to {dest}")
        return DownloadReport(
            name=name,
            dest_path=dest,
            total_size_bytes=written,
            chunk_count=len(chunks),
        )

    def delete(self, name: str) -> DeleteReport:
        """
        Remove every remote chunk of a file, then its catalog entry.

        Chunk delete failures are logged and counted but do not stop the
        operation; the catalog entry is removed and its capacity released
        regardless.

        Raises:
            FileNotFoundError: If name is not in the catalog (nothing changes)
            CatalogIOError: If the catalog cannot be saved
        """
        with _OperationTracker("delete", name, self.state_listener) as tracker:
            tracker.advance(OperationState.LOOKUP)
            managed_file = self.catalog.get(name)
            chunks = managed_file.ordered_chunks()

            sessions: Dict[str, StorageBackend] = {}
            unreachable: List[TransferResult] = []
            try:
                for account_id in managed_file.accounts_used():
                    try:
                        sessions[account_id] = self._authenticated_backend(self.catalog.get_account(account_id))
                    except DDriveException as e:
                        logger.warning(f"Cannot reach {account_id} to delete chunks of '{name}': {e}")
                        unreachable.extend(
                            TransferResult(part_number=c.part_number, remote_id=c.remote_id, error=str(e))
                            for c in chunks if c.account_id == account_id
                        )

                tracker.advance(OperationState.TRANSFERRING)
                jobs = [
                    DeleteJob(
                        part_number=chunk.part_number,
                        remote_id=chunk.remote_id,
                        backend=sessions[chunk.account_id],
                        account_id=chunk.account_id,
                    )
                    for chunk in chunks if chunk.account_id in sessions
                ]
                results = self.scheduler.run_deletes(jobs)
            finally:
                _close_sessions(sessions)

            failures = sorted(
                [r for r in results if not r.succeeded] + unreachable,
                key=lambda r: r.part_number,
            )
            for failure in failures:
                logger.warning(f"Could not delete chunk {failure.part_number} of '{name}': {failure.error}")

            tracker.advance(OperationState.COMMITTING)
            self.catalog.remove(name)
            for chunk in chunks:
                try:
                    self.ledger.release(chunk.account_id, chunk.size_bytes)
                except UnknownAccountError:
                    logger.warning(
                        f"Chunk {chunk.part_number} of '{name}' names unlinked account "
                        f"{chunk.account_id}; no capacity to release"
                    )
            self.ledger.changed = False
            self.catalog.save()

        if failures:
            logger.warning(f"Deleted '{name}' with {len(failures)}/{len(chunks)} remote chunk(s) left behind")
        else:
            logger.info(f"Deleted '{name}' ({len(chunks)} chunk(s))")
        return DeleteReport(
            name=name,
            chunk_count=len(chunks),
            failed_chunks=len(failures),
            failures=tuple(failures),
        )

    def link_account(
        self,
        account_id: str,
        token_path: PathLike,
        total_bytes: Optional[int] = None,
    ) -> StorageAccount:
        """
        Link an account (or refresh an existing link) and persist the catalog.

        When total_bytes is None the account's storage quota is queried; the
        default capacity is used if the account reports no limit or the
        query fails.
        """
        account = StorageAccount(
            account_id=account_id,
            token_path=str(token_path),
            total_bytes=total_bytes if total_bytes is not None else self.default_capacity_bytes,
        )

        if total_bytes is None:
            backend: Optional[StorageBackend] = None
            try:
                backend = self._authenticated_backend(account)
                quota = backend.get_storage_quota()
            except RemoteRequestError as e:
                logger.warning(f"Could not read storage quota for {account_id}: {e}; assuming default")
                quota = None
            finally:
                if backend is not None:
                    backend.close()
            if quota:
                account.total_bytes = quota

        linked = self.catalog.add_account(account)
        self.catalog.save()
        return linked

    def list_files(self) -> List[ManagedFile]:
        return self.catalog.snapshot().files

    def list_accounts(self) -> List[StorageAccount]:
        return self.catalog.snapshot().accounts

    def snapshot(self) -> CatalogSnapshot:
        return self.catalog.snapshot()

    def _place(
        self, chunk_sizes: List[int], account_ids: List[str]
    ) -> Tuple[List[AccountChoice], Dict[int, Hold]]:
        """Assign accounts and hold their capacity in one ledger critical section."""
        with self.ledger.locked():
            choices = self.policy.assign(chunk_sizes, self.ledger, account_ids)
            holds: Dict[int, Hold] = {}
            try:
                for choice in choices:
                    holds[choice.part_number] = self.ledger.hold(choice.account_id, choice.size_bytes)
            except Exception:
                for hold in holds.values():
                    self.ledger.cancel(hold)
                raise
        return choices, holds

    def _commit_hook(self, hold: Hold) -> Callable[[str], None]:
        return lambda remote_id: self.ledger.commit(hold)

    def _cancel_hook(self, hold: Hold) -> Callable[[], None]:
        return lambda: self.ledger.cancel(hold)

    def _authenticated_backend(self, account: StorageAccount) -> StorageBackend:
        """Create a backend session, running the authorizer once if the account needs it."""
        try:
            return self._new_session(account)
        except AuthenticationRequiredError as e:
            if self.authorizer is None:
                raise
            logger.warning(f"{e}; starting authorization flow")
            self.authorizer(account)
            return self._new_session(account)

    def _new_session(self, account: StorageAccount) -> StorageBackend:
        backend = self.backend_factory(account)
        try:
            backend.authenticate()
        except BaseException:
            backend.close()
            raise
        return backend

    @contextmanager
    def _sessions(self, account_ids: Iterable[str]) -> Iterator[Dict[str, StorageBackend]]:
        """Authenticate every account before any transfer starts, in the calling thread.

        Every session opened here is closed when the block exits.
        """
        sessions: Dict[str, StorageBackend] = {}
        try:
            for account_id in account_ids:
                sessions[account_id] = self._authenticated_backend(self.catalog.get_account(account_id))
            yield sessions
        finally:
            _close_sessions(sessions)

    def _prepare_folders(self, name: str, sessions: Dict[str, StorageBackend]) -> Dict[str, str]:
        """Resolve <root>/<name> on every account that will receive chunks."""
        folder_ids = {}
        for account_id, backend in sessions.items():
            root_id = backend.find_or_create_folder(REMOTE_ROOT_FOLDER_NAME, None)
            folder_ids[account_id] = backend.find_or_create_folder(name, root_id)
            logger.debug(f"Using folder {folder_ids[account_id]} on {account_id} for '{name}'")
        return folder_ids

    def _handle_failed_upload(
        self,
        name: str,
        results: List[TransferResult],
        choices: List[AccountChoice],
        sessions: Dict[str, StorageBackend],
    ) -> int:
        """
        Apply the cleanup policy after a failed upload.

        Returns:
            Number of uploaded chunks that remain on the remote accounts
        """
        choice_by_part = {c.part_number: c for c in choices}
        uploaded = [r for r in results if r.remote_id is not None]

        if not uploaded:
            self._save_usage()
            return 0

        if not self.cleanup_on_failure:
            logger.warning(
                f"Upload of '{name}' failed; leaving {len(uploaded)} uploaded chunk(s) in place "
                f"(cleanup on failure is disabled)"
            )
            self._save_usage()
            return len(uploaded)

        logger.info(f"Upload of '{name}' failed; removing {len(uploaded)} uploaded chunk(s)")
        jobs = [
            DeleteJob(
                part_number=r.part_number,
                remote_id=r.remote_id,
                backend=sessions[choice_by_part[r.part_number].account_id],
                account_id=choice_by_part[r.part_number].account_id,
            )
            for r in uploaded
        ]
        cleanup_results = {r.part_number: r for r in self.scheduler.run_deletes(jobs)}

        orphaned = 0
        for result in uploaded:
            if not cleanup_results[result.part_number].succeeded:
                orphaned += 1
                continue
            if result.succeeded:
                choice = choice_by_part[result.part_number]
                self.ledger.release(choice.account_id, choice.size_bytes)

        if orphaned:
            logger.warning(f"{orphaned} chunk(s) of '{name}' could not be removed and remain orphaned")
        self._save_usage()
        return orphaned

    def _save_usage(self) -> None:
        """Persist capacity changes made by a failed operation."""
        if not self.ledger.changed:
            return
        self.ledger.changed = False
        self.catalog.mark_dirty()
        try:
            self.catalog.save()
        except CatalogIOError as e:
            logger.error(f"Could not persist capacity usage: {e}")

    @staticmethod
    def _merge_into(dest: Path, chunk_paths: List[Tuple[int, Path]], expected_size: int) -> int:
        """Merge into a temporary file beside dest, then move it into place."""
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".partial", dir=str(dest.parent))
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, 'wb') as out:
                written = merge(chunk_paths, out)
            if written != expected_size:
                raise IncompleteChunkSetError(
                    f"Reassembled {written} bytes, catalog records {expected_size}"
                )
            os.replace(tmp_path, dest)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return written


def check_logical_name(name: str) -> None:
    """
    Reject logical names that cannot be used as a staging file or remote folder name.

    Raises:
        InvalidNameError: If the name is empty, '.' or '..', or contains a path separator
    """
    if not name or not name.strip():
        raise InvalidNameError(name, "name is empty")
    if name in ('.', '..'):
        raise InvalidNameError(name, "name is a relative path component")
    separators = {'/', os.sep}
    if os.altsep:
        separators.add(os.altsep)
    if any(sep in name for sep in separators):
        raise InvalidNameError(name, "name must not contain a path separator")
    if '\0' in name:
        raise InvalidNameError(name, "name must not contain a NUL character")


@contextmanager
def _local_io(description: str) -> Iterator[None]:
    """Report local filesystem failures as LocalFileError."""
    try:
        yield
    except OSError as e:
        raise LocalFileError(f"{description}: {e}") from e


def _close_sessions(sessions: Dict[str, StorageBackend]) -> None:
    for account_id, backend in sessions.items():
        backend.close()
        logger.debug(f"Closed session for {account_id}")


def _unique(items: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
