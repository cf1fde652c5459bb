"""Interface the engine uses to talk to a remote storage account."""

from typing import Callable, Optional, Protocol

from common.types import StorageAccount

ProgressCallback = Callable[[int], None]
"""Receives the cumulative number of bytes transferred for one chunk."""


class StorageBackend(Protocol):
    """
    One authenticated session against one remote account.

    Implementations must be safe to call from several worker threads at once
    after authenticate() has returned.
    """

    def authenticate(self) -> None:
        """Make sure the session holds a valid access token.

        Raises:
            AuthenticationRequiredError: If the account must be re-authorized
        """
        ...

    def find_or_create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        ...

    def upload_chunk(
        self,
        data: bytes,
        remote_name: str,
        folder_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Store one chunk and return its remote id."""
        ...

    def download_chunk(self, remote_id: str, on_progress: Optional[ProgressCallback] = None) -> bytes:
        ...

    def delete_chunk(self, remote_id: str) -> None:
        """Remove one chunk. An object that is already gone counts as deleted."""
        ...

    def get_storage_quota(self) -> Optional[int]:
        """Total capacity in bytes, or None when the account reports no limit."""
        ...

    def close(self) -> None:
        """Release the session's connections. The session is not used afterwards."""
        ...


BackendFactory = Callable[[StorageAccount], StorageBackend]

Authorizer = Callable[[StorageAccount], None]
