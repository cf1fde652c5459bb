"""Custom exception classes for the distribution engine."""

from typing import List, Optional, Sequence


class DDriveException(Exception):
    """
    Base exception class for all D-Drive errors.
    """
    pass


class AuthenticationRequiredError(DDriveException):
    """
    Raised when an account has no usable session and must be re-authorized.
    """

    def __init__(self, account_id: str, reason: str = "no valid session"):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Authentication required for {account_id}: {reason}")


class InsufficientCapacityError(DDriveException):
    """
    Raised when no linked account can hold a chunk.
    """

    def __init__(self, part_number: Optional[int], size_bytes: int, account_id: Optional[str] = None):
        self.part_number = part_number
        self.size_bytes = size_bytes
        self.account_id = account_id
        if account_id is not None:
            message = f"Account {account_id} cannot hold {size_bytes} more bytes"
        else:
            message = f"No account has room for chunk {part_number} ({size_bytes} bytes)"
        super().__init__(message)


class FileNotFoundError(DDriveException):
    """
    Raised when a logical file name is not in the catalog.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No file named '{name}' in the catalog")


class DuplicateFileError(DDriveException):
    """
    Raised when a logical file name is already in the catalog.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"A file named '{name}' already exists in the catalog")


class TransferFailureError(DDriveException):
    """
    Raised when one or more chunk transfers of an upload or download failed.

    Carries the complete failure set, never just the first one.
    """

    def __init__(self, operation: str, failures: Sequence, total: int, orphaned_chunks: int = 0):
        self.operation = operation
        self.failures: List = list(failures)
        self.total = total
        self.orphaned_chunks = orphaned_chunks
        parts = ", ".join(str(f.part_number) for f in self.failures)
        super().__init__(
            f"{operation} failed: {len(self.failures)}/{total} chunk transfer(s) failed (parts {parts})"
        )


class IncompleteChunkSetError(DDriveException):
    """
    Raised when chunk part numbers are not exactly 1..N.
    """
    pass


class CatalogIOError(DDriveException):
    """
    Raised when the catalog document cannot be read or written.
    """
    pass


class EmptyFileError(DDriveException):
    """
    Raised when attempting to distribute a zero-byte file.
    """
    pass


class NoAccountsLinkedError(DDriveException):
    """
    Raised when an upload is attempted with no linked accounts.
    """
    pass


class UnknownAccountError(DDriveException):
    """
    Raised when an account id is not present in the catalog.
    """

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Unknown account: {account_id}")


class LocalFileError(DDriveException):
    """
    Raised when a local source path is missing or is not a regular file.
    """
    pass


class InvalidNameError(DDriveException):
    """
    Raised when a logical file name cannot be used as a chunk or folder name.
    """

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid file name '{name}': {reason}")


class ConfigurationError(DDriveException):
    """
    Raised when a required local setting or file (e.g., OAuth client credentials) is missing or invalid.
    """
    pass


class AuthorizationFlowError(DDriveException):
    """
    Raised when the interactive authorization flow does not produce usable tokens.
    """
    pass


class RemoteRequestError(DDriveException):
    """
    Raised when a single remote backend request fails.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
