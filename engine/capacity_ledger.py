"""Per-account capacity accounting with tentative holds (two-phase reservation)."""

import itertools
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, MutableMapping

from common.logging_config import get_logger
from common.types import StorageAccount
from engine.exceptions import InsufficientCapacityError, UnknownAccountError

logger = get_logger(__name__)


@dataclass(frozen=True)
class Hold:
    """
    Tentative reservation of capacity on one account.

    Attributes:
        hold_id: Ledger-unique identifier
        account_id: Account the bytes are held on
        size_bytes: Number of bytes held
    """
    hold_id: int
    account_id: str
    size_bytes: int


class CapacityLedger:
    """
    Tracks total, used and held capacity for every linked account.

    Operates directly on the catalog's StorageAccount objects so committed
    usage is persisted with the catalog. Every read and mutation goes through
    one re-entrant lock; two transfers finishing on the same account
    serialize their commits.
    """

    def __init__(self, accounts: MutableMapping[str, StorageAccount]):
        """
        Args:
            accounts: Live account mapping (usually Catalog.accounts)
        """
        self._accounts = accounts
        self._lock = threading.RLock()
        self._holds: Dict[int, Hold] = {}
        self._hold_ids = itertools.count(1)
        self.changed = False

    @contextmanager
    def locked(self) -> Iterator["CapacityLedger"]:
        """Hold the ledger lock so a placement and its holds are one critical section."""
        with self._lock:
            yield self

    def _account(self, account_id: str) -> StorageAccount:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise UnknownAccountError(account_id) from None

    def held_bytes(self, account_id: str) -> int:
        with self._lock:
            return sum(h.size_bytes for h in self._holds.values() if h.account_id == account_id)

    def available_bytes(self, account_id: str) -> int:
        """Total minus used minus bytes held by unfinished transfers."""
        with self._lock:
            account = self._account(account_id)
            return account.total_bytes - account.used_bytes - self.held_bytes(account_id)

    def hold(self, account_id: str, size_bytes: int) -> Hold:
        """
        Tentatively reserve capacity ahead of a transfer.

        Raises:
            InsufficientCapacityError: If the bytes do not fit
        """
        with self._lock:
            if size_bytes > self.available_bytes(account_id):
                raise InsufficientCapacityError(None, size_bytes, account_id=account_id)
            hold = Hold(next(self._hold_ids), account_id, size_bytes)
            self._holds[hold.hold_id] = hold
            logger.debug(f"Held {size_bytes} bytes on {account_id} [hold={hold.hold_id}]")
            return hold

    def commit(self, hold: Hold) -> None:
        """Turn a hold into used capacity once its transfer has succeeded."""
        with self._lock:
            if self._holds.pop(hold.hold_id, None) is None:
                raise ValueError(f"Hold {hold.hold_id} is not pending")
            self.reserve(hold.account_id, hold.size_bytes)

    def cancel(self, hold: Hold) -> None:
        """Drop a hold whose transfer failed. Unknown holds are ignored."""
        with self._lock:
            if self._holds.pop(hold.hold_id, None) is not None:
                logger.debug(f"Cancelled hold {hold.hold_id} on {hold.account_id}")

    def reserve(self, account_id: str, size_bytes: int) -> None:
        """
        Add committed usage to an account.

        Raises:
            InsufficientCapacityError: If usage would exceed total capacity
        """
        with self._lock:
            account = self._account(account_id)
            if account.used_bytes + size_bytes > account.total_bytes:
                raise InsufficientCapacityError(None, size_bytes, account_id=account_id)
            account.used_bytes += size_bytes
            self.changed = True

    def release(self, account_id: str, size_bytes: int) -> None:
        """Return capacity after a delete, clamping usage at zero."""
        with self._lock:
            account = self._account(account_id)
            remaining = account.used_bytes - size_bytes
            if remaining < 0:
                logger.warning(
                    f"Capacity ledger inconsistency on {account_id}: releasing {size_bytes} bytes "
                    f"with only {account.used_bytes} recorded as used; clamping to 0"
                )
                remaining = 0
            account.used_bytes = remaining
            self.changed = True

    def pending_holds(self) -> int:
        with self._lock:
            return len(self._holds)
