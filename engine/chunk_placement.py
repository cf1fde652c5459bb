"""Chunk placement across linked accounts."""

from dataclasses import dataclass
from typing import Dict, List, Sequence

from common.logging_config import get_logger
from engine.capacity_ledger import CapacityLedger
from engine.exceptions import InsufficientCapacityError, NoAccountsLinkedError

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccountChoice:
    """Placement decision for one chunk."""
    part_number: int
    account_id: str
    size_bytes: int


class FirstFitPlacementPolicy:
    """
    Assigns every chunk of a file to exactly one account.

    Strategy: first-fit over the given account order. Each chunk goes to the
    first account whose remaining capacity (after the chunks already assigned
    in this call) can hold it. No striping below chunk granularity and no
    load balancing, so reconstruction is a plain concatenation.
    """

    def assign(
        self,
        chunk_sizes: Sequence[int],
        ledger: CapacityLedger,
        accounts: Sequence[str],
    ) -> List[AccountChoice]:
        """
        Choose an account for each chunk.

        Args:
            chunk_sizes: Chunk sizes in part order (part 1 first)
            ledger: Capacity ledger to read starting availability from
            accounts: Account ids in stable iteration order

        Returns:
            One AccountChoice per chunk, in part order

        Raises:
            NoAccountsLinkedError: If accounts is empty
            InsufficientCapacityError: Naming the first chunk that fits nowhere
        """
        if not accounts:
            raise NoAccountsLinkedError("No linked accounts. Use 'add-account' first.")

        working: Dict[str, int] = {
            account_id: ledger.available_bytes(account_id) for account_id in accounts
        }
        choices: List[AccountChoice] = []

        for part_number, size in enumerate(chunk_sizes, start=1):
            chosen = None
            for account_id in accounts:
                if working[account_id] >= size:
                    chosen = account_id
                    break

            if chosen is None:
                logger.warning(
                    f"Placement failed for chunk {part_number} ({size} bytes); "
                    f"remaining capacity: {working}"
                )
                raise InsufficientCapacityError(part_number, size)

            working[chosen] -= size
            choices.append(AccountChoice(part_number=part_number, account_id=chosen, size_bytes=size))

        logger.info(
            f"Placed {len(choices)} chunk(s) across "
            f"{len({c.account_id for c in choices})} account(s)"
        )
        return choices
