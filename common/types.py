"""Shared data type definitions (StorageAccount, ChunkRecord, ManagedFile)."""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass
class StorageAccount:
    """
    A linked remote account and its capacity usage.

    `used_bytes` is only mutated through the CapacityLedger.
    """
    account_id: str
    token_path: str
    total_bytes: int
    used_bytes: int = 0

    @property
    def free_bytes(self) -> int:
        return self.total_bytes - self.used_bytes


@dataclass(frozen=True)
class ChunkRecord:
    """
    Placement record for a single stored chunk.
    """
    part_number: int
    account_id: str
    remote_id: str
    size_bytes: int


@dataclass(frozen=True)
class ManagedFile:
    """
    Complete metadata for a file distributed across accounts.
    """
    name: str
    total_size_bytes: int
    chunks: Tuple[ChunkRecord, ...]
    folder_ids: Dict[str, str] = field(default_factory=dict)

    def ordered_chunks(self) -> List[ChunkRecord]:
        """Chunks sorted by part number (record order is not significant)."""
        return sorted(self.chunks, key=lambda c: c.part_number)

    def accounts_used(self) -> List[str]:
        seen: List[str] = []
        for chunk in self.ordered_chunks():
            if chunk.account_id not in seen:
                seen.append(chunk.account_id)
        return seen
