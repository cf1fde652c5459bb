"""Splits byte streams into fixed-size chunks and merges them back in part order."""

import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, List, Optional, Tuple, Union

from common.constants import CHUNK_NAME_SUFFIX, STAGING_DIR_PREFIX, STREAM_PIECE_SIZE_BYTES
from common.logging_config import get_logger
from engine.exceptions import EmptyFileError, IncompleteChunkSetError

logger = get_logger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class StagedChunk:
    """A chunk written to the local staging area, ready for upload."""
    part_number: int
    path: Path
    size_bytes: int


def chunk_file_name(base_name: str, part_number: int) -> str:
    """Name used for a chunk both in staging and on the remote account."""
    return f"{base_name}{CHUNK_NAME_SUFFIX}{part_number}"


def split(source: BinaryIO, chunk_size: int) -> Iterator[Tuple[int, bytes]]:
    """
    Lazily split a binary stream into ordered chunks.

    Args:
        source: Readable binary stream, consumed forward-only
        chunk_size: Chunk size in bytes (>= 1)

    Yields:
        (part_number, data) with part numbers starting at 1. Only the last
        chunk may be shorter than chunk_size; an empty source yields nothing.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1 byte, got {chunk_size}")

    part_number = 1
    while True:
        data = _read_exactly(source, chunk_size)
        if not data:
            break
        yield part_number, data
        part_number += 1


def _read_exactly(source: BinaryIO, size: int) -> bytes:
    """Read up to size bytes, looping over short reads until EOF."""
    pieces: List[bytes] = []
    remaining = size
    while remaining > 0:
        piece = source.read(remaining)
        if not piece:
            break
        pieces.append(piece)
        remaining -= len(piece)
    return b"".join(pieces)


def split_to_files(
    source: BinaryIO,
    chunk_size: int,
    staging_dir: PathLike,
    base_name: str,
) -> List[StagedChunk]:
    """
    Split a stream into chunk files inside staging_dir.

    Only one chunk is held in memory at a time.

    Raises:
        EmptyFileError: If the source produced no chunks
    """
    staging_dir = Path(staging_dir)
    staged: List[StagedChunk] = []

    for part_number, data in split(source, chunk_size):
        path = staging_dir / chunk_file_name(base_name, part_number)
        path.write_bytes(data)
        staged.append(StagedChunk(part_number=part_number, path=path, size_bytes=len(data)))
        logger.debug(f"Staged chunk {part_number} ({len(data)} bytes) at {path}")

    if not staged:
        raise EmptyFileError(f"'{base_name}' is empty; a zero-byte file cannot be distributed")

    return staged


def check_part_numbers(part_numbers: Iterable[int]) -> List[int]:
    """
    Verify part numbers form exactly 1..N with N >= 1.

    Returns:
        The part numbers sorted ascending

    Raises:
        IncompleteChunkSetError: On gaps, duplicates, a wrong start or no parts
    """
    ordered = sorted(part_numbers)
    if not ordered:
        raise IncompleteChunkSetError("No chunks to merge")

    expected = list(range(1, len(ordered) + 1))
    if ordered != expected:
        missing = sorted(set(expected) - set(ordered))
        duplicates = sorted({p for p in ordered if ordered.count(p) > 1})
        raise IncompleteChunkSetError(
            f"Chunk parts are not contiguous from 1: got {ordered}"
            f" (missing={missing}, duplicates={duplicates})"
        )
    return ordered


def merge(chunk_paths: Iterable[Tuple[int, PathLike]], destination: BinaryIO) -> int:
    """
    Concatenate chunk files into destination in ascending part order.

    Args:
        chunk_paths: (part_number, path) pairs in any order
        destination: Writable binary stream

    Returns:
        Number of bytes written

    Raises:
        IncompleteChunkSetError: If part numbers are not exactly 1..N
    """
    by_part = sorted(((p, Path(path)) for p, path in chunk_paths), key=lambda item: item[0])
    check_part_numbers(p for p, _ in by_part)

    written = 0
    for part_number, path in by_part:
        with open(path, 'rb') as f:
            while True:
                piece = f.read(STREAM_PIECE_SIZE_BYTES)
                if not piece:
                    break
                destination.write(piece)
                written += len(piece)
        logger.debug(f"Merged chunk {part_number} from {path}")

    return written


@contextmanager
def staging_area(root: Optional[PathLike] = None, prefix: str = STAGING_DIR_PREFIX) -> Iterator[Path]:
    """
    Create a fresh staging directory and remove it on every exit path.

    Args:
        root: Parent directory (created if missing); system temp dir if None
        prefix: Directory name prefix
    """
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(root) if root is not None else None))
    logger.debug(f"Created staging area {path}")
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug(f"Removed staging area {path}")
