"""Tests for splitting and merging chunk streams."""

import io

import pytest

from engine.chunk_codec import (
    chunk_file_name,
    check_part_numbers,
    merge,
    split,
    split_to_files,
    staging_area,
)
from engine.exceptions import EmptyFileError, IncompleteChunkSetError

MB = 1024 * 1024


class ZeroStream(io.RawIOBase):
    """Readable stream of `size` zero bytes that never holds them all in memory."""

    def __init__(self, size):
        self.remaining = size

    def readable(self):
        return True

    def read(self, n=-1):
        if n is None or n < 0:
            n = self.remaining
        n = min(n, self.remaining, 4 * MB)
        self.remaining -= n
        return bytes(n)


class TrickleStream(io.BytesIO):
    """Returns at most 3 bytes per read call."""

    def read(self, n=-1):
        if n is None or n < 0 or n > 3:
            n = 3
        return super().read(n)


class TestSplit:
    """Test lazy splitting."""

    def test_splits_into_ordered_parts_starting_at_one(self):
        chunks = list(split(io.BytesIO(b"abcdefghij"), 4))

        assert chunks == [(1, b"abcd"), (2, b"efgh"), (3, b"ij")]

    def test_exact_multiple_has_no_trailing_empty_chunk(self):
        chunks = list(split(io.BytesIO(b"abcdef"), 3))

        assert [len(data) for _, data in chunks] == [3, 3]

    def test_empty_stream_yields_nothing(self):
        assert list(split(io.BytesIO(b""), 10)) == []

    def test_short_reads_are_filled(self):
        chunks = list(split(TrickleStream(b"0123456789"), 4))

        assert [data for _, data in chunks] == [b"0123", b"4567", b"89"]

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            list(split(io.BytesIO(b"abc"), 0))

    def test_120_megabyte_stream_gives_50_50_20(self):
        sizes = [len(data) for _, data in split(ZeroStream(120 * MB), 50 * MB)]

        assert sizes == [50 * MB, 50 * MB, 20 * MB]

    def test_split_is_lazy(self):
        source = io.BytesIO(b"x" * 100)
        iterator = split(source, 10)

        next(iterator)

        assert source.tell() == 10


class TestSplitToFiles:
    """Test splitting into the staging directory."""

    def test_writes_named_chunk_files(self, tmp_path):
        staged = split_to_files(io.BytesIO(b"hello world"), 5, tmp_path, "greeting.txt")

        assert [s.part_number for s in staged] == [1, 2, 3]
        assert [s.path.name for s in staged] == [
            "greeting.txt.part1",
            "greeting.txt.part2",
            "greeting.txt.part3",
        ]
        assert [s.path.read_bytes() for s in staged] == [b"hello", b" worl", b"d"]
        assert sum(s.size_bytes for s in staged) == 11

    def test_empty_source_raises(self, tmp_path):
        with pytest.raises(EmptyFileError):
            split_to_files(io.BytesIO(b""), 5, tmp_path, "empty.bin")

        assert list(tmp_path.iterdir()) == []


class TestMerge:
    """Test reassembly."""

    def _write_parts(self, directory, parts):
        paths = []
        for part_number, data in parts:
            path = directory / chunk_file_name("f", part_number)
            path.write_bytes(data)
            paths.append((part_number, path))
        return paths

    def test_round_trip(self, tmp_path):
        original = bytes(range(256)) * 7
        staged = split_to_files(io.BytesIO(original), 100, tmp_path, "f")
        out = io.BytesIO()

        written = merge([(s.part_number, s.path) for s in staged], out)

        assert out.getvalue() == original
        assert written == len(original)

    def test_merges_in_part_order_regardless_of_input_order(self, tmp_path):
        paths = self._write_parts(tmp_path, [(3, b"C"), (1, b"A"), (2, b"B")])
        out = io.BytesIO()

        merge(paths, out)

        assert out.getvalue() == b"ABC"

    def test_gap_in_parts_raises(self, tmp_path):
        paths = self._write_parts(tmp_path, [(1, b"A"), (3, b"C")])
        out = io.BytesIO()

        with pytest.raises(IncompleteChunkSetError):
            merge(paths, out)

        assert out.getvalue() == b""

    def test_no_parts_raises(self):
        with pytest.raises(IncompleteChunkSetError):
            merge([], io.BytesIO())


class TestCheckPartNumbers:
    """Test the 1..N invariant check."""

    def test_returns_sorted(self):
        assert check_part_numbers([2, 3, 1]) == [1, 2, 3]

    @pytest.mark.parametrize("parts", [[0, 1, 2], [1, 1, 2], [2, 3], [1, 2, 4]])
    def test_rejects_invalid_sets(self, parts):
        with pytest.raises(IncompleteChunkSetError):
            check_part_numbers(parts)


class TestStagingArea:
    """Test staging directory lifecycle."""

    def test_removed_after_use(self, tmp_path):
        with staging_area(tmp_path / "staging") as path:
            (path / "chunk").write_bytes(b"data")
            assert path.is_dir()

        assert not path.exists()
        assert list((tmp_path / "staging").iterdir()) == []

    def test_removed_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with staging_area(tmp_path) as path:
                (path / "chunk").write_bytes(b"data")
                raise RuntimeError("boom")

        assert not path.exists()
