"""Tests for CLI formatting helpers."""

import io

import pytest

from cli.utils import ProgressPrinter, format_file_size, format_table
from engine.transfer_scheduler import ProgressState


@pytest.mark.parametrize("size, expected", [
    (0, "0 B"),
    (512, "512 B"),
    (1024, "1.00 KiB"),
    (1536, "1.50 KiB"),
    (50 * 1024 * 1024, "50.00 MiB"),
    (15 * 1024 ** 3, "15.00 GiB"),
])
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_progress_printer_overwrites_line_until_finished():
    """Test that progress lines start with a carriage return and end with a newline."""
    stream = io.StringIO()
    printer = ProgressPrinter(stream)

    printer(ProgressState("Uploading f", 512, 1024, elapsed_seconds=1.0))
    printer(ProgressState("Uploading f", 1024, 1024, elapsed_seconds=2.0, finished=True))

    output = stream.getvalue()
    assert output.startswith("\rUploading f: 512 B / 1.00 KiB")
    assert "50.0%" in output
    assert "100.0%" in output
    assert "512 B/s" in output
    assert output.endswith("\n")
    assert output.count("\n") == 1


def test_progress_printer_zero_total():
    stream = io.StringIO()

    ProgressPrinter(stream)(ProgressState("Deleting", 0, 0, elapsed_seconds=0.0, finished=True))

    assert "100.0%" in stream.getvalue()


def test_format_table_aligns_columns():
    table = format_table(["NAME", "SIZE"], [["a", "1 B"], ["longer-name", "20 B"]])

    lines = table.splitlines()
    assert lines[0] == "NAME         SIZE"
    assert lines[1] == "-----------  ----"
    assert lines[3] == "longer-name  20 B"
