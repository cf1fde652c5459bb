"""Utility functions for CLI operations."""

import sys
from typing import TextIO

from cli.constants import GREEN, RED, RESET
from engine.transfer_scheduler import ProgressState


class ProgressPrinter:
    """Renders aggregated transfer progress on a single terminal line."""

    def __init__(self, stream: TextIO = None):
        """
        Initialize the progress printer.

        Args:
            stream: Output stream (defaults to sys.stdout at render time)
        """
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def __call__(self, state: ProgressState) -> None:
        """
        Display the current progress line, ending it when the batch finishes.

        Args:
            state: Aggregated state of the running batch
        """
        if state.total_bytes > 0:
            progress = min(100.0, (state.transferred_bytes / state.total_bytes) * 100)
        else:
            progress = 100.0
        color = GREEN if state.succeeded else RED
        transferred_str = format_file_size(state.transferred_bytes)
        total_str = format_file_size(state.total_bytes)
        speed_str = format_file_size(int(state.bytes_per_second))
        self.stream.write(
            f"\r{state.label}: {transferred_str} / {total_str} "
            f"({color}{progress:.1f}%{RESET}) {speed_str}/s"
        )
        if state.finished:
            self.stream.write('\n')
        self.stream.flush()


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def format_table(headers: list[str], rows: list[list[str]]) -> str:
    """Left-aligned plain text table with a dashed header rule."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(cells: list[str]) -> str:
        return "  ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)).rstrip()

    output = [line(headers), line(["-" * w for w in widths])]
    output.extend(line(row) for row in rows)
    return "\n".join(output)
