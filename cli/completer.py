"""Custom completer for D-Drive CLI with path and file name autocompletion."""

import shlex
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from cli.constants import COMMANDS, FILE_NAME_COMMANDS


class DDriveCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Local path completion for the 'upload' command and the save path of 'download'
    - Managed file name completion for 'download' and 'delete'
    """

    def __init__(self, list_names: Optional[Callable[[], List[str]]] = None):
        """
        Args:
            list_names: Returns the logical names in the catalog
        """
        self.list_names = list_names

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        """
        Generate completions based on cursor position and context.
        """
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        current_word = "" if is_typing_new_token else tokens[-1]
        arg_index = len(tokens) - 1 if is_typing_new_token else len(tokens) - 2

        if command == "upload" and arg_index == 0:
            yield from self._complete_local_paths(current_word)
        elif command in FILE_NAME_COMMANDS and arg_index == 0:
            yield from self._complete_file_names(current_word)
        elif command == "download" and arg_index == 1:
            yield from self._complete_local_paths(current_word)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_file_names(self, partial: str) -> Iterable[Completion]:
        """Complete logical names of managed files, quoting names with spaces."""
        if self.list_names is None:
            return
        for name in sorted(self.list_names()):
            if name.startswith(partial):
                yield Completion(_quote(name), start_position=-len(partial), display=name)

    def _complete_local_paths(self, partial: str) -> Iterable[Completion]:
        """Complete entries of the directory the partial path points into."""
        expanded = Path(partial).expanduser() if partial else Path(".")
        if partial.endswith("/") or not partial:
            directory, prefix = expanded, ""
        else:
            directory, prefix = expanded.parent, expanded.name

        if not directory.is_dir():
            return

        typed_dir = partial[: len(partial) - len(prefix)]
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            return

        for entry in entries:
            if not entry.name.startswith(prefix):
                continue
            if entry.name.startswith(".") and not prefix.startswith("."):
                continue
            suffix = "/" if entry.is_dir() else ""
            yield Completion(
                f"{typed_dir}{entry.name}{suffix}",
                start_position=-len(partial),
                display=f"{entry.name}{suffix}",
            )


def _quote(name: str) -> str:
    return shlex.quote(name) if " " in name else name
