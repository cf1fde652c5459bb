"""REPL with prompt_toolkit for user interaction."""

import os
import sys
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory

from cli.commands import (
    handle_add_account,
    handle_delete,
    handle_download,
    handle_list_accounts,
    handle_list_files,
    handle_upload,
)
from cli.completer import DDriveCompleter
from cli.constants import (
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
from cli.models import (
    AddAccountCommand,
    DeleteCommand,
    DownloadCommand,
    ListAccountsCommand,
    ListFilesCommand,
    UploadCommand,
)
from cli.parser import ParseError, parse_command
from engine.distribution_engine import DistributionEngine
from engine.exceptions import DDriveException


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    if sys.platform == "win32":
        os.system("cls")
    else:
        os.system("clear")


def show_logo() -> None:
    """Display D-Drive logo with ANSI colors."""
    print(LOGO)


def show_welcome() -> None:
    clear_screen()
    show_logo()
    print(WELCOME_TITLE)
    print(WELCOME_HELP)


def dispatch_command(cmd_obj, engine: Optional[DistributionEngine] = None) -> str:
    """Dispatch parsed command to appropriate handler."""
    if isinstance(cmd_obj, AddAccountCommand):
        return handle_add_account(cmd_obj, engine=engine)
    elif isinstance(cmd_obj, UploadCommand):
        return handle_upload(cmd_obj, engine=engine)
    elif isinstance(cmd_obj, DownloadCommand):
        return handle_download(cmd_obj, engine=engine)
    elif isinstance(cmd_obj, DeleteCommand):
        return handle_delete(cmd_obj, engine=engine)
    elif isinstance(cmd_obj, ListFilesCommand):
        return handle_list_files(cmd_obj, engine=engine)
    elif isinstance(cmd_obj, ListAccountsCommand):
        return handle_list_accounts(cmd_obj, engine=engine)
    else:
        return f"Unknown command type: {type(cmd_obj)}"


def repl_loop(engine: Optional[DistributionEngine] = None) -> None:
    """Start interactive REPL with prompt_toolkit."""

    def list_names():
        if engine is None:
            return []
        return [managed.name for managed in engine.list_files()]

    history = InMemoryHistory()
    session: PromptSession = PromptSession(
        completer=DDriveCompleter(list_names), history=history, style=STYLE
    )

    show_welcome()

    while True:
        try:
            user_input = session.prompt([("class:prompt", PROMPT_TEXT)])

            if not user_input.strip():
                continue

            if user_input.strip() == "exit":
                print("Goodbye!")
                break

            if user_input.strip() == "help":
                print(HELP_TEXT)
                continue

            if user_input.strip() == "clear":
                show_welcome()
                continue

            cmd_obj = parse_command(user_input)
            result = dispatch_command(cmd_obj, engine=engine)
            print(result)

        except (ParseError, DDriveException) as e:
            print(f"Error: {e}")
        except KeyboardInterrupt:
            continue
        except EOFError:
            print("\nGoodbye!")
            break
