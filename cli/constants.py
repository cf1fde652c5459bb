"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = [
    "add-account",
    "upload",
    "download",
    "delete",
    "list-files",
    "list-accounts",
    "clear",
    "exit",
    "help",
]

# Commands whose first argument is the logical name of a managed file
FILE_NAME_COMMANDS = ("download", "delete")

STYLE = Style.from_dict(
    {
        "prompt": "#2E86DE bold",
        "command": "#0088ff bold",
    }
)

DRIVE_BLUE = "\033[38;2;46;134;222m"
GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"

LOGO = f"""{DRIVE_BLUE}
 ██████╗       ██████╗ ██████╗ ██╗██╗   ██╗███████╗
 ██╔══██╗      ██╔══██╗██╔══██╗██║██║   ██║██╔════╝
 ██║  ██║█████╗██║  ██║██████╔╝██║██║   ██║█████╗
 ██║  ██║╚════╝██║  ██║██╔══██╗██║╚██╗ ██╔╝██╔══╝
 ██████╔╝      ██████╔╝██║  ██║██║ ╚████╔╝ ███████╗
 ╚═════╝       ╚═════╝ ╚═╝  ╚═╝╚═╝  ╚═══╝  ╚══════╝
{RESET}"""

WELCOME_TITLE = "D-Drive - one drive made of many Google Drive accounts"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "ddrive> "

HELP_TEXT = """Available commands:
  add-account [email]                 Authorize a Google Drive account in the browser and link it
  upload <path> [name]                Split a local file and spread its chunks over linked accounts
  download <name> <save_path>         Reassemble a stored file (save_path may be a directory)
  delete <name>                       Delete a stored file and all of its chunks
  list-files                          List stored files with their size and accounts
  list-accounts                       List linked accounts with used and free space
  clear                               Clear screen and redisplay welcome message
  help                                Show this help
  exit                                Exit REPL

Names containing spaces must be quoted.
Examples:
  add-account
  upload ~/videos/holiday.mp4
  upload "./backup 2024.tar" backup.tar
  download holiday.mp4 ~/Downloads/
  delete backup.tar

Every command can also be run once from the shell, e.g. 'ddrive list-files'."""
