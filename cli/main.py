"""CLI entry point."""

import os
import sys
from typing import List, Optional

from common.logging_config import setup_logging
from cli.commands import get_config, get_engine
from cli.parser import ParseError, parse_tokens
from cli.repl import dispatch_command, repl_loop
from engine.exceptions import DDriveException


def run_once(argv: List[str]) -> int:
    """
    Run a single command given on the shell command line.

    Returns:
        Process exit code: 0 on success, 1 on any error
    """
    try:
        cmd_obj = parse_tokens(argv)
    except ParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    result = dispatch_command(cmd_obj, engine=get_engine())
    if result.startswith("Error"):
        print(result, file=sys.stderr)
        return 1
    print(result)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for CLI."""
    args = list(sys.argv[1:] if argv is None else argv)
    debug = '--debug' in args
    if debug:
        args.remove('--debug')
    log_level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'INFO')

    config = get_config()
    logger = setup_logging('ddrive', log_level=log_level, log_file=config.get_log_path())

    if debug:
        logger.info("Debug logging enabled")

    logger.info("CLI starting...")
    try:
        if args:
            return run_once(args)
        repl_loop(get_engine())
        return 0
    except DDriveException as e:
        logger.error(f"CLI error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")


if __name__ == "__main__":
    sys.exit(main())
