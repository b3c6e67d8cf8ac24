"""
Unified CLI Error Handling
==========================

Provides consistent error handling and exit codes for zemuctl.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn, Optional

import click

from zemu.errors import ZemuError


class ExitCode(IntEnum):
    """Standard exit codes for CLI tools."""
    SUCCESS = 0
    HARNESS_ERROR = 1    # Emulator, docker, transport or comparison failure
    INVALID_ARGS = 2     # Invalid arguments or missing files
    INTERNAL_ERROR = 3   # Unexpected internal error


def handle_cli_exception(
    error: Exception,
    verbose: bool = False,
    error_type: Optional[str] = None,
) -> NoReturn:
    """
    Unified exception handler for zemuctl commands.

    Formats the error message, prints the error context in verbose mode
    (and the traceback for internal errors), then exits with the matching
    exit code.

    Args:
        error: The exception that was raised
        verbose: Print context and traceback
        error_type: Optional prefix for the error message (e.g., "Comparison")

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    if isinstance(error, ZemuError):
        prefix = f"{error_type} error: " if error_type else "Error: "
        click.echo(f"{prefix}{error}", err=True)
        if verbose:
            for key, value in error.context.items():
                if value is not None:
                    click.echo(f"  {key}: {value}", err=True)
        sys.exit(ExitCode.HARNESS_ERROR)

    elif isinstance(error, click.BadParameter):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
