"""CLI module for Pageshot.

This package provides the command-line interface for running captures and
mapping their outcomes to exit codes.
"""

from .runner import (
    # Exit codes
    ExitCode,
    exit_code_for,
    combined_exit_code,

    # Main CLI runner
    CaptureRunner,
    CLIConfig,
)

__all__ = [
    # Exit codes
    'ExitCode',
    'exit_code_for',
    'combined_exit_code',

    # Main CLI runner
    'CaptureRunner',
    'CLIConfig',
]
