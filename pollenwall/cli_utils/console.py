"""
pollenwall console utilities

This module provides application-wide access to Rich Console objects for writing to stdout
and stderr, and sets up the logging module so that diagnostics from the engine are rendered
on the error console by Rich as well.

Messages meant for the user (a pollen arrived, the wallpaper changed) go through the
formatting helpers below. Diagnostics go through logging.getLogger(__name__) in each module.
"""

import logging
from io import StringIO

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

pollenwall_theme = Theme(
    {
        "fail": "bold red",
        "confirm": "magenta",
        "describe": "yellow",
        "highlight": "green",
    }
)

console = Console(theme=pollenwall_theme)
error_console = Console(theme=pollenwall_theme, stderr=True)


"""
Formatting helpers
"""


def describe(msg: str, **kwargs):
    """
    Format descriptive msg and print to stdout.
    """

    console.print(f"{msg}", style="describe", **kwargs)


def confirm_success(msg: str, **kwargs):
    """
    Format confirmation msg and print to stdout. Accept any additional kwargs that console.print from
    rich module exposes.
    """

    console.print(f"{msg}", style="confirm", **kwargs)


def fail(msg: str):
    """
    Format failure msg and print to stderr.
    """

    error_console.print(f":x-emoji: failed. {msg}", style="fail")


def setup_logging(verbosity: str = "normal"):
    """
    Route log records of the pollenwall package to the error console.

    verbosity is one of 'verbose' (everything down to DEBUG), 'normal' (warnings and errors)
    or 'quiet' (nothing reaches the terminal, console output included).
    """

    # None puts the consoles back on the current sys.stdout / sys.stderr
    quiet = verbosity == "quiet"
    console.file = StringIO() if quiet else None
    error_console.file = StringIO() if quiet else None

    logger = logging.getLogger("pollenwall")
    logger.setLevel(logging.DEBUG if verbosity == "verbose" else logging.WARNING)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    logger.addHandler(
        RichHandler(console=error_console, show_path=verbosity == "verbose", markup=False)
    )

    return logger
