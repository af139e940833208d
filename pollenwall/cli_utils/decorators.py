"""
pollenwall Decorators

Helpers for the click entry point.
"""

from sys import exit
from functools import wraps

import click

from pollenwall.cli_utils.console import fail


def catch_errors(func):
    """
    Catch and format errors with the "fail" console template and gracefully
    exit the application with an error code. Usage errors are left to click.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except click.ClickException:
            raise
        except Exception as error:
            fail(str(error))
            exit(1)

    return wrapper
