"""
__main__.py

This file adds support for running pollenwall as a python module (python -m pollenwall)
instead of invoking the "pollenwall" command line entrypoint.
"""


from pollenwall.cli import main


if __name__ == "__main__":
    main()
