"""
Module entrypoint for the skipci CLI.

This file exists so that `python -m skipci ...` works when the console-script
wrapper is not installed. It contains no business logic.
"""

from __future__ import annotations

from skipci.cli import main


def _run() -> None:
    """
    Execute the skipci command line interface.

    Raises
    ------
    SystemExit
        Always; carries the exit code returned by :func:`skipci.cli.main`.
    """
    raise SystemExit(main())


if __name__ == "__main__":
    _run()
