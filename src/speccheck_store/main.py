"""Console entrypoint: runs the CLI and turns failures into exit codes."""

from __future__ import annotations

import sqlite3
import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    CONFIG_ERROR = 2
    STORE_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run ``speccheck-store`` and return its exit code; never raises."""

    try:
        from speccheck_store.ui.cli import run_cli

        code: object = run_cli(argv)
    except SystemExit as exc:
        # argparse exits with 2 on usage errors and 0 after --help.
        code = exc.code
    except Exception as exc:
        exit_code = classify_failure(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(exit_code)

    if code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(code, int) and code in tuple(ExitCode):
        return code
    if isinstance(code, str) and code.strip():
        print(code.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def classify_failure(exc: BaseException) -> ExitCode:
    """Map an uncaught exception to an exit code.

    Config and store errors are looked for anywhere in the cause chain before
    falling back to the broad bad-input types, so a ``StoreDBError`` raised
    from a ``ValueError`` still reports as a store failure.
    """

    from speccheck_store.config import ConfigLoadError, ConfigValidationError
    from speccheck_store.persistence.errors import StoreDBError

    chain = list(_cause_chain(exc))
    for item in chain:
        if isinstance(item, (ConfigLoadError, ConfigValidationError)):
            return ExitCode.CONFIG_ERROR
        if isinstance(item, (StoreDBError, sqlite3.Error)):
            return ExitCode.STORE_ERROR
    bad_input = (FileNotFoundError, NotADirectoryError, PermissionError, ValueError)
    if any(isinstance(item, bad_input) for item in chain):
        return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _cause_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "classify_failure", "cli_entrypoint"]
