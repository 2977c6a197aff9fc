"""Module entrypoint for ``python -m speccheck_store``."""

from __future__ import annotations

from speccheck_store.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
