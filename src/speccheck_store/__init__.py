"""
speccheck-store — package root

File: src/speccheck_store/__init__.py

Purpose
- Local persistence and cache layer for the SpecCheck component scanner.
- Versioned SQLite store with TTL caches, a bounded scan-history log, and a
  user-curated saved-components store.

Import boundary
- No side effects at import time: no config loading, no logging setup, no
  database access. Open a store explicitly through
  ``speccheck_store.persistence.SpecStore``.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
