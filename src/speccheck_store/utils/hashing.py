"""
speccheck-store — hashing utilities

File: src/speccheck_store/utils/hashing.py

Purpose
- Deterministic SHA-256 helpers for datasheet content change detection and
  migration checksums.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib

__all__ = [
    "hash_content",
    "sha256_bytes",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def hash_content(content: bytes | str) -> str:
    """Content hash used by the datasheet cache to detect changed documents."""

    if isinstance(content, str):
        return sha256_text(content)
    if isinstance(content, (bytes, bytearray, memoryview)):
        return sha256_bytes(bytes(content))
    raise TypeError(f"content must be bytes or str, got {type(content).__name__}")
