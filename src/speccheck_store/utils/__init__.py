"""Small deterministic helpers shared across the store layer."""

from speccheck_store.utils.hashing import hash_content, sha256_bytes, sha256_text

__all__ = ["hash_content", "sha256_bytes", "sha256_text"]
