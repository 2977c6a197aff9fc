"""Async façades over the synchronous repositories.

Each public repository method becomes an awaitable that runs on a worker
thread via ``asyncio.to_thread``. ``StoreDB`` serializes the underlying
statements, so concurrent awaiters never share the handle mid-statement.

A cancelled awaiter does not interrupt the worker thread: the repository call
still commits or rolls back as a whole.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

R = TypeVar("R")
T = TypeVar("T")


class AsyncRepo(Generic[R]):
    """Wrap a repository so ``await facade.method(...)`` offloads ``repo.method(...)``."""

    __slots__ = ("_repo",)

    def __init__(self, repo: R) -> None:
        self._repo = repo

    @property
    def sync(self) -> R:
        return self._repo

    async def call(self, fn: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Run an arbitrary callable (usually a bound repo method) on a worker thread."""
        return await asyncio.to_thread(fn, *args, **kwargs)

    def __getattr__(self, name: str) -> Callable[..., Awaitable[Any]]:
        if name.startswith("_"):
            raise AttributeError(name)
        attr = getattr(self._repo, name)
        if not callable(attr):
            raise AttributeError(f"{type(self._repo).__name__}.{name} is not a method")

        @functools.wraps(attr)
        async def _offloaded(*args: Any, **kwargs: Any) -> Any:
            return await asyncio.to_thread(attr, *args, **kwargs)

        return _offloaded

    def __repr__(self) -> str:
        return f"AsyncRepo({type(self._repo).__name__})"


__all__ = ["AsyncRepo"]
