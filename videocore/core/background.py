from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Coroutine

from .errors import DetachedChainError
from .logging import get_logger


class BackgroundRunner:
    """Supervises post-commit chains that run detached from the caller.

    Failures never propagate: they are logged and kept in ``failures`` so an
    operator (or a test) can inspect what went wrong.
    """

    def __init__(self, *, max_failures: int = 100):
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures: deque[DetachedChainError] = deque(maxlen=max_failures)
        self.logger = get_logger(component="background")

    def submit(self, coro: Coroutine[Any, Any, Any], *, name: str, **context: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._supervise(coro, name, context), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _supervise(self, coro: Coroutine[Any, Any, Any], name: str, context: dict[str, Any]) -> None:
        try:
            await coro
        except Exception as exc:
            self.failures.append(DetachedChainError(name, exc))
            self.logger.exception("detached_chain_failed", chain=name, **context)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["BackgroundRunner"]
