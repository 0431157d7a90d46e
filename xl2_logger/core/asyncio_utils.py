"""Helpers for background tasks owned by sessions and supervisors."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    name: Optional[str] = None,
    pending: Optional[set[asyncio.Task[Any]]] = None,
) -> asyncio.Task[Any]:
    """Start ``coro`` as a task whose exception is always retrieved and logged.

    Fire-and-forget tasks otherwise surface failures as "Task exception was
    never retrieved" warnings long after the fact.
    """
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")
    task = asyncio.get_running_loop().create_task(coro, name=name)
    label = name or "background task"

    def _done(done_task: asyncio.Task[Any]) -> None:
        if done_task.cancelled():
            return
        exc = done_task.exception()
        if exc is not None:
            task_logger.error("Unhandled exception in %s", label, exc_info=exc)

    task.add_done_callback(_done)
    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)
    return task


async def cancel_task(task: Optional[asyncio.Task[Any]], timeout: float = 1.0) -> None:
    """Cancel ``task`` and wait briefly for it to unwind.

    Cancelling the task that is currently running is refused, since awaiting
    itself would deadlock; the caller is expected to return instead.
    """
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    await asyncio.wait({task}, timeout=timeout)


__all__ = ["cancel_task", "create_logged_task"]
