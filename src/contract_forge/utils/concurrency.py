"""Async concurrency primitives for fan-out builds and cooperative cancellation."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Iterable

T = TypeVar("T")


class OperationCancelled(asyncio.CancelledError):
    """Raised when a :class:`CancellationToken` fires before an operation completes."""


class CancellationToken:
    """Run-wide interrupt flag shared by every orchestration.

    The underlying ``asyncio.Event`` binds to the loop that first awaits it, so a token may be
    created before ``asyncio.run`` and handed to a signal listener. Only the first reason
    given to :meth:`cancel` is kept.
    """

    def __init__(self) -> None:
        self._fired = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason
        self._fired.set()

    @property
    def is_cancelled(self) -> bool:
        return self._fired.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._fired.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise OperationCancelled(self._reason or "operation cancelled")


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Run coroutines with at most ``max_concurrency`` in flight, yielding results as they finish.

    Coroutines are expected to report their own failures as values. An exception escaping
    one of them cancels the rest and is re-raised.
    """

    max_concurrency: int
    _slots: asyncio.Semaphore = field(init=False, repr=False)
    _active: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._slots = asyncio.Semaphore(self.max_concurrency)

    @property
    def in_use(self) -> int:
        return self._active

    async def run(self, coroutines: Iterable[Awaitable[T]]) -> AsyncIterator[T]:
        pending = {asyncio.create_task(self._guarded(item)) for item in coroutines}
        try:
            while pending:
                finished, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                for task in finished:
                    if task.cancelled():
                        raise asyncio.CancelledError("worker task cancelled")
                    failure = task.exception()
                    if failure is not None:
                        raise failure
                    yield task.result()
        finally:
            await _cancel_and_reap(pending)

    async def _guarded(self, coroutine: Awaitable[T]) -> T:
        async with self._slots:
            self._active += 1
            try:
                return await coroutine
            finally:
                self._active -= 1


async def run_cancellable(
    coroutine: Awaitable[T],
    cancel_token: CancellationToken | None,
    *,
    grace_seconds: float,
) -> T:
    """Await ``coroutine`` unless ``cancel_token`` fires first.

    Once the token fires, the coroutine gets ``grace_seconds`` to finish its in-flight work.
    If it is still running afterwards it is cancelled and :class:`OperationCancelled` is raised.
    """

    if grace_seconds < 0:
        _discard(coroutine)
        raise ValueError("grace_seconds must be >= 0")
    if cancel_token is None:
        return await coroutine
    if cancel_token.is_cancelled:
        _discard(coroutine)
        cancel_token.raise_if_cancelled()

    work: asyncio.Task[T] = asyncio.ensure_future(coroutine)
    interrupt = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({work, interrupt}, return_when=asyncio.FIRST_COMPLETED)
        if not work.done() and grace_seconds > 0:
            await asyncio.wait({work}, timeout=grace_seconds)
        if work.done():
            return work.result()
    finally:
        await _cancel_and_reap({interrupt})
        if not work.done():
            await _cancel_and_reap({work})
    raise OperationCancelled(cancel_token.reason or "operation cancelled")


async def _cancel_and_reap(tasks: Iterable[asyncio.Future[Any]]) -> None:
    remaining = [task for task in tasks if not task.done()]
    for task in remaining:
        task.cancel()
    if remaining:
        with suppress(Exception):
            await asyncio.gather(*remaining, return_exceptions=True)


def _discard(awaitable: Awaitable[object]) -> None:
    # Coroutines rejected before scheduling are closed so CPython does not warn
    # "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "OperationCancelled",
    "WorkerPool",
    "run_cancellable",
]
