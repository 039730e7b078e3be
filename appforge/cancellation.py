"""Cooperative cancellation for a generation run.

A ``CancellationToken`` is shared by the caller and the orchestrator.  The
caller flips it; the orchestrator observes it at every suspension point
(provider call, timeout wait, backoff sleep) and aborts with
:class:`~appforge.errors.Cancelled`.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

from .errors import Cancelled

T = TypeVar("T")


class CancellationToken:
    """One-shot, idempotent cancellation flag with async helpers."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Request cancellation. Calling it again has no further effect."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason or "cancelled by caller")

    async def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*, waking early with ``Cancelled`` if the token fires."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, abandoning it if the token fires first.

        The underlying task is cancelled and awaited before ``Cancelled`` is
        raised, so no provider call keeps running in the background.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(BaseException):
                    await task

        if task in done:
            return task.result()
        raise Cancelled(self.reason or "cancelled by caller")
