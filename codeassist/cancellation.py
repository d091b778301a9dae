"""Cooperative cancellation threaded through every outbound call."""

from __future__ import annotations

import asyncio
from enum import Enum


class Outcome(Enum):
    """Terminal outcome of a dispatched operation."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancellationToken:
    """
    Single-owner cooperative cancellation signal.

    The owner calls cancel(); operations poll `cancelled` between chunks or
    await wait() to race a pending call. cancel() is idempotent.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


__all__ = ["CancellationToken", "Outcome"]
