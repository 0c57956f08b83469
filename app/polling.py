from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``job`` every ``interval_seconds`` until cancelled.

    ``trigger()`` runs the job early (e.g. when an admin view regains focus).
    ``cancel()`` is the stop token: the loop exits after the current run and a
    job already in flight is allowed to finish.
    """

    def __init__(self, job: Callable[[], Awaitable[Any]], interval_seconds: float, name: str = "periodic") -> None:
        self.job = job
        self.interval_seconds = interval_seconds
        self.name = name
        self.runs = 0
        self.last_error: Optional[str] = None
        self._wake = asyncio.Event()
        self._stopped = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()

    def trigger(self) -> None:
        self._wake.set()

    def cancel(self) -> None:
        self._stopped.set()
        self._wake.set()

    async def run(self) -> None:
        logger.info("%s loop started", self.name)
        while not self.cancelled:
            try:
                await self.job()
                self.last_error = None
            except asyncio.CancelledError:
                logger.info("%s loop cancelled", self.name)
                raise
            except Exception as exc:
                self.last_error = repr(exc)
                logger.exception("%s loop error", self.name)
            self.runs += 1
            if self.cancelled:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
        logger.info("%s loop stopped", self.name)
