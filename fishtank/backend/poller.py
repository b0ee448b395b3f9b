"""Cancellable periodic refresh bound to a subject (usually a player address)."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger


class PeriodicRefresher:
    def __init__(
        self,
        subject: str,
        fetch: Callable[[str], Awaitable[Any]],
        on_result: Callable[[Any], Awaitable[None]],
        interval_seconds: float,
        name: str = "refresh",
    ) -> None:
        self.subject = subject
        self._fetch = fetch
        self._on_result = on_result
        self.interval_seconds = interval_seconds
        self.name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(self.subject), name=f"{self.name}:{self.subject}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def rebind(self, subject: str) -> None:
        await self.stop()
        self.subject = subject
        self.start()

    async def _run(self, subject: str) -> None:
        while True:
            try:
                result = await self._fetch(subject)
                await self._on_result(result)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(f"{self.name} for {subject} failed: {exc}")
            await asyncio.sleep(self.interval_seconds)
