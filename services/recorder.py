from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from data.store import BaseStore
from engine.errors import PersistenceFailure
from engine.models import Signal


class SignalRecorder:
    """Background persistence for live signals; storage failures are logged, never raised.

    Signals recorded while the worker is not running, or while the queue is
    full, are dropped and counted in `dropped`.
    """

    def __init__(self, store: BaseStore, maxsize: int = 1000) -> None:
        self.store = store
        self.queue: asyncio.Queue[Signal] = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self.failures = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            signal = await self.queue.get()
            try:
                await asyncio.to_thread(self.store.store_signal, signal)
            except PersistenceFailure as exc:
                self.failures += 1
                logger.warning("Failed to store signal {}: {}", signal.id, exc)
            except Exception as exc:
                self.failures += 1
                logger.exception("Unexpected error storing signal {}: {}", signal.id, exc)
            finally:
                self.queue.task_done()

    def record(self, signal: Signal) -> bool:
        if not self.running:
            self.dropped += 1
            logger.warning("Signal recorder is not running, dropped {}", signal.id)
            return False
        try:
            self.queue.put_nowait(signal)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Signal queue full, dropped {}", signal.id)
            return False
        return True

    async def flush(self) -> None:
        await self.queue.join()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
