"""In-process worker configuration.

Process handles live in the API process, so periodic jobs run as an asyncio
loop owned by the application lifespan instead of an external queue worker.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.config import settings
from app.utils.logger import logger
from app.workers.tasks import reclaim_idle_websites

Job = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class WorkerSettings:
    """Periodic job settings."""

    functions: List[Job] = [
        reclaim_idle_websites,
    ]

    interval_seconds = settings.idle_sweep_interval_seconds


class IdleReaper:
    """Runs the periodic jobs every interval until stopped."""

    def __init__(
        self,
        ctx: Optional[Dict[str, Any]] = None,
        interval_seconds: Optional[float] = None,
        functions: Optional[List[Job]] = None,
    ):
        self.ctx: Dict[str, Any] = ctx if ctx is not None else {}
        self.interval_seconds = interval_seconds or WorkerSettings.interval_seconds
        self.functions = functions if functions is not None else list(WorkerSettings.functions)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> List[Dict[str, Any]]:
        return [await job(self.ctx) for job in self.functions]

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"[REAPER] Starting up (every {self.interval_seconds}s)...")
        self.ctx["startup_complete"] = True
        self._task = asyncio.create_task(self._loop(), name="idle-reaper")

    async def stop(self) -> None:
        if self._task is None:
            return
        logger.info("[REAPER] Shutting down...")
        self._task.cancel()
        await asyncio.wait([self._task])
        self._task = None
