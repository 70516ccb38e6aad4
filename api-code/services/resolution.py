from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional


logger = logging.getLogger("devflow-deployer.resolution")

SleepFunc = Callable[[float], Awaitable[None]]
RefreshFunc = Callable[[], Awaitable[bool]]
TimeoutFunc = Callable[[], Awaitable[None]]


class ResolutionScheduler:
    """Runs one background polling task per deployment id.

    ``refresh`` returns ``True`` once the deployment is terminal. Elapsed time is
    accumulated from the poll interval rather than read from a clock, so an
    injected ``sleep`` drives the whole schedule deterministically.
    """

    def __init__(self, *, poll_interval: float = 5.0, sleep: Optional[SleepFunc] = None) -> None:
        self.poll_interval = max(0.0, poll_interval)
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._tasks: Dict[str, asyncio.Task[None]] = {}

    def schedule(
        self,
        deployment_id: str,
        refresh: RefreshFunc,
        *,
        timeout_seconds: float,
        on_timeout: TimeoutFunc,
    ) -> asyncio.Task[None]:
        existing = self._tasks.get(deployment_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self._resolve(deployment_id, refresh, timeout_seconds, on_timeout),
            name=f"resolve-{deployment_id}",
        )
        self._tasks[deployment_id] = task
        task.add_done_callback(lambda done, key=deployment_id: self._forget(key, done))
        logger.info(
            "Scheduled resolution deployment=%s timeout=%.0fs interval=%.1fs",
            deployment_id,
            timeout_seconds,
            self.poll_interval,
        )
        return task

    async def _resolve(
        self,
        deployment_id: str,
        refresh: RefreshFunc,
        timeout_seconds: float,
        on_timeout: TimeoutFunc,
    ) -> None:
        elapsed = 0.0
        try:
            while True:
                await self._sleep(self.poll_interval)
                elapsed += self.poll_interval
                if await refresh():
                    logger.info("Resolution finished deployment=%s elapsed=%.1fs", deployment_id, elapsed)
                    return
                if elapsed >= timeout_seconds:
                    logger.warning(
                        "Resolution timed out deployment=%s after %.0fs", deployment_id, elapsed
                    )
                    await on_timeout()
                    return
        except asyncio.CancelledError:
            logger.info("Resolution cancelled deployment=%s", deployment_id)
            raise
        except Exception:  # pylint: disable=broad-except
            logger.exception("Resolution crashed deployment=%s", deployment_id)

    def _forget(self, deployment_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(deployment_id) is task:
            del self._tasks[deployment_id]

    def is_scheduled(self, deployment_id: str) -> bool:
        task = self._tasks.get(deployment_id)
        return task is not None and not task.done()

    def in_flight(self) -> List[str]:
        return sorted(key for key, task in self._tasks.items() if not task.done())

    def cancel(self, deployment_id: str) -> bool:
        task = self._tasks.get(deployment_id)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            return False
        task.cancel()
        return True

    async def wait(self, deployment_id: str) -> None:
        task = self._tasks.get(deployment_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def wait_all(self) -> None:
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Resolution scheduler stopped (%d task(s) cancelled)", len(tasks))
