"""
Scheduler - owns the agent's cancellable repeating tasks.

Each concern runs as one PeriodicTask on its own asyncio task. A firing
runs the body to completion before the next interval starts, so firings of
the same concern never overlap. All tasks of one run share a
CancellationToken: stop() cancels it so no new firing starts, waits a grace
period for in-flight bodies, then cancels whatever is left.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class StopRequested(Exception):
    """Raised inside a body when the run it belongs to has been stopped."""
    pass


class CancellationToken:
    """
    Cooperative stop signal shared by the tasks of one scheduler run.

    Bodies call throw_if_cancelled() between steps so that results of
    external calls that resolve after stop() are discarded.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def throw_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StopRequested()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds. Returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False


Body = Callable[[CancellationToken], Awaitable[object]]


class PeriodicTask:
    """
    A named body fired every interval seconds.

    Usage:
        task = PeriodicTask("system_health", 30, supervisor.run_system_health)
    """

    def __init__(
        self,
        name: str,
        interval: float,
        body: Body,
        run_immediately: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval for {name} must be positive")
        self.name = name
        self.interval = interval
        self.body = body
        self.run_immediately = run_immediately
        self.invocations = 0

    async def run(self, token: CancellationToken) -> None:
        """Loop until the token is cancelled."""
        first = True
        while not token.is_cancelled:
            if not (first and self.run_immediately):
                if await token.wait(self.interval):
                    break
            first = False

            self.invocations += 1
            try:
                await self.body(token)
            except StopRequested:
                logger.debug(f"{self.name}: stopped mid-run, results discarded")
                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # The timer keeps its schedule after a failing body
                logger.error(f"Error in {self.name}: {e}", exc_info=True)


class Scheduler:
    """
    Starts and stops a fixed set of periodic tasks.

    start() while running is a no-op with a warning; stop() is idempotent.
    A stop()/start() cycle leaves exactly one asyncio task per registered
    PeriodicTask.

    Usage:
        scheduler = Scheduler(shutdown_grace_seconds=5)
        scheduler.add(PeriodicTask("prediction", 3600, run_prediction))
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, shutdown_grace_seconds: float = 5.0) -> None:
        self._grace = shutdown_grace_seconds
        self._periodic: Dict[str, PeriodicTask] = {}
        self._tasks: List[asyncio.Task] = []
        self._token: Optional[CancellationToken] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def token(self) -> Optional[CancellationToken]:
        return self._token

    @property
    def periodic_tasks(self) -> List[PeriodicTask]:
        return list(self._periodic.values())

    @property
    def active_task_count(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def add(self, task: PeriodicTask) -> None:
        if task.name in self._periodic:
            raise ValueError(f"Task already registered: {task.name}")
        self._periodic[task.name] = task

    def clear(self) -> None:
        """Forget registered tasks. Only allowed while stopped."""
        if self._running:
            raise RuntimeError("Cannot clear tasks while the scheduler is running")
        self._periodic.clear()

    async def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._token = CancellationToken()
        self._tasks = [
            asyncio.create_task(p.run(self._token), name=p.name)
            for p in self._periodic.values()
        ]
        self._running = True
        for p in self._periodic.values():
            logger.info(f"Started {p.name} task (interval={p.interval}s)")

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping periodic tasks...")
        self._running = False
        if self._token is not None:
            self._token.cancel()

        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=self._grace)
            for task in pending:
                logger.warning(f"{task.get_name()} did not finish within {self._grace}s, cancelling")
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks = []
        logger.info("Periodic tasks stopped")
