"""
Scheduler / Executor Pool
=========================
Starts a fixed number of virtual users as asyncio tasks sharing one
aggregator, enforces the run's deadline and iteration budget, and stops
everything gracefully.

All virtual users start at once (constant concurrency). Ramp-up would go in
``_launch`` by staggering task creation; it is not implemented.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .config import RunConfig
from .errors import ShutdownTimeoutError
from .scenario import ScenarioExecutor
from .worker import IterationBudget, Pacing, VirtualUser, VUState

logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    """Live state of a started run."""
    vus: List[VirtualUser]
    tasks: List["asyncio.Task[int]"]
    stop_event: asyncio.Event
    budget: IterationBudget
    started_at: float
    deadline_at: float
    deadline_task: Optional["asyncio.Task[None]"] = None
    stopped_at: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    forced: int = 0

    @property
    def iterations(self) -> int:
        return sum(vu.iterations for vu in self.vus)

    @property
    def active(self) -> int:
        return sum(1 for vu in self.vus if vu.state is VUState.RUNNING)

    @property
    def elapsed(self) -> float:
        end = self.stopped_at if self.stopped_at is not None else time.monotonic()
        return end - self.started_at

    @property
    def finished(self) -> bool:
        return all(task.done() for task in self.tasks)

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()


class ExecutorPool:
    """Launches and stops the virtual users of one run."""

    def __init__(self, executor: ScenarioExecutor, seed: Optional[int] = None):
        self.executor = executor
        self.seed = seed

    def start(self, config: RunConfig) -> RunHandle:
        """
        Create ``config.vus`` virtual-user tasks on the running loop and
        arm the deadline. Returns immediately.
        """
        stop_event = asyncio.Event()
        budget = IterationBudget(config.iterations)
        rng = random.Random(self.seed) if self.seed is not None else None

        vus: List[VirtualUser] = []
        vu_id = 1
        for spec, count in zip(config.scenarios, config.allocate_vus()):
            pacing = Pacing(spec.options.min_sleep, spec.options.max_sleep)
            for _ in range(count):
                vus.append(VirtualUser(
                    vu_id, spec.scenario, self.executor, pacing, stop_event, budget,
                    rng=random.Random(rng.random()) if rng is not None else None,
                ))
                vu_id += 1

        started_at = time.monotonic()
        handle = RunHandle(
            vus=vus,
            tasks=[],
            stop_event=stop_event,
            budget=budget,
            started_at=started_at,
            deadline_at=started_at + config.deadline,
        )
        handle.tasks = self._launch(vus)
        handle.deadline_task = asyncio.create_task(self._enforce_deadline(handle, config.deadline))
        logger.info("started %d virtual users across %d scenario(s)", len(vus), len(config.scenarios))
        return handle

    def _launch(self, vus: List[VirtualUser]) -> List["asyncio.Task[int]"]:
        return [asyncio.create_task(vu.run(), name=f"vu-{vu.vu_id}") for vu in vus]

    async def _enforce_deadline(self, handle: RunHandle, seconds: float) -> None:
        try:
            await asyncio.wait_for(handle.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            logger.info("duration of %.1fs elapsed, stopping virtual users", seconds)
            handle.stop_event.set()

    async def wait(self, handle: RunHandle, timeout: Optional[float] = None) -> bool:
        """Wait for every virtual user to finish on its own. True if they all did."""
        if handle.finished:
            return True
        _, pending = await asyncio.wait(handle.tasks, timeout=timeout)
        return not pending

    async def stop(self, handle: RunHandle, grace_period: float) -> RunHandle:
        """
        Broadcast stop and wait up to ``grace_period`` for in-flight
        iterations. Stragglers are cancelled and reported as a warning.
        """
        handle.stop_event.set()
        pending = set()
        if handle.tasks:
            _, pending = await asyncio.wait(handle.tasks, timeout=grace_period)

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            error = ShutdownTimeoutError(len(pending), grace_period)
            handle.forced = len(pending)
            handle.warnings.append(str(error))
            logger.warning("%s", error)

        for task in handle.tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                message = f"{task.get_name()} crashed: {task.exception()!r}"
                handle.warnings.append(message)
                logger.error("%s", message)

        if handle.deadline_task is not None and not handle.deadline_task.done():
            await handle.deadline_task
        if handle.stopped_at is None:
            handle.stopped_at = time.monotonic()
        return handle
