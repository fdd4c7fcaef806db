"""
Virtual User Worker
===================
One virtual user is one asyncio task looping over
``run scenario -> pace -> run scenario -> ...`` until the shared stop event
is set or the iteration budget runs out.

    IDLE -> RUNNING -> STOPPING -> STOPPED

Cancellation is cooperative. The stop event is looked at once per loop and
also interrupts the pacing sleep, but an iteration that has already started
always runs to completion.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .scenario import Scenario, ScenarioExecutor

logger = logging.getLogger(__name__)


class VUState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Pacing:
    """Think time between iterations, drawn uniformly from [min_sleep, max_sleep] seconds."""
    min_sleep: float = 1.0
    max_sleep: float = 3.0

    def next_delay(self, rng: Optional[random.Random] = None) -> float:
        if self.max_sleep <= self.min_sleep:
            return self.min_sleep
        draw = rng.uniform if rng is not None else random.uniform
        return draw(self.min_sleep, self.max_sleep)


class IterationBudget:
    """
    Iterations shared by every virtual user of a run.

    ``claim`` never awaits, so on a single event loop the check and the
    decrement cannot interleave with another virtual user.
    """

    def __init__(self, total: Optional[int] = None):
        self.total = total
        self.claimed = 0

    @property
    def exhausted(self) -> bool:
        return self.total is not None and self.claimed >= self.total

    def claim(self) -> bool:
        if self.exhausted:
            return False
        self.claimed += 1
        return True


async def pause(stop_event: asyncio.Event, delay: float) -> bool:
    """Sleep up to ``delay`` seconds. Returns True if the stop event fired first."""
    if stop_event.is_set():
        return True
    if delay <= 0:
        await asyncio.sleep(0)
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False


class VirtualUser:
    def __init__(
        self,
        vu_id: int,
        scenario: Scenario,
        executor: ScenarioExecutor,
        pacing: Pacing,
        stop_event: asyncio.Event,
        budget: Optional[IterationBudget] = None,
        rng: Optional[random.Random] = None,
    ):
        self.vu_id = vu_id
        self.scenario = scenario
        self.executor = executor
        self.pacing = pacing
        self.stop_event = stop_event
        self.budget = budget or IterationBudget()
        self.rng = rng
        self.state = VUState.IDLE
        self.iterations = 0
        self.failed_iterations = 0

    def __repr__(self):
        return f"<VirtualUser {self.vu_id} {self.scenario.name} {self.state.value} iterations={self.iterations}>"

    async def run(self) -> int:
        """Loop until stopped. Returns the number of completed iterations."""
        if self.state is not VUState.IDLE:
            raise RuntimeError(f"virtual user {self.vu_id} already started")
        self.state = VUState.RUNNING
        try:
            while not self.stop_event.is_set():
                if not self.budget.claim():
                    break
                context = self.executor.new_context(self.scenario, vu=self.vu_id, iteration=self.iterations)
                outcome = await self.executor.run(self.scenario, context)
                self.iterations += 1
                if not outcome.ok:
                    self.failed_iterations += 1
                if self.budget.exhausted:
                    break
                if await pause(self.stop_event, self.pacing.next_delay(self.rng)):
                    break
            self.state = VUState.STOPPING
        finally:
            self.state = VUState.STOPPED
        logger.debug("VU %d stopped after %d iterations", self.vu_id, self.iterations)
        return self.iterations
