"""Simulation runner for actioncue-sim.

This module handles the simulation itself, decoupled from display. Several
ActionSchedulers, each with its own database connection, share one SQLite
file the way separate worker processes would. The runner updates a
SimulationState object that any display can render.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from actioncue import ActionScheduler, ActionStatus, SchedulerConfig
from actioncue.errors import ActionCueError
from actioncue_sim.scenarios import Scenario, get_scenario

if TYPE_CHECKING:
    from actioncue_sim.display import SimulationState

logger = logging.getLogger(__name__)

# Max seconds to wait for canceled recurring actions to settle
SETTLE_TIMEOUT = 2.0


@dataclass
class SimConfig:
    """Configuration for a simulation run."""

    scenario: str = "burst"
    count: int = 100
    workers: int = 3
    latency_ms: int = 20
    latency_jitter: float = 0.2  # ±20% variance
    error_rate: float = 0.0
    duration: float | None = None
    db_path: str | None = None  # None = temporary file
    batch_size: int = 10
    lease_duration: float = 30.0
    poll_interval: float = 0.05
    retry_delay: float = 0.1
    interval: float = 0.5  # Recurring scenario cadence
    runs: int = 3  # Recurring scenario: runs per action before stopping
    seed: int | None = None
    stall_timeout: float | None = None


class SimulationRunner:
    """Runs simulations and updates state for display.

    Usage:
        config = SimConfig(count=100, workers=4)
        state = SimulationState()
        runner = SimulationRunner(config, state)
        await runner.run()
        assert state.duplicates == 0
    """

    def __init__(self, config: SimConfig, state: "SimulationState", scenario: Scenario | None = None):
        self.config = config
        self.state = state
        self.scenario = scenario or get_scenario(config.scenario)

        self.schedulers: list[ActionScheduler] = []
        self._action_ids: list[int] = []
        self._running = False
        self._tempdir: tempfile.TemporaryDirectory | None = None

    async def run(self) -> None:
        """Run the simulation to completion."""
        from actioncue_sim.display import WorkerStatus

        self._running = True
        self.state.start_time = time.time()
        self.state.scenario_name = self.scenario.info.name
        self.state.target_count = self.config.count
        self.state.target_runs = self.config.runs
        self.state.latency_ms = self.config.latency_ms
        self.state.error_rate = self.config.error_rate
        self.state.lease_duration = self.config.lease_duration

        db_path = self.config.db_path
        if db_path is None:
            self._tempdir = tempfile.TemporaryDirectory(prefix="actioncue-sim-")
            db_path = os.path.join(self._tempdir.name, "sim.db")

        for i in range(self.config.workers):
            name = f"worker-{i + 1}"
            scheduler = ActionScheduler(
                SchedulerConfig(
                    db_path=db_path,
                    batch_size=self.config.batch_size,
                    lease_duration=self.config.lease_duration,
                    poll_interval=self.config.poll_interval,
                    holder=name,
                    seed=None if self.config.seed is None else self.config.seed + i,
                )
            )
            await scheduler.open()
            self.scenario.setup(scheduler, name, self.config, self.state)
            self.state.workers[name] = WorkerStatus(name=name, start_time=time.time())
            self.schedulers.append(scheduler)

        self._action_ids = await self.scenario.submit_workload(self.schedulers[0], self.config, self.state)

        for scheduler in self.schedulers:
            scheduler.start()

        await self._monitor()

        if self._running:
            await self.scenario.finish(self.schedulers[0], self._action_ids)
            await self._settle()

        await self.cleanup()

    async def _monitor(self) -> None:
        """Poll the store until the scenario is done or time runs out."""
        while self._running:
            await self._update_state()

            if self.scenario.is_finished(self.state):
                break
            if self.config.duration and self._elapsed >= self.config.duration:
                break

            await asyncio.sleep(0.05)

    async def _settle(self) -> None:
        deadline = time.time() + SETTLE_TIMEOUT
        while time.time() < deadline:
            await self._update_state()
            if self.state.pending == 0 and self.state.running == 0:
                break
            await asyncio.sleep(0.05)

    async def _update_state(self) -> None:
        """Refresh counts from the store."""
        if not self.schedulers:
            return

        self.state.elapsed = self._elapsed
        counts = await self.schedulers[0].counts()
        self.state.pending = counts[ActionStatus.PENDING]
        self.state.running = counts[ActionStatus.IN_PROGRESS]
        self.state.completed = counts[ActionStatus.COMPLETE]
        self.state.failed = counts[ActionStatus.FAILED]
        self.state.canceled = counts[ActionStatus.CANCELED]

    @property
    def _elapsed(self) -> float:
        return time.time() - self.state.start_time

    def stop(self) -> None:
        """Request simulation stop."""
        self._running = False

    async def cleanup(self) -> None:
        """Stop and close every scheduler. Call after interrupt or completion."""
        schedulers, self.schedulers = self.schedulers, []
        for scheduler in schedulers:
            try:
                await scheduler.stop(timeout=5.0)
                await scheduler.close()
            except ActionCueError:
                logger.exception("Error shutting down %s", scheduler.config.holder)
        if self._tempdir is not None:
            self._tempdir.cleanup()
            self._tempdir = None
        self._running = False
