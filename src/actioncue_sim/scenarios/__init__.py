"""Built-in scenarios for actioncue-sim.

A scenario registers the handlers every worker runs and enqueues the
initial workload.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from actioncue import ActionScheduler
    from actioncue_sim.display import SimulationState
    from actioncue_sim.runner import SimConfig


@dataclass
class ScenarioInfo:
    """Metadata about a scenario."""
    name: str
    description: str


class Scenario(ABC):
    """Base class for simulation scenarios.

    ``setup`` is called once per worker, each with its own scheduler and
    database connection. ``submit_workload`` is called once, on the first
    worker's scheduler.
    """

    @property
    @abstractmethod
    def info(self) -> ScenarioInfo:
        """Return scenario metadata."""
        ...

    @abstractmethod
    def setup(self, scheduler: "ActionScheduler", worker: str, config: "SimConfig", state: "SimulationState") -> None:
        """Register this scenario's handlers on one worker's scheduler."""
        ...

    @abstractmethod
    async def submit_workload(self, scheduler: "ActionScheduler", config: "SimConfig", state: "SimulationState") -> list[int]:
        """Enqueue the workload and return the action ids."""
        ...

    def is_finished(self, state: "SimulationState") -> bool:
        """True once no submitted action can run again."""
        return state.submitted > 0 and state.pending == 0 and state.running == 0

    async def finish(self, scheduler: "ActionScheduler", action_ids: list[int]) -> None:
        """Wind down actions that would otherwise run forever."""


async def simulate_latency(config: "SimConfig", rng: random.Random) -> None:
    """Sleep for the configured latency with jitter."""
    base = config.latency_ms / 1000.0
    if base > 0:
        jitter = config.latency_jitter
        await asyncio.sleep(base * rng.uniform(1 - jitter, 1 + jitter))


from actioncue_sim.scenarios.burst import BurstScenario  # noqa: E402
from actioncue_sim.scenarios.flaky import FlakyScenario  # noqa: E402
from actioncue_sim.scenarios.recurring import RecurringScenario  # noqa: E402

# Registry of built-in scenarios
SCENARIOS: dict[str, type[Scenario]] = {
    "burst": BurstScenario,
    "recurring": RecurringScenario,
    "flaky": FlakyScenario,
}


def get_scenario(name: str) -> Scenario:
    """Get a scenario instance by name."""
    if name not in SCENARIOS:
        available = ", ".join(SCENARIOS.keys())
        raise ValueError(f"Unknown scenario: {name}. Available: {available}")
    return SCENARIOS[name]()


def list_scenarios() -> list[ScenarioInfo]:
    """List all available scenarios."""
    return [cls().info for cls in SCENARIOS.values()]
