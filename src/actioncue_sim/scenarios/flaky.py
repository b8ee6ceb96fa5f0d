"""Flaky scenario - handlers that fail before they succeed.

Exercises the retry path under contention: each action fails a few times
with a short fixed backoff, then succeeds. Actions picked by the error
rate never succeed and end up failed once their attempts run out.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from actioncue_sim.scenarios import Scenario, ScenarioInfo, simulate_latency

if TYPE_CHECKING:
    from actioncue import ActionScheduler
    from actioncue_sim.display import SimulationState
    from actioncue_sim.runner import SimConfig


class FlakyScenario(Scenario):
    """One-shot actions that need several attempts."""

    MAX_ATTEMPTS = 4

    @property
    def info(self) -> ScenarioInfo:
        return ScenarioInfo(
            name="flaky",
            description="Handlers fail a few times before succeeding (retry path)",
        )

    def setup(self, scheduler: ActionScheduler, worker: str, config: SimConfig, state: SimulationState) -> None:
        rng = random.Random(None if config.seed is None else f"{config.seed}:{worker}")
        retry = {"max_attempts": self.MAX_ATTEMPTS, "backoff": "fixed", "base_delay": config.retry_delay, "jitter": 0.0}

        @scheduler.handler("flaky.work", retry=retry)
        async def work(key, failures):
            state.begin(key, worker)
            try:
                await simulate_latency(config, rng)
                # runs_per_action already counts this run
                if failures < 0 or state.runs_per_action[key] <= failures:
                    raise RuntimeError(f"Flaky failure {state.runs_per_action[key]}")
            except BaseException as e:
                state.end(key, worker, e)
                raise
            state.end(key, worker)

    async def submit_workload(self, scheduler: ActionScheduler, config: SimConfig, state: SimulationState) -> list[int]:
        rng = random.Random(config.seed)
        ids = []
        for i in range(config.count):
            # -1 = never succeeds
            failures = -1 if rng.random() < config.error_rate else rng.randint(0, self.MAX_ATTEMPTS - 1)
            ids.append(await scheduler.enqueue("flaky.work", i, failures))
            state.submitted += 1
            state.add_event("queued", i, None, f"fails {failures}x" if failures >= 0 else "always fails")
        return ids
