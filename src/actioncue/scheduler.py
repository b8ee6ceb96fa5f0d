"""Core ActionScheduler class."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable

from actioncue.claims import ClaimManager
from actioncue.config import SchedulerConfig
from actioncue.errors import StorageError
from actioncue.models import Action, ActionFilter, ActionPage, ActionSpec, ActionStatus, LogEntry
from actioncue.registry import Handler, HandlerRegistry
from actioncue.retry import RetryPolicy
from actioncue.runner import Runner
from actioncue.schedules import CronSchedule, IntervalSchedule, Schedule, SingleSchedule
from actioncue.status import StatusQueryService, StatusSummary
from actioncue.store import ActionStore
from actioncue.worker import Worker

logger = logging.getLogger(__name__)

# Shortest sleep between polls when work is due soon
MIN_POLL_SLEEP = 0.01


class ActionScheduler:
    """
    Durable scheduler for deferred actions.

    You register handlers per hook name and enqueue actions; the scheduler
    persists them, claims the due ones and runs them, retrying failures.
    Several schedulers may share one database file: the claim protocol
    keeps any action from running twice at once.

    Example:
        scheduler = ActionScheduler(SchedulerConfig(db_path="actions.db"))

        @scheduler.handler("send_digest", retry=5)
        async def send_digest(user_id):
            ...

        await scheduler.schedule_interval("send_digest", 3600, args=(42,))
        scheduler.start()
        ...
        await scheduler.stop()
        await scheduler.close()
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        store: ActionStore | None = None,
        registry: HandlerRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or SchedulerConfig()
        self.store = store or ActionStore(self.config.db_path, clock=clock)
        self.registry = registry or HandlerRegistry()
        self.claims = ClaimManager(self.store, holder=self.config.holder)
        self.runner = Runner(
            self.store,
            self.registry,
            self.claims,
            retry=self.config.retry,
            execution_timeout=self.config.execution_timeout,
            lease_duration=self.config.lease_duration,
            rng=random.Random(self.config.seed),
        )
        self.worker = Worker(
            self.claims,
            self.runner,
            batch_size=self.config.batch_size,
            lease_duration=self.config.lease_duration,
            holder=self.config.holder,
        )
        self.status = StatusQueryService(self.store)

        # Polling loop state
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()

    # --- Handler Registration ---

    def handler(
        self,
        hook: str,
        *,
        retry: RetryPolicy | int | dict | None = None,
        timeout: float | None = None,
    ):
        """
        Decorator to register the handler for a hook.

        Args:
            hook: Hook name actions refer to.
            retry: Max attempts, a dict of RetryPolicy fields, or a RetryPolicy.
                Defaults to the config's policy.
            timeout: Execution budget in seconds; defaults to the config's.

        Example:
            @scheduler.handler("resize_image", retry={"max_attempts": 5, "backoff": "linear"})
            def resize_image(path, width):
                ...
        """
        def decorator(func):
            self.registry.register(hook, func, retry=retry, timeout=timeout)
            return func
        return decorator

    def register(self, hook: str, func: Callable[..., Any], **options) -> Handler:
        """Register a handler without the decorator syntax."""
        return self.registry.register(hook, func, **options)

    def get_handler(self, hook: str) -> Handler | None:
        return self.registry.get(hook)

    # --- Lifecycle ---

    async def open(self) -> ActionScheduler:
        await self.store.open()
        return self

    async def close(self) -> None:
        if self._running:
            await self.stop()
        await self.store.close()

    async def __aenter__(self) -> ActionScheduler:
        return await self.open()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _ensure_open(self) -> None:
        if not self.store.is_open:
            await self.store.open()

    def start(self) -> None:
        """
        Start the polling loop.

        Non-blocking - runs ticks as a background asyncio task until stop().
        """
        if self._running:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.get_running_loop().create_task(self._run_loop())

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop the polling loop gracefully.

        The claim being processed finishes first (or until ``timeout``);
        actions left unfinished are recovered when their claim expires.

        Args:
            timeout: Max seconds to wait for in-flight work. None = wait forever.
        """
        self._running = False
        self._wakeup.set()

        if self._loop_task is not None:
            task, self._loop_task = self._loop_task, None
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await self.runner.drain(timeout)

    async def _run_loop(self) -> None:
        """Background loop: tick, then sleep until the next action is due."""
        await self._ensure_open()
        while self._running:
            try:
                claimed = await self.worker.tick()
            except Exception:
                logger.exception("Tick failed, retrying after poll interval")
                claimed = 0

            if not self._running:
                break
            if claimed >= self.config.batch_size:
                continue  # Probably more due right now

            await self._sleep(await self._next_sleep())

    async def _next_sleep(self) -> float:
        try:
            next_due = await self.store.next_due_at()
        except StorageError:
            return self.config.poll_interval
        if next_due is None:
            return self.config.poll_interval
        wait = next_due - self.store.clock()
        return max(MIN_POLL_SLEEP, min(self.config.poll_interval, wait))

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    def wake(self) -> None:
        """Make the polling loop check for due work now."""
        self._wakeup.set()

    # --- Authoring ---

    async def enqueue(
        self,
        hook: str,
        *args: Any,
        schedule: Schedule | None = None,
        group: str | None = None,
        priority: int = 0,
        unique: bool = False,
    ) -> int:
        """
        Enqueue an action. Without ``schedule`` it is due immediately.

        Returns:
            Action id.
        """
        await self._ensure_open()
        action_id = await self.store.enqueue(
            ActionSpec(hook=hook, args=tuple(args), schedule=schedule, group=group, priority=priority, unique=unique)
        )
        self.wake()
        return action_id

    async def schedule_single(self, hook: str, at: float, args: tuple = (), **options) -> int:
        """Run ``hook`` once at timestamp ``at``."""
        return await self.enqueue(hook, *args, schedule=SingleSchedule(at=at), **options)

    async def schedule_interval(
        self,
        hook: str,
        interval: float,
        args: tuple = (),
        start: float | None = None,
        **options,
    ) -> int:
        """Run ``hook`` every ``interval`` seconds starting at ``start`` (default now)."""
        start = self.store.clock() if start is None else start
        return await self.enqueue(hook, *args, schedule=IntervalSchedule(start=start, interval=interval), **options)

    async def schedule_cron(
        self,
        hook: str,
        expression: str,
        args: tuple = (),
        timezone: str = "UTC",
        start: float | None = None,
        **options,
    ) -> int:
        """Run ``hook`` whenever ``expression`` matches, evaluated in ``timezone``."""
        start = self.store.clock() if start is None else start
        schedule = CronSchedule(expression=expression, start=start, timezone=timezone)
        return await self.enqueue(hook, *args, schedule=schedule, **options)

    async def cancel(self, action_id: int) -> bool:
        await self._ensure_open()
        return await self.store.cancel(action_id)

    async def delete(self, action_ids: list[int]) -> int:
        await self._ensure_open()
        return await self.store.delete(action_ids)

    # --- Querying ---

    async def get(self, action_id: int) -> Action:
        await self._ensure_open()
        return await self.store.get(action_id)

    async def query(self, filter: ActionFilter | None = None, **options) -> list[Action]:
        await self._ensure_open()
        return await self.store.query(filter, **options)

    async def query_page(self, filter: ActionFilter | None = None, **options) -> ActionPage:
        await self._ensure_open()
        return await self.store.query_page(filter, **options)

    async def counts(self, group: str | None = None) -> dict[ActionStatus, int]:
        await self._ensure_open()
        return await self.status.counts(group)

    async def summary(self, group: str | None = None, **options) -> StatusSummary:
        await self._ensure_open()
        return await self.status.summary(group, **options)

    async def logs(self, action_id: int) -> list[LogEntry]:
        await self._ensure_open()
        return await self.store.logs(action_id)

    # --- Execution ---

    async def tick(self, now: float | None = None) -> int:
        """Run one recover/claim/run cycle. Returns the number of actions claimed."""
        await self._ensure_open()
        return await self.worker.tick(now)
