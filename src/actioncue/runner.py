"""Executes claimed actions and applies the retry policy."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
import time
from concurrent.futures import Executor
from typing import Any

from actioncue.claims import ClaimManager
from actioncue.errors import ActionCueError, HandlerFailure, HandlerTimeout, UnknownHandler
from actioncue.models import Action, ActionResult, ActionStatus, Claim, Outcome
from actioncue.registry import Handler, HandlerRegistry
from actioncue.retry import RetryPolicy
from actioncue.store import ActionStore

logger = logging.getLogger(__name__)

# How long a cancelled coroutine handler gets to unwind after a timeout
CANCEL_GRACE = 1.0


class Runner:
    """
    Runs the actions of a claim, one after another, in claim order.

    Handlers are called as ``handler(*action.args)``. Coroutine functions are
    awaited; plain functions run in a thread pool so a slow handler does not
    block the event loop. A handler that raises, or returns an exception
    instance, has failed.

    Handlers must be idempotent: if the worker dies after a handler ran but
    before its outcome was stored, the claim expires and the action is
    offered again.

    Example:
        runner = Runner(store, registry, claims, execution_timeout=30)
        claim = await claims.claim(batch_size=10, lease_duration=60)
        for result in await runner.run(claim):
            print(result.action_id, result.outcome)
    """

    def __init__(
        self,
        store: ActionStore,
        registry: HandlerRegistry,
        claims: ClaimManager,
        *,
        retry: RetryPolicy | None = None,
        execution_timeout: float | None = 60.0,
        lease_duration: float | None = None,
        rng: random.Random | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.claims = claims
        self.retry = retry or RetryPolicy()
        self.execution_timeout = execution_timeout
        self.lease_duration = lease_duration
        self.rng = rng or random.Random()
        self.executor = executor

        # Release tasks for thread handlers that outlived their budget
        self._stragglers: set[asyncio.Task] = set()

    @property
    def stragglers(self) -> int:
        """Timed-out thread handlers still running."""
        return len(self._stragglers)

    async def run(self, claim: Claim, now: float | None = None) -> list[ActionResult]:
        """
        Execute every action in ``claim``.

        One failing handler never stops the rest of the claim. Each outcome
        is stored before the next action starts.

        Args:
            claim: Claim returned by ClaimManager.claim.
            now: Time used for bookkeeping and rescheduling; None reads the
                store clock before each action.
        """
        results: list[ActionResult] = []
        try:
            for action_id in claim.action_ids:
                results.append(await self._process(claim, action_id, now))
        finally:
            await self.claims.finish(claim.id)
        return results

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for timed-out thread handlers to return. False if some are still running."""
        if not self._stragglers:
            return True
        done, pending = await asyncio.wait(set(self._stragglers), timeout=timeout)
        return not pending

    async def _process(self, claim: Claim, action_id: int, now: float | None) -> ActionResult:
        current = self.store.timestamp(now)
        if self.lease_duration:
            await self.claims.extend(claim.id, self.lease_duration, current)

        action = await self.store.mark_started(action_id, claim.id, current)
        if action is None:
            logger.warning("Action %s is no longer held by claim %s, skipping", action_id, claim.id)
            return ActionResult(action_id=action_id, hook="", outcome=Outcome.SKIPPED)

        handler = self.registry.get(action.hook)
        if handler is None:
            error = UnknownHandler(action.hook)
            logger.error("Action %s failed: %s", action.id, error)
            status = await self.store.record_outcome(
                action.id,
                claim.id,
                ActionStatus.FAILED,
                f"action failed: {error}",
                now=current,
                last_error=error_payload(error, action.attempts),
            )
            return self._result(action, Outcome.UNKNOWN_HANDLER, status, error=str(error))

        started = time.monotonic()
        try:
            await self._invoke(handler, action, claim)
        except HandlerTimeout as e:
            duration = time.monotonic() - started
            return await self._on_failure(claim, action, handler, e, Outcome.TIMEOUT, now, duration)
        except HandlerFailure as e:
            duration = time.monotonic() - started
            return await self._on_failure(claim, action, handler, e, Outcome.FAILURE, now, duration)

        duration = time.monotonic() - started
        return await self._on_success(claim, action, now, duration)

    async def _invoke(self, handler: Handler, action: Action, claim: Claim) -> None:
        """Call the handler under its execution budget."""
        timeout = handler.timeout if handler.timeout is not None else self.execution_timeout
        loop = asyncio.get_running_loop()

        if handler.is_async:
            try:
                future: asyncio.Future = asyncio.ensure_future(handler.func(*action.args))
            except Exception as e:
                raise HandlerFailure(handler.hook, e) from e
        else:
            future = loop.run_in_executor(self.executor, functools.partial(handler.func, *action.args))

        try:
            done, _ = await asyncio.wait({future}, timeout=timeout)
        except asyncio.CancelledError:
            future.cancel()
            raise

        if not done:
            error = HandlerTimeout(handler.hook, timeout)
            if handler.is_async:
                future.cancel()
                done, _ = await asyncio.wait({future}, timeout=CANCEL_GRACE)
            if not done:
                # Cannot preempt it; keep the claim until it really returns
                error.still_running = True
                self._track_straggler(future, action, claim)
            else:
                _consume(future)
            raise error

        if future.cancelled():
            raise HandlerFailure(handler.hook, message=f"Handler for {handler.hook} was cancelled")
        exc = future.exception()
        if exc is not None:
            raise HandlerFailure(handler.hook, exc) from exc
        result = future.result()
        if isinstance(result, BaseException):
            raise HandlerFailure(handler.hook, result)

    async def _on_success(self, claim: Claim, action: Action, now: float | None, duration: float) -> ActionResult:
        current = self.store.timestamp(now)
        next_due = action.schedule.next_after(current) if action.is_recurring else None

        if next_due is not None:
            status = await self.store.record_outcome(
                action.id,
                claim.id,
                ActionStatus.PENDING,
                f"action complete, next run at {next_due:.3f}",
                now=current,
                next_due=next_due,
                reset_attempts=True,
            )
        else:
            status = await self.store.record_outcome(
                action.id, claim.id, ActionStatus.COMPLETE, "action complete", now=current
            )

        if status is None:
            logger.warning("Lost claim on action %s before storing its result", action.id)
            return self._result(action, Outcome.SKIPPED, None, duration=duration)
        logger.debug("Action %s (%s) complete in %.3fs", action.id, action.hook, duration)
        return self._result(
            action,
            Outcome.SUCCESS,
            status,
            next_due=next_due if status == ActionStatus.PENDING else None,
            duration=duration,
        )

    async def _on_failure(
        self,
        claim: Claim,
        action: Action,
        handler: Handler,
        error: HandlerFailure,
        outcome: Outcome,
        now: float | None,
        duration: float,
    ) -> ActionResult:
        current = self.store.timestamp(now)
        policy = handler.retry or self.retry
        payload = error_payload(error, action.attempts)
        release = not getattr(error, "still_running", False)

        if policy.should_retry(action.attempts):
            next_due = current + policy.delay(action.attempts, self.rng)
            status = await self.store.record_outcome(
                action.id,
                claim.id,
                ActionStatus.PENDING,
                f"action failed: {error}; retry {action.attempts + 1}/{policy.max_attempts} at {next_due:.3f}",
                now=current,
                next_due=next_due,
                last_error=payload,
                release=release,
            )
            logger.warning("Action %s (%s) failed, will retry: %s", action.id, action.hook, error)
        else:
            next_due = None
            status = await self.store.record_outcome(
                action.id,
                claim.id,
                ActionStatus.FAILED,
                f"action failed after {action.attempts} attempt(s): {error}",
                now=current,
                last_error=payload,
                release=release,
            )
            logger.error("Action %s (%s) failed permanently: %s", action.id, action.hook, error)

        if status is None:
            logger.warning("Lost claim on action %s before storing its failure", action.id)
            return self._result(action, Outcome.SKIPPED, None, error=str(error), duration=duration)
        return self._result(
            action,
            outcome,
            status,
            error=str(error),
            next_due=next_due if status == ActionStatus.PENDING else None,
            duration=duration,
        )

    def _track_straggler(self, future: asyncio.Future, action: Action, claim: Claim) -> None:
        lease = self.lease_duration or (claim.expires_at - claim.created_at)

        async def release_when_done() -> None:
            try:
                # Keep renewing the lease so reclaim_expired never frees the action mid-run
                held = await self.claims.extend(claim.id, lease)
                while held:
                    done, _ = await asyncio.wait({future}, timeout=lease / 2)
                    if done:
                        break
                    held = await self.claims.extend(claim.id, lease)
                if not held:
                    logger.warning("Claim %s vanished while action %s was still running", claim.id, action.id)
                    await asyncio.wait({future})
                _consume(future)
                logger.info("Late handler for action %s returned, releasing claim", action.id)
                await self.store.release_action(action.id, claim.id)
                await self.claims.finish(claim.id)
            except (ActionCueError, ValueError):
                logger.exception("Could not release claim %s for late action %s", claim.id, action.id)

        task = asyncio.create_task(release_when_done())
        self._stragglers.add(task)
        task.add_done_callback(self._stragglers.discard)

    @staticmethod
    def _result(
        action: Action,
        outcome: Outcome,
        status: ActionStatus | None,
        *,
        error: str | None = None,
        next_due: float | None = None,
        duration: float = 0.0,
    ) -> ActionResult:
        return ActionResult(
            action_id=action.id,
            hook=action.hook,
            outcome=outcome,
            status=status,
            error=error,
            next_due=next_due,
            duration=duration,
        )


def error_payload(error: Exception, attempt: int) -> dict[str, Any]:
    """Diagnostic stored in ``Action.last_error``."""
    payload: dict[str, Any] = {
        "type": type(error).__name__,
        "message": str(error),
        "attempt": attempt,
    }
    cause = getattr(error, "cause", None)
    if cause is not None:
        payload["exception"] = type(cause).__name__
    return payload


def _consume(future: asyncio.Future) -> None:
    """Retrieve a finished future's exception so asyncio doesn't warn about it."""
    if not future.cancelled():
        future.exception()
