"""Tests for the Runner: execution, outcomes and retries."""

import asyncio
import logging
import threading
import time

from actioncue import ActionSpec, ActionStatus, Outcome
from actioncue.retry import RetryPolicy
from actioncue.schedules import IntervalSchedule, SingleSchedule


async def claim_all(claims, now):
    return await claims.claim(50, 60, now=now)


class TestSuccess:
    """Handlers that succeed."""

    async def test_single_action_completes(self, store, registry, claims, runner, clock):
        calls = []
        registry.register("greet", lambda name: calls.append(name))
        action_id = await store.enqueue(ActionSpec("greet", args=("ada",)))

        claim = await claim_all(claims, clock.now)
        [result] = await runner.run(claim, clock.now)

        assert calls == ["ada"]
        assert result.outcome == Outcome.SUCCESS
        assert result.status == ActionStatus.COMPLETE
        action = await store.get(action_id)
        assert action.status == ActionStatus.COMPLETE
        assert action.attempts == 1
        assert action.claim_id is None
        assert action.completed_at == clock.now
        assert await claims.get(claim.id) is None

    async def test_async_handler_awaited(self, store, registry, claims, runner, clock):
        seen = []

        async def handler(a, b):
            await asyncio.sleep(0)
            seen.append(a + b)

        registry.register("add", handler)
        await store.enqueue(ActionSpec("add", args=(2, 3)))

        await runner.run(await claim_all(claims, clock.now), clock.now)
        assert seen == [5]

    async def test_sync_handler_runs_off_the_event_loop(self, store, registry, claims, runner, clock):
        threads = []
        registry.register("where", lambda: threads.append(threading.current_thread()))
        await store.enqueue(ActionSpec("where"))

        await runner.run(await claim_all(claims, clock.now), clock.now)
        assert threads and threads[0] is not threading.main_thread()

    async def test_recurring_action_rescheduled(self, store, registry, claims, runner, clock):
        registry.register("tick", lambda: None)
        action_id = await store.enqueue(
            ActionSpec("tick", schedule=IntervalSchedule(start=clock.now, interval=60))
        )

        [result] = await runner.run(await claim_all(claims, clock.now + 2), clock.now + 2)

        assert result.status == ActionStatus.PENDING
        assert result.next_due == clock.now + 60
        action = await store.get(action_id)
        assert action.status == ActionStatus.PENDING
        assert action.next_due == clock.now + 60
        assert action.attempts == 0
        assert action.claim_id is None

    async def test_claim_order_preserved(self, store, registry, claims, runner, clock):
        order = []
        registry.register("record", lambda n: order.append(n))
        for n, due in ((1, 30), (2, 10), (3, 20)):
            await store.enqueue(ActionSpec("record", args=(n,), schedule=SingleSchedule(at=clock.now - due)))

        await runner.run(await claim_all(claims, clock.now), clock.now)
        assert order == [1, 3, 2]


class TestFailure:
    """Handlers that fail, and the retry state machine."""

    async def test_failure_schedules_retry(self, store, registry, claims, runner, clock):
        def boom():
            raise ValueError("bad input")

        registry.register("boom", boom)
        action_id = await store.enqueue(ActionSpec("boom"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)

        assert result.outcome == Outcome.FAILURE
        assert result.status == ActionStatus.PENDING
        assert "bad input" in result.error
        action = await store.get(action_id)
        assert action.status == ActionStatus.PENDING
        assert action.next_due == clock.now + 10
        assert action.attempts == 1
        assert action.last_error["exception"] == "ValueError"
        assert action.last_error["attempt"] == 1

    async def test_retries_exhausted(self, store, registry, claims, runner, clock):
        calls = []

        def boom():
            calls.append(1)
            raise RuntimeError("down")

        registry.register("boom", boom)
        action_id = await store.enqueue(ActionSpec("boom"))

        now = clock.now
        for _ in range(3):
            await runner.run(await claim_all(claims, now), now)
            now += 10

        action = await store.get(action_id)
        assert len(calls) == 3
        assert action.status == ActionStatus.FAILED
        assert action.attempts == 3
        assert action.last_error["attempt"] == 3
        assert (await claims.claim(10, 30, now=now + 10_000)).action_ids == ()

    async def test_handler_retry_policy_overrides_default(self, store, registry, claims, runner, clock):
        registry.register("once", lambda: 1 / 0, retry=1)
        action_id = await store.enqueue(ActionSpec("once"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)
        assert result.status == ActionStatus.FAILED
        assert (await store.get(action_id)).status == ActionStatus.FAILED

    async def test_returned_exception_is_failure(self, store, registry, claims, runner, clock):
        registry.register("soft_fail", lambda: RuntimeError("returned, not raised"))
        await store.enqueue(ActionSpec("soft_fail"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)
        assert result.outcome == Outcome.FAILURE

    async def test_wrong_arguments_are_failure(self, store, registry, claims, runner, clock):
        async def needs_two(a, b):
            return a + b

        registry.register("needs_two", needs_two)
        await store.enqueue(ActionSpec("needs_two", args=(1,)))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)
        assert result.outcome == Outcome.FAILURE
        assert "TypeError" in result.error

    async def test_unknown_hook_fails_without_retry(self, store, claims, runner, clock):
        action_id = await store.enqueue(ActionSpec("nobody_home"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)

        assert result.outcome == Outcome.UNKNOWN_HANDLER
        action = await store.get(action_id)
        assert action.status == ActionStatus.FAILED
        assert action.attempts == 1
        assert action.last_error["type"] == "UnknownHandler"

    async def test_failure_does_not_stop_the_claim(self, store, registry, claims, runner, clock):
        done = []

        def maybe(n):
            if n == 2:
                raise RuntimeError("two")
            done.append(n)

        registry.register("maybe", maybe)
        for n in (1, 2, 3):
            await store.enqueue(ActionSpec("maybe", args=(n,)))

        results = await runner.run(await claim_all(claims, clock.now), clock.now)

        assert done == [1, 3]
        assert [r.outcome for r in results] == [Outcome.SUCCESS, Outcome.FAILURE, Outcome.SUCCESS]


class TestTimeout:
    """Execution budget enforcement."""

    async def test_async_handler_cancelled(self, store, registry, claims, runner, clock):
        cancelled = []

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        registry.register("slow", slow, timeout=0.05)
        action_id = await store.enqueue(ActionSpec("slow"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)

        assert result.outcome == Outcome.TIMEOUT
        assert cancelled == [True]
        action = await store.get(action_id)
        assert action.status == ActionStatus.PENDING
        assert action.claim_id is None
        assert action.last_error["type"] == "HandlerTimeout"

    async def test_thread_handler_keeps_claim_until_it_returns(self, store, registry, claims, clock):
        """A timed-out thread cannot be stopped, so its action stays unclaimable until it exits."""
        from actioncue import Runner

        runner = Runner(
            store,
            registry,
            claims,
            retry=RetryPolicy(max_attempts=3, backoff="fixed", base_delay=0, jitter=0),
        )
        release = threading.Event()
        registry.register("stuck", lambda: release.wait(5), timeout=0.05)
        action_id = await store.enqueue(ActionSpec("stuck"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)

        assert result.outcome == Outcome.TIMEOUT
        assert runner.stragglers == 1
        action = await store.get(action_id)
        assert action.status == ActionStatus.PENDING
        assert action.claim_id is not None
        assert (await claims.claim(10, 30, now=clock.now + 1)).action_ids == ()

        release.set()
        assert await runner.drain(timeout=5)

        assert (await store.get(action_id)).claim_id is None
        assert (await claims.claim(10, 30, now=clock.now + 1)).action_ids == (action_id,)

    async def test_thread_handler_outliving_its_lease_is_not_reclaimed(self, store, registry, claims, clock):
        """The lease is renewed while the thread runs, so another worker cannot pick the action up."""
        from actioncue import ClaimManager, Runner

        runner = Runner(
            store,
            registry,
            claims,
            retry=RetryPolicy(max_attempts=3, backoff="fixed", base_delay=10, jitter=0),
            lease_duration=0.2,
        )
        release = threading.Event()
        calls = []

        def stuck():
            calls.append(1)
            release.wait(5)

        registry.register("stuck", stuck, timeout=0.05)
        action_id = await store.enqueue(ActionSpec("stuck"))

        [result] = await runner.run(await claims.claim(10, 0.2, now=clock.now), clock.now)
        assert result.outcome == Outcome.TIMEOUT

        # Well past both the original lease and the retry delay
        clock.advance(11)
        await asyncio.sleep(0.35)

        other = ClaimManager(store, holder="other-worker")
        assert await other.reclaim_expired(clock.now) == 0
        assert (await other.claim(10, 30, now=clock.now)).action_ids == ()
        assert calls == [1]

        release.set()
        assert await runner.drain(timeout=5)
        assert (await other.claim(10, 30, now=clock.now)).action_ids == (action_id,)

    async def test_straggler_survives_store_closing(self, store, registry, claims, clock, caplog):
        """A late thread whose store was closed logs the failed release instead of crashing."""
        caplog.set_level(logging.ERROR, logger="actioncue.runner")
        from actioncue import Runner

        runner = Runner(store, registry, claims, lease_duration=0.2)
        release = threading.Event()
        registry.register("stuck", lambda: release.wait(5), timeout=0.05)
        await store.enqueue(ActionSpec("stuck"))

        await runner.run(await claim_all(claims, clock.now), clock.now)
        await asyncio.sleep(0.05)
        await store.close()

        release.set()
        assert await runner.drain(timeout=5)
        assert runner.stragglers == 0
        assert "Could not release claim" in caplog.text


class TestCancellationAndLostClaims:
    """Outcome persistence is conditional on still holding the action."""

    async def test_cancel_during_run_stops_recurrence(self, store, registry, claims, runner, clock):
        ids = []

        async def cancel_self():
            await store.cancel(ids[0])

        registry.register("cancel_self", cancel_self)
        ids.append(await store.enqueue(
            ActionSpec("cancel_self", schedule=IntervalSchedule(start=clock.now, interval=60))
        ))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)

        assert result.outcome == Outcome.SUCCESS
        assert result.status == ActionStatus.CANCELED
        action = await store.get(ids[0])
        assert action.status == ActionStatus.CANCELED
        assert action.claim_id is None

    async def test_cancel_during_run_prevents_retry(self, store, registry, claims, runner, clock):
        ids = []

        async def cancel_then_fail():
            await store.cancel(ids[0])
            raise RuntimeError("fail after cancel")

        registry.register("cancel_then_fail", cancel_then_fail)
        ids.append(await store.enqueue(ActionSpec("cancel_then_fail")))

        await runner.run(await claim_all(claims, clock.now), clock.now)
        assert (await store.get(ids[0])).status == ActionStatus.CANCELED

    async def test_lost_claim_is_skipped(self, store, registry, claims, runner, clock):
        async def lose_claim():
            # Another worker decides our lease ran out
            await claims.reclaim_expired(now=clock.now + 10_000)

        registry.register("lose_claim", lose_claim)
        action_id = await store.enqueue(ActionSpec("lose_claim"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)

        assert result.outcome == Outcome.SKIPPED
        action = await store.get(action_id)
        assert action.status == ActionStatus.PENDING
        assert action.attempts == 1

    async def test_action_released_before_run_is_skipped(self, store, registry, claims, runner, clock):
        calls = []
        registry.register("noop", lambda: calls.append(1))
        await store.enqueue(ActionSpec("noop"))
        claim = await claim_all(claims, clock.now)
        await claims.release(claim.id)

        [result] = await runner.run(claim, clock.now)
        assert result.outcome == Outcome.SKIPPED
        assert calls == []


class TestLease:
    """The lease is renewed before each action."""

    async def test_lease_extended_per_action(self, store, registry, claims, clock):
        from actioncue import Runner

        runner = Runner(store, registry, claims, lease_duration=120)
        expiries = []

        async def read_lease():
            claim = (await claims.active(now=clock.now))[0]
            expiries.append(claim.expires_at)

        registry.register("read_lease", read_lease)
        await store.enqueue(ActionSpec("read_lease"))
        claim = await claims.claim(10, 30, now=clock.now)

        await runner.run(claim, clock.now + 5)
        assert expiries == [clock.now + 125]

    async def test_duration_measured(self, store, registry, claims, runner, clock):
        registry.register("nap", lambda: time.sleep(0.02))
        await store.enqueue(ActionSpec("nap"))

        [result] = await runner.run(await claim_all(claims, clock.now), clock.now)
        assert result.duration >= 0.02
