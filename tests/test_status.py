"""Tests for the status query service."""

from actioncue import ActionSpec, ActionStatus, StatusQueryService
from actioncue.schedules import SingleSchedule


class TestCounts:
    """Per-status counts."""

    async def test_counts_reflect_latest_state(self, store, claims, clock):
        service = StatusQueryService(store)
        a = await store.enqueue(ActionSpec("job"))
        await store.enqueue(ActionSpec("job"))
        await store.enqueue(ActionSpec("job", schedule=SingleSchedule(at=clock.now + 100)))

        counts = await service.counts()
        assert counts[ActionStatus.PENDING] == 3

        await claims.claim(1, 30)
        await store.cancel(a)  # a is in progress, so only flagged
        counts = await service.counts()
        assert counts[ActionStatus.PENDING] == 2
        assert counts[ActionStatus.IN_PROGRESS] == 1
        assert counts[ActionStatus.CANCELED] == 0

    async def test_counts_by_group(self, store):
        service = StatusQueryService(store)
        await store.enqueue(ActionSpec("job", group="billing"))
        await store.enqueue(ActionSpec("job", group="billing"))
        await store.enqueue(ActionSpec("job", group="email"))

        assert (await service.counts("billing"))[ActionStatus.PENDING] == 2
        assert (await service.counts("email"))[ActionStatus.PENDING] == 1
        assert sum((await service.counts("nothing")).values()) == 0


class TestSummary:
    """Backlog health."""

    async def test_past_due_and_oldest(self, store, clock):
        service = StatusQueryService(store)
        now = clock.now
        await store.enqueue(ActionSpec("job", schedule=SingleSchedule(at=now - 600)))
        await store.enqueue(ActionSpec("job", schedule=SingleSchedule(at=now - 30)))
        await store.enqueue(ActionSpec("job", schedule=SingleSchedule(at=now + 30)))

        summary = await service.summary(now=now)
        assert summary.past_due == 2
        assert summary.oldest_due == now - 600
        assert summary.total == 3

        strict = await service.summary(now=now, past_due_threshold=300)
        assert strict.past_due == 1

    async def test_empty_store(self, store):
        summary = await StatusQueryService(store).summary()
        assert summary.past_due == 0
        assert summary.oldest_due is None
        assert summary.total == 0
