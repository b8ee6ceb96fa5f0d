"""Tests for ActionStore: authoring, querying and persistence."""

import pytest

from actioncue import ActionFilter, ActionSpec, ActionStatus, ActionStore
from actioncue.errors import ActionNotFound, InvalidQuery, StorageError
from actioncue.schedules import IntervalSchedule, SingleSchedule


class TestEnqueue:
    """Creating actions."""

    async def test_enqueue_defaults_to_due_now(self, store, clock):
        """Without a schedule an action is due at creation time."""
        action_id = await store.enqueue(ActionSpec("send_email", args=("a@example.com", 3)))

        action = await store.get(action_id)
        assert action.hook == "send_email"
        assert action.args == ("a@example.com", 3)
        assert action.status == ActionStatus.PENDING
        assert action.next_due == clock.now
        assert action.created_at == clock.now
        assert action.attempts == 0
        assert action.claim_id is None
        assert action.schedule == SingleSchedule(at=clock.now)

    async def test_enqueue_with_schedule(self, store, clock):
        action_id = await store.enqueue(
            ActionSpec("report", schedule=IntervalSchedule(start=clock.now + 100, interval=60), group="reports")
        )

        action = await store.get(action_id)
        assert action.next_due == clock.now + 100
        assert action.group == "reports"
        assert action.is_recurring

    async def test_ids_are_unique_and_increasing(self, store):
        ids = [await store.enqueue(ActionSpec("noop")) for _ in range(5)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    async def test_enqueue_logs_creation(self, store):
        action_id = await store.enqueue(ActionSpec("noop"))
        logs = await store.logs(action_id)
        assert [entry.message for entry in logs] == ["action created"]

    async def test_empty_hook_rejected(self, store):
        with pytest.raises(ValueError):
            await store.enqueue(ActionSpec(""))

    async def test_unique_returns_live_duplicate(self, store):
        first = await store.enqueue(ActionSpec("sync", args=(1,), group="g", unique=True))
        second = await store.enqueue(ActionSpec("sync", args=(1,), group="g", unique=True))
        other = await store.enqueue(ActionSpec("sync", args=(2,), group="g", unique=True))

        assert second == first
        assert other != first
        assert await store.count() == 2

    async def test_unique_ignores_finished_actions(self, store):
        first = await store.enqueue(ActionSpec("sync", unique=True))
        await store.cancel(first)

        second = await store.enqueue(ActionSpec("sync", unique=True))
        assert second != first


class TestGet:
    """Reading single actions."""

    async def test_missing_action(self, store):
        with pytest.raises(ActionNotFound) as exc_info:
            await store.get(404)
        assert exc_info.value.action_id == 404

    async def test_not_found_is_lookup_error(self, store):
        with pytest.raises(LookupError):
            await store.get(1)

    async def test_closed_store_raises_storage_error(self, clock):
        closed = ActionStore(":memory:", clock=clock)
        with pytest.raises(StorageError, match="not open"):
            await closed.get(1)


class TestCancel:
    """Cancellation rules."""

    async def test_cancel_pending(self, store, clock):
        action_id = await store.enqueue(ActionSpec("noop"))

        assert await store.cancel(action_id) is True

        action = await store.get(action_id)
        assert action.status == ActionStatus.CANCELED
        assert action.completed_at == clock.now

    async def test_cancel_twice_is_noop(self, store):
        action_id = await store.enqueue(ActionSpec("noop"))
        await store.cancel(action_id)

        assert await store.cancel(action_id) is False
        assert (await store.get(action_id)).status == ActionStatus.CANCELED

    async def test_cancel_in_progress_sets_flag(self, store, claims):
        action_id = await store.enqueue(ActionSpec("noop"))
        await claims.claim(10, 30)

        assert await store.cancel(action_id) is True

        action = await store.get(action_id)
        assert action.status == ActionStatus.IN_PROGRESS
        assert action.cancel_requested is True
        assert await store.cancel(action_id) is False

    async def test_cancel_missing(self, store):
        with pytest.raises(ActionNotFound):
            await store.cancel(999)

    async def test_cancel_is_logged(self, store):
        action_id = await store.enqueue(ActionSpec("noop"))
        await store.cancel(action_id)
        assert (await store.logs(action_id))[-1].message == "action canceled"


class TestQuery:
    """Filtering, sorting and pagination."""

    async def _seed(self, store, clock):
        ids = {}
        ids["late"] = await store.enqueue(ActionSpec("email", args=("invoice-7",), group="billing", priority=1,
                                                     schedule=SingleSchedule(at=clock.now + 300)))
        ids["soon"] = await store.enqueue(ActionSpec("email", args=("welcome",), group="onboarding",
                                                     schedule=SingleSchedule(at=clock.now + 10)))
        ids["mid"] = await store.enqueue(ActionSpec("report", args=(42,), group="billing", priority=5,
                                                    schedule=SingleSchedule(at=clock.now + 100)))
        return ids

    async def test_default_order_is_next_due_ascending(self, store, clock):
        ids = await self._seed(store, clock)
        result = await store.query()
        assert [a.id for a in result] == [ids["soon"], ids["mid"], ids["late"]]

    async def test_order_desc(self, store, clock):
        ids = await self._seed(store, clock)
        result = await store.query(order_by="priority", order="desc")
        assert [a.id for a in result] == [ids["mid"], ids["late"], ids["soon"]]

    async def test_ties_broken_by_id(self, store):
        ids = [await store.enqueue(ActionSpec("noop")) for _ in range(4)]
        result = await store.query(order_by="hook")
        assert [a.id for a in result] == ids

    async def test_filter_by_group_and_hook(self, store, clock):
        ids = await self._seed(store, clock)
        assert {a.id for a in await store.query(ActionFilter(group="billing"))} == {ids["late"], ids["mid"]}
        assert [a.id for a in await store.query(ActionFilter(group="billing", hook="email"))] == [ids["late"]]

    async def test_filter_by_status_list(self, store, clock):
        ids = await self._seed(store, clock)
        await store.cancel(ids["soon"])

        canceled = await store.query(ActionFilter(status=ActionStatus.CANCELED))
        assert [a.id for a in canceled] == [ids["soon"]]
        both = await store.query(ActionFilter(status=["pending", "canceled"]))
        assert len(both) == 3

    async def test_filter_by_due_window(self, store, clock):
        ids = await self._seed(store, clock)
        result = await store.query(ActionFilter(due_after=clock.now + 50, due_before=clock.now + 200))
        assert [a.id for a in result] == [ids["mid"]]

    async def test_search_matches_args_hook_and_group(self, store, clock):
        ids = await self._seed(store, clock)
        assert [a.id for a in await store.query(ActionFilter(search="invoice"))] == [ids["late"]]
        assert [a.id for a in await store.query(ActionFilter(search="repo"))] == [ids["mid"]]
        assert [a.id for a in await store.query(ActionFilter(search="onboard"))] == [ids["soon"]]

    async def test_search_treats_wildcards_literally(self, store):
        await store.enqueue(ActionSpec("noop", args=("plain",)))
        hit = await store.enqueue(ActionSpec("noop", args=("100%",)))
        assert [a.id for a in await store.query(ActionFilter(search="%"))] == [hit]

    async def test_limit_and_offset(self, store):
        ids = [await store.enqueue(ActionSpec("noop")) for _ in range(5)]
        result = await store.query(order_by="id", limit=2, offset=1)
        assert [a.id for a in result] == ids[1:3]
        assert len(await store.query(limit=None)) == 5

    async def test_unknown_sort_column(self, store):
        with pytest.raises(InvalidQuery, match="Cannot sort by"):
            await store.query(order_by="args; DROP TABLE actions")

    async def test_unknown_direction(self, store):
        with pytest.raises(InvalidQuery, match="Sort order"):
            await store.query(order="sideways")

    async def test_unknown_status(self, store):
        with pytest.raises(InvalidQuery, match="Unknown status"):
            await store.query(ActionFilter(status="exploded"))

    async def test_negative_limit(self, store):
        with pytest.raises(InvalidQuery):
            await store.query(limit=-1)

    async def test_query_page(self, store):
        for _ in range(25):
            await store.enqueue(ActionSpec("noop"))

        page = await store.query_page(order_by="id", page=3, per_page=10)
        assert page.total == 25
        assert page.total_pages == 3
        assert len(page.items) == 5
        assert page.page == 3

    async def test_query_page_rejects_page_zero(self, store):
        with pytest.raises(InvalidQuery):
            await store.query_page(page=0)


class TestCounts:
    """Aggregate counts."""

    async def test_count_by_status_is_zero_filled(self, store):
        counts = await store.count_by_status()
        assert counts == {status: 0 for status in ActionStatus}

    async def test_count_by_status(self, store):
        a = await store.enqueue(ActionSpec("noop"))
        await store.enqueue(ActionSpec("noop"))
        await store.cancel(a)

        counts = await store.count_by_status()
        assert counts[ActionStatus.PENDING] == 1
        assert counts[ActionStatus.CANCELED] == 1
        assert counts[ActionStatus.COMPLETE] == 0

    async def test_count_with_filter(self, store):
        await store.enqueue(ActionSpec("noop", group="a"))
        await store.enqueue(ActionSpec("noop", group="b"))
        assert await store.count(ActionFilter(group="a")) == 1
        assert await store.count() == 2


class TestDelete:
    """Bulk delete."""

    async def test_delete_removes_actions_and_logs(self, store):
        a = await store.enqueue(ActionSpec("noop"))
        b = await store.enqueue(ActionSpec("noop"))

        assert await store.delete([a, b, 12345]) == 2
        assert await store.count() == 0
        assert await store.logs(a) == []

    async def test_delete_skips_in_progress(self, store, claims):
        running = await store.enqueue(ActionSpec("noop"))
        await claims.claim(10, 30)
        idle = await store.enqueue(ActionSpec("noop"))

        assert await store.delete([running, idle]) == 1
        assert (await store.get(running)).status == ActionStatus.IN_PROGRESS

    async def test_delete_nothing(self, store):
        assert await store.delete([]) == 0


class TestNextDue:
    """Earliest due time used by the polling loop."""

    async def test_empty_store(self, store):
        assert await store.next_due_at() is None

    async def test_earliest_pending(self, store, clock):
        await store.enqueue(ActionSpec("noop", schedule=SingleSchedule(at=clock.now + 50)))
        soon = await store.enqueue(ActionSpec("noop", schedule=SingleSchedule(at=clock.now + 5)))
        assert await store.next_due_at() == clock.now + 5

        await store.cancel(soon)
        assert await store.next_due_at() == clock.now + 50


class TestPersistence:
    """Actions survive reopening a database file."""

    async def test_reopen_file(self, tmp_path, clock):
        path = str(tmp_path / "actions.db")
        async with ActionStore(path, clock=clock) as store:
            action_id = await store.enqueue(
                ActionSpec("report", args=({"user": 7},), schedule=IntervalSchedule(start=clock.now, interval=30))
            )

        async with ActionStore(path, clock=clock) as store:
            action = await store.get(action_id)
            assert action.args == ({"user": 7},)
            assert action.schedule == IntervalSchedule(start=clock.now, interval=30)
