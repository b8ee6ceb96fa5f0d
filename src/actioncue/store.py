"""Durable action store backed by SQLite."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from actioncue import db
from actioncue.errors import ActionNotFound, InvalidQuery, StorageError
from actioncue.models import (
    Action,
    ActionFilter,
    ActionPage,
    ActionSpec,
    ActionStatus,
    LogEntry,
)
from actioncue.schedules import schedule_from_dict

logger = logging.getLogger(__name__)

# Public sort keys -> column names
SORTABLE_COLUMNS = {
    "id": "id",
    "hook": "hook",
    "group": "group_name",
    "status": "status",
    "priority": "priority",
    "attempts": "attempts",
    "created_at": "created_at",
    "next_due": "next_due",
    "started_at": "started_at",
    "completed_at": "completed_at",
}

LIVE_STATUSES = (ActionStatus.PENDING.value, ActionStatus.IN_PROGRESS.value)


class ActionStore:
    """
    Persistence for actions, claims and the action audit log.

    One store wraps one SQLite connection. Workers in other processes (or
    other stores in this process) coordinate through the database file; the
    store only guarantees that its own connection runs one transaction at a
    time.

    Example:
        async with ActionStore("queue.db") as store:
            action_id = await store.enqueue(ActionSpec("send_report", args=(42,)))
            action = await store.get(action_id)
    """

    def __init__(self, db_path: str = ":memory:", *, clock: Callable[[], float] = time.time) -> None:
        self.db_path = db_path
        self.clock = clock
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    # --- Lifecycle ---

    async def open(self) -> ActionStore:
        # Concurrent first calls must share one connection (":memory:" would split)
        async with self._lock:
            if self._conn is None:
                try:
                    self._conn = await db.init_db(self.db_path)
                except aiosqlite.Error as e:
                    raise StorageError(f"Cannot open store at {self.db_path}: {e}") from e
        return self

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def __aenter__(self) -> ActionStore:
        return await self.open()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def timestamp(self, now: float | None = None) -> float:
        """Return ``now`` if given, otherwise the store clock."""
        return self.clock() if now is None else now

    # --- Transactions ---

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a write transaction (``BEGIN IMMEDIATE``) on this store's connection."""
        conn = self._require_conn()
        async with self._lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as e:
                raise StorageError(f"Cannot begin transaction: {e}") from e
            try:
                yield conn
                await conn.commit()
            except aiosqlite.Error as e:
                await self._rollback(conn)
                raise StorageError(str(e)) from e
            except BaseException:
                await self._rollback(conn)
                raise

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run reads without interleaving with this store's own writes."""
        conn = self._require_conn()
        async with self._lock:
            try:
                yield conn
            except aiosqlite.Error as e:
                raise StorageError(str(e)) from e

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Store is not open")
        return self._conn

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error:
            logger.exception("Rollback failed")

    @staticmethod
    async def log(conn: aiosqlite.Connection, action_ids: int | Iterable[int], message: str, now: float) -> None:
        """Append a line to the audit log of one or more actions."""
        ids = [action_ids] if isinstance(action_ids, int) else list(action_ids)
        await conn.executemany(
            "INSERT INTO action_logs (action_id, timestamp, message) VALUES (?, ?, ?)",
            [(action_id, now, message) for action_id in ids],
        )

    # --- Authoring ---

    async def enqueue(self, spec: ActionSpec, now: float | None = None) -> int:
        """
        Persist a new action.

        Args:
            spec: What to run and when.
            now: Creation time; defaults to the store clock. Also the due time
                when ``spec.schedule`` is None.

        Returns:
            The new action's id, or the id of the live duplicate when
            ``spec.unique`` is set and one exists.
        """
        if not spec.hook:
            raise ValueError("hook must be a non-empty string")
        now = self.timestamp(now)
        schedule = spec.resolve_schedule(now)
        args_json = json.dumps(list(spec.args))
        schedule_json = json.dumps(schedule.to_dict())

        async with self.transaction() as conn:
            if spec.unique:
                async with conn.execute(
                    """
                    SELECT id FROM actions
                    WHERE hook = ? AND args = ? AND COALESCE(group_name, '') = COALESCE(?, '')
                      AND status IN (?, ?)
                    ORDER BY id LIMIT 1
                    """,
                    (spec.hook, args_json, spec.group, *LIVE_STATUSES),
                ) as cursor:
                    row = await cursor.fetchone()
                if row:
                    return row["id"]

            cursor = await conn.execute(
                """
                INSERT INTO actions (hook, args, schedule, group_name, status, priority, created_at, next_due)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    spec.hook,
                    args_json,
                    schedule_json,
                    spec.group,
                    ActionStatus.PENDING.value,
                    spec.priority,
                    now,
                    schedule.first_due(),
                ),
            )
            action_id = cursor.lastrowid
            await self.log(conn, action_id, "action created", now)

        logger.debug("Enqueued action %s (%s)", action_id, spec.hook)
        return action_id

    async def cancel(self, action_id: int, now: float | None = None) -> bool:
        """
        Cancel an action.

        Pending actions are canceled immediately. In-progress actions finish
        their current run but are never rescheduled or retried. Canceling an
        action that is already complete, failed or canceled does nothing.

        Returns:
            True if the action was canceled or marked for cancellation.

        Raises:
            ActionNotFound: If no action has this id.
        """
        now = self.timestamp(now)
        async with self.transaction() as conn:
            async with conn.execute(
                "SELECT status, cancel_requested FROM actions WHERE id = ?", (action_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise ActionNotFound(action_id)

            status = ActionStatus(row["status"])
            if status == ActionStatus.PENDING:
                await conn.execute(
                    "UPDATE actions SET status = ?, completed_at = ? WHERE id = ?",
                    (ActionStatus.CANCELED.value, now, action_id),
                )
                await self.log(conn, action_id, "action canceled", now)
                return True
            if status == ActionStatus.IN_PROGRESS and not row["cancel_requested"]:
                await conn.execute("UPDATE actions SET cancel_requested = 1 WHERE id = ?", (action_id,))
                await self.log(conn, action_id, "cancellation requested while running", now)
                return True
            return False

    async def delete(self, action_ids: Sequence[int]) -> int:
        """
        Delete actions and their logs. In-progress actions are left alone.

        Returns:
            Number of actions deleted.
        """
        ids = list(dict.fromkeys(action_ids))
        if not ids:
            return 0
        placeholders = ", ".join("?" * len(ids))
        async with self.transaction() as conn:
            async with conn.execute(
                f"SELECT id FROM actions WHERE id IN ({placeholders}) AND status != ?",
                (*ids, ActionStatus.IN_PROGRESS.value),
            ) as cursor:
                deletable = [row["id"] for row in await cursor.fetchall()]
            if not deletable:
                return 0
            marks = ", ".join("?" * len(deletable))
            await conn.execute(f"DELETE FROM action_logs WHERE action_id IN ({marks})", deletable)
            await conn.execute(f"DELETE FROM actions WHERE id IN ({marks})", deletable)
        return len(deletable)

    # --- Reading ---

    async def get(self, action_id: int) -> Action:
        """
        Get an action by id.

        Raises:
            ActionNotFound: If no action has this id.
        """
        async with self.reading() as conn:
            async with conn.execute("SELECT * FROM actions WHERE id = ?", (action_id,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise ActionNotFound(action_id)
        return row_to_action(row)

    async def query(
        self,
        filter: ActionFilter | None = None,
        order_by: str = "next_due",
        order: str = "asc",
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[Action]:
        """
        List actions matching ``filter``.

        Args:
            filter: Criteria; None matches everything.
            order_by: One of SORTABLE_COLUMNS.
            order: "asc" or "desc".
            limit: Maximum rows, None for no limit.
            offset: Rows to skip.

        Raises:
            InvalidQuery: Unknown sort column, direction or status, or a
                negative limit/offset.
        """
        where, params = build_where(filter)
        order_sql = build_order(order_by, order)
        if (limit is not None and limit < 0) or offset < 0:
            raise InvalidQuery("limit and offset must be non-negative")

        sql = f"SELECT * FROM actions{where} {order_sql} LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else limit, offset])
        async with self.reading() as conn:
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        return [row_to_action(row) for row in rows]

    async def query_page(
        self,
        filter: ActionFilter | None = None,
        order_by: str = "next_due",
        order: str = "asc",
        page: int = 1,
        per_page: int = 10,
    ) -> ActionPage:
        """One page of results plus the total match count."""
        if page < 1 or per_page < 1:
            raise InvalidQuery("page and per_page must be >= 1")
        total = await self.count(filter)
        items = await self.query(filter, order_by, order, limit=per_page, offset=(page - 1) * per_page)
        return ActionPage(items=items, total=total, page=page, per_page=per_page)

    async def count(self, filter: ActionFilter | None = None) -> int:
        where, params = build_where(filter)
        async with self.reading() as conn:
            async with conn.execute(f"SELECT COUNT(*) AS n FROM actions{where}", params) as cursor:
                row = await cursor.fetchone()
        return row["n"]

    async def count_by_status(self, filter: ActionFilter | None = None) -> dict[ActionStatus, int]:
        """Count matching actions per status. Every status is present, zero if unused."""
        where, params = build_where(filter)
        async with self.reading() as conn:
            async with conn.execute(
                f"SELECT status, COUNT(*) AS n FROM actions{where} GROUP BY status", params
            ) as cursor:
                rows = await cursor.fetchall()
        counts = {status: 0 for status in ActionStatus}
        for row in rows:
            counts[ActionStatus(row["status"])] = row["n"]
        return counts

    async def next_due_at(self) -> float | None:
        """Earliest due time among claimable actions, None if nothing is pending."""
        async with self.reading() as conn:
            async with conn.execute(
                "SELECT MIN(next_due) AS due FROM actions WHERE status = ? AND claim_id IS NULL",
                (ActionStatus.PENDING.value,),
            ) as cursor:
                row = await cursor.fetchone()
        return row["due"]

    async def logs(self, action_id: int) -> list[LogEntry]:
        """Audit trail of an action, oldest first."""
        async with self.reading() as conn:
            async with conn.execute(
                "SELECT * FROM action_logs WHERE action_id = ? ORDER BY id", (action_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            LogEntry(id=row["id"], action_id=row["action_id"], timestamp=row["timestamp"], message=row["message"])
            for row in rows
        ]

    # --- Execution bookkeeping (used by the Runner) ---

    async def mark_started(self, action_id: int, claim_id: str, now: float | None = None) -> Action | None:
        """
        Record the start of an attempt.

        Returns:
            The updated action, or None if it is no longer in progress under
            ``claim_id`` (lost claim or canceled).
        """
        now = self.timestamp(now)
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE actions SET started_at = ?, attempts = attempts + 1
                WHERE id = ? AND claim_id = ? AND status = ?
                """,
                (now, action_id, claim_id, ActionStatus.IN_PROGRESS.value),
            )
            if cursor.rowcount != 1:
                return None
            async with conn.execute("SELECT * FROM actions WHERE id = ?", (action_id,)) as cursor:
                row = await cursor.fetchone()
            action = row_to_action(row)
            await self.log(conn, action_id, f"action started (attempt {action.attempts})", now)
        return action

    async def record_outcome(
        self,
        action_id: int,
        claim_id: str,
        status: ActionStatus,
        message: str,
        *,
        now: float | None = None,
        next_due: float | None = None,
        last_error: dict[str, Any] | None = None,
        reset_attempts: bool = False,
        release: bool = True,
    ) -> ActionStatus | None:
        """
        Persist the result of a run.

        The write only applies while the action is still in progress under
        ``claim_id``. A re-armed (pending) action whose cancellation was
        requested during the run becomes canceled instead.

        Args:
            release: Clear the claim reference. False keeps the action out of
                new claims until ``release_action`` is called.

        Returns:
            The status actually stored, or None if the claim was lost.
        """
        now = self.timestamp(now)
        async with self.transaction() as conn:
            async with conn.execute(
                "SELECT status, claim_id, cancel_requested FROM actions WHERE id = ?", (action_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None or row["claim_id"] != claim_id or row["status"] != ActionStatus.IN_PROGRESS.value:
                return None

            if status == ActionStatus.PENDING and row["cancel_requested"]:
                status = ActionStatus.CANCELED
                message = f"{message}; canceled instead of rescheduling"

            terminal = status.is_terminal
            await conn.execute(
                f"""
                UPDATE actions SET
                    status = ?,
                    next_due = CASE WHEN ? THEN ? ELSE next_due END,
                    completed_at = CASE WHEN ? THEN ? ELSE completed_at END,
                    last_error = CASE WHEN ? THEN ? ELSE last_error END,
                    attempts = {"0" if reset_attempts else "attempts"},
                    cancel_requested = CASE WHEN ? THEN 0 ELSE cancel_requested END,
                    claim_id = CASE WHEN ? THEN NULL ELSE claim_id END
                WHERE id = ?
                """,
                (
                    status.value,
                    next_due is not None,
                    next_due,
                    terminal,
                    now,
                    last_error is not None,
                    json.dumps(last_error) if last_error is not None else None,
                    terminal,
                    release,
                    action_id,
                ),
            )
            await self.log(conn, action_id, message, now)
        return status

    async def release_action(self, action_id: int, claim_id: str, now: float | None = None) -> bool:
        """Clear a claim reference that ``record_outcome(release=False)`` kept."""
        now = self.timestamp(now)
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE actions SET claim_id = NULL WHERE id = ? AND claim_id = ?",
                (action_id, claim_id),
            )
            released = cursor.rowcount == 1
            if released:
                await self.log(conn, action_id, "claim released after late handler exit", now)
        return released


def build_where(filter: ActionFilter | None) -> tuple[str, list[Any]]:
    """Translate a filter into a parameterized WHERE clause."""
    if filter is None:
        return "", []

    clauses: list[str] = []
    params: list[Any] = []

    if filter.status is not None:
        statuses = filter.status if isinstance(filter.status, (list, tuple, set, frozenset)) else [filter.status]
        values = [_status_value(s) for s in statuses]
        if not values:
            raise InvalidQuery("Empty status filter")
        clauses.append(f"status IN ({', '.join('?' * len(values))})")
        params.extend(values)
    if filter.group is not None:
        clauses.append("group_name = ?")
        params.append(filter.group)
    if filter.hook is not None:
        clauses.append("hook = ?")
        params.append(filter.hook)
    if filter.due_after is not None:
        clauses.append("next_due >= ?")
        params.append(filter.due_after)
    if filter.due_before is not None:
        clauses.append("next_due <= ?")
        params.append(filter.due_before)
    if filter.claim_id is not None:
        clauses.append("claim_id = ?")
        params.append(filter.claim_id)
    if filter.search:
        pattern = "%" + _escape_like(filter.search) + "%"
        clauses.append(
            "(hook LIKE ? ESCAPE '\\' OR args LIKE ? ESCAPE '\\' OR group_name LIKE ? ESCAPE '\\')"
        )
        params.extend([pattern, pattern, pattern])

    if not clauses:
        return "", []
    return " WHERE " + " AND ".join(clauses), params


def build_order(order_by: str, order: str) -> str:
    column = SORTABLE_COLUMNS.get(order_by)
    if column is None:
        raise InvalidQuery(f"Cannot sort by {order_by!r}. Use one of: {', '.join(SORTABLE_COLUMNS)}")
    direction = order.lower() if isinstance(order, str) else ""
    if direction not in ("asc", "desc"):
        raise InvalidQuery(f"Sort order must be 'asc' or 'desc', got {order!r}")
    if column == "id":
        return f"ORDER BY id {direction.upper()}"
    return f"ORDER BY {column} {direction.upper()}, id ASC"


def row_to_action(row: aiosqlite.Row) -> Action:
    last_error = row["last_error"]
    return Action(
        id=row["id"],
        hook=row["hook"],
        args=tuple(json.loads(row["args"] or "[]")),
        schedule=schedule_from_dict(json.loads(row["schedule"])),
        group=row["group_name"],
        status=ActionStatus(row["status"]),
        priority=row["priority"],
        claim_id=row["claim_id"],
        attempts=row["attempts"],
        last_error=json.loads(last_error) if last_error else None,
        cancel_requested=bool(row["cancel_requested"]),
        created_at=row["created_at"],
        next_due=row["next_due"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


def _status_value(status: ActionStatus | str) -> str:
    try:
        return ActionStatus(status).value
    except ValueError:
        raise InvalidQuery(f"Unknown status: {status!r}") from None


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
