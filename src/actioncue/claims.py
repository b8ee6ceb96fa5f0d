"""Claiming protocol: reserve due actions for exactly one worker."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

import aiosqlite

from actioncue.config import default_holder
from actioncue.models import ActionStatus, Claim
from actioncue.store import ActionStore

logger = logging.getLogger(__name__)

CLAIM_ORDER = "next_due ASC, priority DESC, id ASC"


class ClaimManager:
    """
    Reserves batches of due actions under time-limited claims.

    The select-and-mark step is one conditional UPDATE inside an immediate
    transaction, so managers racing on the same database (in this process
    or another) never acquire the same action. A claim whose lease expires
    is treated as abandoned and its actions are handed back by
    ``reclaim_expired``.
    """

    def __init__(self, store: ActionStore, holder: str | None = None) -> None:
        self.store = store
        self.holder = holder or default_holder()

    async def claim(
        self,
        batch_size: int,
        lease_duration: float,
        now: float | None = None,
        holder: str | None = None,
    ) -> Claim:
        """
        Reserve up to ``batch_size`` pending actions due at or before ``now``.

        Actions are taken in (next_due, -priority, id) order and moved to
        in-progress. Fewer due actions than requested is not an error; the
        returned claim may be empty.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if lease_duration <= 0:
            raise ValueError(f"lease_duration must be positive, got {lease_duration}")

        now = self.store.timestamp(now)
        claim = Claim(
            id=uuid.uuid4().hex,
            holder=holder or self.holder,
            created_at=now,
            expires_at=now + lease_duration,
        )

        async with self.store.transaction() as conn:
            await conn.execute(
                "INSERT INTO claims (id, holder, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (claim.id, claim.holder, claim.created_at, claim.expires_at),
            )
            await conn.execute(
                f"""
                UPDATE actions SET status = ?, claim_id = ?
                WHERE id IN (
                    SELECT id FROM actions
                    WHERE status = ? AND claim_id IS NULL AND next_due <= ?
                    ORDER BY {CLAIM_ORDER}
                    LIMIT ?
                )
                AND status = ? AND claim_id IS NULL
                """,
                (
                    ActionStatus.IN_PROGRESS.value,
                    claim.id,
                    ActionStatus.PENDING.value,
                    now,
                    batch_size,
                    ActionStatus.PENDING.value,
                ),
            )
            action_ids = await self._action_ids(conn, claim.id)
            if action_ids:
                await self.store.log(conn, action_ids, f"action claimed by {claim.holder} (claim {claim.id})", now)
            else:
                await conn.execute("DELETE FROM claims WHERE id = ?", (claim.id,))

        claim.action_ids = tuple(action_ids)
        if action_ids:
            logger.debug("Claim %s reserved %d action(s) for %s", claim.id, len(action_ids), claim.holder)
        return claim

    async def release(self, claim_id: str, now: float | None = None) -> int:
        """
        Give up a claim without running its actions.

        Actions still in progress under the claim go back to pending; actions
        in any other status keep it. Returns the number of actions returned to
        pending.
        """
        now = self.store.timestamp(now)
        async with self.store.transaction() as conn:
            count = await self._drop_claims(conn, [claim_id], now, "released")
        if count:
            logger.info("Released claim %s, %d action(s) back to pending", claim_id, count)
        return count

    async def reclaim_expired(self, now: float | None = None) -> int:
        """
        Recover actions held by claims whose lease has expired.

        This is the only recovery path for a worker that crashed mid-run.
        Returns the number of actions made claimable again.
        """
        now = self.store.timestamp(now)
        async with self.store.transaction() as conn:
            async with conn.execute("SELECT id FROM claims WHERE expires_at <= ?", (now,)) as cursor:
                expired = [row["id"] for row in await cursor.fetchall()]
            if not expired:
                return 0
            count = await self._drop_claims(conn, expired, now, "expired")

        logger.warning("Reclaimed %d action(s) from %d expired claim(s)", count, len(expired))
        return count

    async def extend(self, claim_id: str, lease_duration: float, now: float | None = None) -> bool:
        """Push a claim's expiry to ``now + lease_duration``. False if the claim is gone."""
        now = self.store.timestamp(now)
        async with self.store.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE claims SET expires_at = MAX(expires_at, ?) WHERE id = ?",
                (now + lease_duration, claim_id),
            )
            return cursor.rowcount == 1

    async def finish(self, claim_id: str) -> bool:
        """Delete a claim once no action references it. True if deleted."""
        async with self.store.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM claims
                WHERE id = ? AND NOT EXISTS (SELECT 1 FROM actions WHERE claim_id = ?)
                """,
                (claim_id, claim_id),
            )
            return cursor.rowcount == 1

    async def get(self, claim_id: str) -> Claim | None:
        async with self.store.reading() as conn:
            async with conn.execute("SELECT * FROM claims WHERE id = ?", (claim_id,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            action_ids = await self._action_ids(conn, claim_id)
        return Claim(
            id=row["id"],
            holder=row["holder"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            action_ids=tuple(action_ids),
        )

    async def active(self, now: float | None = None) -> list[Claim]:
        """Claims whose lease has not expired yet."""
        now = self.store.timestamp(now)
        async with self.store.reading() as conn:
            async with conn.execute(
                "SELECT id FROM claims WHERE expires_at > ? ORDER BY created_at, id", (now,)
            ) as cursor:
                ids = [row["id"] for row in await cursor.fetchall()]
        claims = []
        for claim_id in ids:
            claim = await self.get(claim_id)
            if claim is not None:
                claims.append(claim)
        return claims

    @staticmethod
    async def _action_ids(conn: aiosqlite.Connection, claim_id: str) -> list[int]:
        async with conn.execute(
            f"SELECT id FROM actions WHERE claim_id = ? ORDER BY {CLAIM_ORDER}", (claim_id,)
        ) as cursor:
            return [row["id"] for row in await cursor.fetchall()]

    async def _drop_claims(self, conn: aiosqlite.Connection, claim_ids: Sequence[str], now: float, reason: str) -> int:
        placeholders = ", ".join("?" * len(claim_ids))
        async with conn.execute(
            f"SELECT id, status, cancel_requested FROM actions WHERE claim_id IN ({placeholders})",
            list(claim_ids),
        ) as cursor:
            rows = await cursor.fetchall()

        reset = [r["id"] for r in rows if r["status"] == ActionStatus.IN_PROGRESS.value and not r["cancel_requested"]]
        canceled = [r["id"] for r in rows if r["status"] == ActionStatus.IN_PROGRESS.value and r["cancel_requested"]]
        others = [r["id"] for r in rows if r["status"] != ActionStatus.IN_PROGRESS.value]

        if reset:
            marks = ", ".join("?" * len(reset))
            await conn.execute(
                f"UPDATE actions SET status = ?, claim_id = NULL WHERE id IN ({marks})",
                [ActionStatus.PENDING.value, *reset],
            )
            await self.store.log(conn, reset, f"claim {reason}, action returned to pending", now)
        if canceled:
            marks = ", ".join("?" * len(canceled))
            await conn.execute(
                f"""
                UPDATE actions SET status = ?, claim_id = NULL, cancel_requested = 0, completed_at = ?
                WHERE id IN ({marks})
                """,
                [ActionStatus.CANCELED.value, now, *canceled],
            )
            await self.store.log(conn, canceled, f"claim {reason}, pending cancellation applied", now)
        if others:
            marks = ", ".join("?" * len(others))
            await conn.execute(f"UPDATE actions SET claim_id = NULL WHERE id IN ({marks})", others)

        await conn.execute(f"DELETE FROM claims WHERE id IN ({placeholders})", list(claim_ids))
        return len(reset)
