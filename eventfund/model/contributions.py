from __future__ import annotations
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import is_row_id, now_ts, to_iso
from ..infra.changefeed import ChangeFeed, INSERT, UPDATE, DELETE
from ..infra.sql import Gated
from .orm import (
    Contribution, METHOD_CASH, METHOD_ONLINE,
    STATUS_PENDING, STATUS_SUCCESS, STATUS_EXPIRED,
)

TABLE = "contributions"


def as_dict(row: Contribution) -> Dict[str, Any]:
    return {
        "id": row.id,
        "contributor": row.contributor,
        "amount": row.amount,
        "method": row.method,
        "status": row.status,
        "created_at": to_iso(row.created_at),
    }


def initial_status(method: str) -> str:
    # cash is final on insert; online waits for the webhook
    return STATUS_SUCCESS if method == METHOD_CASH else STATUS_PENDING


class ContributionStore:
    """The contribution ledger.

    Rows are only ever created, flipped to a terminal status, or deleted.
    ``contributor``, ``amount`` and ``method`` never change after insert.
    """

    def __init__(
        self, *, db: AsyncSession, gated: Gated, feed: ChangeFeed
    ) -> None:
        self.db = db
        self.gated = gated
        self.feed = feed

    async def insert(
        self, contributor: str, amount: float, method: str
    ) -> Dict[str, Any]:
        row = Contribution(
            contributor=contributor,
            amount=amount,
            method=method,
            status=initial_status(method),
            created_at=now_ts(),
        )
        async with self.gated():
            async with self.db.begin():
                self.db.add(row)
        rec = as_dict(row)
        await self.feed.publish(TABLE, INSERT, rec)
        return rec

    async def get(self, contribution_id: int) -> Optional[Dict[str, Any]]:
        if not is_row_id(contribution_id):
            return None
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    select(Contribution)
                    .where(Contribution.id == contribution_id)
                    .execution_options(populate_existing=True)
                )).scalar_one_or_none()
                return as_dict(row) if row else None

    async def list(self, limit: int = 500) -> List[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(Contribution)
                    .order_by(
                        Contribution.created_at.desc(),
                        Contribution.id.desc(),
                    )
                    .limit(limit)
                    .execution_options(populate_existing=True)
                )).scalars().all()
        return [as_dict(r) for r in rows]

    async def success_total(self) -> float:
        async with self.gated():
            async with self.db.begin():
                total = (await self.db.execute(
                    select(func.coalesce(func.sum(Contribution.amount), 0))
                    .where(Contribution.status == STATUS_SUCCESS)
                )).scalar_one()
        return float(total or 0)

    async def mark_success(self, contribution_id: int) -> bool:
        """Overwrite status with success. Returns False if no such row.

        No check of the current status: a duplicate or late delivery just
        sets success again.
        """
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    update(Contribution)
                    .where(Contribution.id == contribution_id)
                    .values(status=STATUS_SUCCESS)
                    .execution_options(synchronize_session=False)
                )
        found = (res.rowcount or 0) > 0
        if found:
            await self.feed.publish(
                TABLE, UPDATE,
                {"id": contribution_id, "status": STATUS_SUCCESS},
            )
        return found

    async def expire_pending(self, older_than: float) -> List[int]:
        """Move stale online rows from pending to expired.

        Returns only the ids this call actually flipped; a row paid by a
        concurrent webhook is neither reported nor announced.
        """
        async with self.gated():
            async with self.db.begin():
                ids = sorted((await self.db.execute(
                    update(Contribution)
                    .where(
                        Contribution.method == METHOD_ONLINE,
                        Contribution.status == STATUS_PENDING,
                        Contribution.created_at < older_than,
                    )
                    .values(status=STATUS_EXPIRED)
                    .returning(Contribution.id)
                    .execution_options(synchronize_session=False)
                )).scalars().all())
        for cid in ids:
            await self.feed.publish(
                TABLE, UPDATE, {"id": cid, "status": STATUS_EXPIRED}
            )
        return ids

    async def delete(self, contribution_id: int) -> bool:
        if not is_row_id(contribution_id):
            return False
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    delete(Contribution)
                    .where(Contribution.id == contribution_id)
                    .execution_options(synchronize_session=False)
                )
        found = (res.rowcount or 0) > 0
        if found:
            await self.feed.publish(TABLE, DELETE, {"id": contribution_id})
        return found
