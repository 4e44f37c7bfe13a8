from __future__ import annotations
from typing import Any, Dict, List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import is_row_id, now_ts, to_iso
from ..infra.changefeed import ChangeFeed, INSERT, DELETE
from ..infra.sql import Gated
from .orm import PlanningItem, ITEM_EXPENSE, ITEM_INCOME

TABLE = "planning"


def as_dict(row: PlanningItem) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "amount": row.amount,
        "type": row.type,
        "created_at": to_iso(row.created_at),
    }


def summarize(items: List[Dict[str, Any]]) -> Dict[str, float]:
    income = sum(float(i["amount"]) for i in items
                 if i["type"] == ITEM_INCOME)
    expenses = sum(float(i["amount"]) for i in items
                   if i["type"] == ITEM_EXPENSE)
    return {"income": income, "expenses": expenses, "net": income - expenses}


class PlanningStore:
    """Budget plan: expected expenses and income for the event."""

    def __init__(
        self, *, db: AsyncSession, gated: Gated, feed: ChangeFeed
    ) -> None:
        self.db = db
        self.gated = gated
        self.feed = feed

    async def insert(
        self, name: str, amount: float, kind: str
    ) -> Dict[str, Any]:
        row = PlanningItem(
            name=name, amount=amount, type=kind, created_at=now_ts()
        )
        async with self.gated():
            async with self.db.begin():
                self.db.add(row)
        rec = as_dict(row)
        await self.feed.publish(TABLE, INSERT, rec)
        return rec

    async def list(self) -> List[Dict[str, Any]]:
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(PlanningItem).order_by(
                        PlanningItem.created_at.desc(),
                        PlanningItem.id.desc(),
                    ).execution_options(populate_existing=True)
                )).scalars().all()
        return [as_dict(r) for r in rows]

    async def delete(self, item_id: int) -> bool:
        if not is_row_id(item_id):
            return False
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    delete(PlanningItem)
                    .where(PlanningItem.id == item_id)
                    .execution_options(synchronize_session=False)
                )
        found = (res.rowcount or 0) > 0
        if found:
            await self.feed.publish(TABLE, DELETE, {"id": item_id})
        return found
