from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import is_row_id, now_ts
from ..infra.changefeed import ChangeFeed, INSERT, DELETE
from ..infra.sql import Gated
from .orm import Event

TABLE = "events"


def as_dict(row: Event) -> Dict[str, Any]:
    return {
        "id": row.id,
        "title": row.title,
        "date": row.date.isoformat(),
        "description": row.description,
    }


class EventStore:
    def __init__(
        self, *, db: AsyncSession, gated: Gated, feed: ChangeFeed
    ) -> None:
        self.db = db
        self.gated = gated
        self.feed = feed

    async def insert(
        self, title: str, on: date, description: Optional[str]
    ) -> Dict[str, Any]:
        row = Event(
            title=title, date=on, description=description,
            created_at=now_ts(),
        )
        async with self.gated():
            async with self.db.begin():
                self.db.add(row)
        rec = as_dict(row)
        await self.feed.publish(TABLE, INSERT, rec)
        return rec

    async def list(self) -> List[Dict[str, Any]]:
        # upcoming first
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(Event)
                    .order_by(Event.date.asc(), Event.id.asc())
                    .execution_options(populate_existing=True)
                )).scalars().all()
        return [as_dict(r) for r in rows]

    async def delete(self, event_id: int) -> bool:
        if not is_row_id(event_id):
            return False
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    delete(Event)
                    .where(Event.id == event_id)
                    .execution_options(synchronize_session=False)
                )
        found = (res.rowcount or 0) > 0
        if found:
            await self.feed.publish(TABLE, DELETE, {"id": event_id})
        return found
