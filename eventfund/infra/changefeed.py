# eventfund/infra/changefeed.py
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

import orjson
import redis.asyncio as redis

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


def k_channel(table: str) -> str:
    return f"changes:{table}"


class ChangeFeed:
    """Row-level change notifications, published on one channel per table.

    Subscribers refresh their views on any message; the record is a hint,
    not a replication stream. Publishing is best-effort: the write it
    describes has already been committed.
    """

    def __init__(self, r: Optional[redis.Redis]) -> None:
        self.r = r

    @property
    def enabled(self) -> bool:
        return self.r is not None

    async def publish(
        self, table: str, kind: str, record: Dict[str, Any]
    ) -> int:
        if self.r is None:
            return 0
        msg = orjson.dumps({"table": table, "type": kind, "record": record})
        try:
            return int(await self.r.publish(k_channel(table), msg))
        except redis.RedisError as e:
            logger.warning("change feed publish failed for %s: %s", table, e)
            return 0

    async def close(self) -> None:
        if self.r is not None:
            await self.r.aclose()
            self.r = None


def new_feed(redis_url: Optional[str]) -> ChangeFeed:
    if not redis_url:
        return ChangeFeed(None)
    return ChangeFeed(redis.from_url(
        redis_url,
        socket_timeout=2.0,
        socket_connect_timeout=2.0,
        retry_on_timeout=True,
    ))
