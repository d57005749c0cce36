"""
View ingestion queue.

POST /views/ acknowledges immediately and hands ViewQueue.process to the
caller's background scheduler. Events are persisted in FIFO order by at most
one drain at a time; pushes that land while a drain runs are picked up by
that same drain because it loops until the queue is empty.

Persistence is best-effort: an event whose upsert fails is logged and
dropped, and the drain stops so the next push can start a fresh one.

Each event upserts the (user, contract) row of user_contract_views:
  • insert → kind timestamp = now, kind counter = 1
  • conflict → bump both only if the viewer is anonymous, the kind has no
    timestamp yet, or the timestamp is older than the rate-limit window
so a signed-in user counts at most one view per contract and kind per minute.
"""
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, or_
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contract_feed.config import settings
from contract_feed.database import utcnow
from contract_feed.models import UserContractView
from contract_feed.schemas import ViewAck, ViewEvent, ViewKind
from contract_feed.telemetry import VIEW_EVENTS_TOTAL, VIEW_QUEUE_DEPTH

logger = logging.getLogger(__name__)

ANONYMOUS_USER_ID = ""

VIEW_COLUMNS = {
    ViewKind.CARD: ("last_card_view_ts", "card_views"),
    ViewKind.PROMOTED: ("last_promoted_view_ts", "promoted_views"),
    ViewKind.PAGE: ("last_page_view_ts", "page_views"),
}


class ViewIdentityError(Exception):
    """The acting user tried to record a view for someone else."""


async def upsert_contract_view(
    session: AsyncSession,
    event: ViewEvent,
    now: Optional[datetime] = None,
    rate_limit_seconds: int = settings.view_rate_limit_seconds,
) -> None:
    now = now or utcnow()
    table = UserContractView.__table__
    ts_name, count_name = VIEW_COLUMNS[event.kind]
    ts_col, count_col = table.c[ts_name], table.c[count_name]

    anonymous = event.user_id is None
    values = {
        "user_id": ANONYMOUS_USER_ID if anonymous else event.user_id,
        "contract_id": event.contract_id,
        ts_name: now,
        count_name: 1,
    }
    counts_again = None
    if not anonymous:
        cutoff = now - timedelta(seconds=rate_limit_seconds)
        counts_again = or_(ts_col.is_(None), ts_col < cutoff)

    dialect = session.bind.dialect.name
    if dialect == "mysql":
        # ON DUPLICATE KEY UPDATE assigns left to right, so the counter is
        # computed before the timestamp it reads is overwritten.
        stmt = mysql.insert(table).values(**values)
        if counts_again is None:
            updates = [(count_col, count_col + 1), (ts_col, now)]
        else:
            updates = [
                (count_col, case((counts_again, count_col + 1), else_=count_col)),
                (ts_col, case((counts_again, now), else_=ts_col)),
            ]
        stmt = stmt.on_duplicate_key_update(updates)
    elif dialect in ("postgresql", "sqlite"):
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(table).values(**values).on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.contract_id],
            set_={ts_name: now, count_name: count_col + 1},
            where=counts_again,
        )
    else:
        raise NotImplementedError(f"View upsert not supported on {dialect}")

    await session.execute(stmt)


class ViewQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        rate_limit_seconds: int = settings.view_rate_limit_seconds,
    ) -> None:
        self._session_factory = session_factory
        self._rate_limit_seconds = rate_limit_seconds
        self._queue: deque[ViewEvent] = deque()
        self._processing = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def processing(self) -> bool:
        return self._processing

    def record(self, event: ViewEvent, acting_user_id: Optional[str]) -> ViewAck:
        """Validate and enqueue; persistence happens in process()."""
        if event.user_id != acting_user_id:
            raise ViewIdentityError("Can only insert views for own user ID.")
        self.push(event)
        return ViewAck()

    def push(self, event: ViewEvent) -> None:
        self._queue.append(event)
        VIEW_QUEUE_DEPTH.set(len(self._queue))

    async def process(self) -> None:
        """Drain the queue unless a drain is already running."""
        if self._processing:
            return
        self._processing = True
        try:
            await self._drain()
        except Exception:
            logger.exception("Error processing view queue")
        finally:
            self._processing = False

    async def flush(self) -> int:
        """Drain what's left at shutdown; returns how many events were lost."""
        await self.process()
        remaining = len(self._queue)
        if remaining:
            logger.warning("Dropping %d unrecorded view events on shutdown", remaining)
        return remaining

    async def _drain(self) -> None:
        while self._queue:
            event = self._queue.popleft()
            VIEW_QUEUE_DEPTH.set(len(self._queue))
            logger.debug("Processing view, %d left: %s", len(self._queue), event)
            try:
                async with self._session_factory() as session:
                    await upsert_contract_view(
                        session, event, rate_limit_seconds=self._rate_limit_seconds
                    )
                    await session.commit()
            except Exception:
                VIEW_EVENTS_TOTAL.labels(kind=event.kind.value, result="error").inc()
                raise
            VIEW_EVENTS_TOTAL.labels(kind=event.kind.value, result="ok").inc()
