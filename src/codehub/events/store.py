"""Event store — append-only log of account changes.

Services append an event in the same unit of work as the change it
describes, so the log never records a change that was rolled back.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codehub.db.models import Event


class EventStore:
    """Append-only event store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        actor_id: Optional[int] = None,
    ) -> Event:
        """Append an event to a stream. Returns the created event."""
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta={"actor_id": actor_id} if actor_id is not None else {},
        )
        self.db.add(event)
        await self.db.flush()  # get the auto-generated id
        return event

    async def read_stream(
        self,
        stream_id: str,
        after_id: int = 0,
        limit: int = 100,
    ) -> list[Event]:
        """Read events for a specific stream, optionally after a given position."""
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id, Event.id > after_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def read_all(
        self,
        after_id: int = 0,
        event_types: list[str] | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Read events across all streams."""
        query = select(Event).where(Event.id > after_id).order_by(Event.id).limit(limit)
        if event_types:
            query = query.where(Event.type.in_(event_types))
        result = await self.db.execute(query)
        return list(result.scalars().all())
