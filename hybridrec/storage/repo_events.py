"""Repository for analytics event logging."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hybridrec.storage.json_utils import safe_json_dumps
from hybridrec.storage.models import Event


class EventsRepo:
    """Repository for event logging operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def log_event(
        self,
        event_name: str,
        user_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """Log an event.

        Args:
            event_name: Event name/type
            user_id: Optional user ID
            payload: Optional payload dictionary

        Returns:
            Created Event instance
        """
        event = Event(
            event_name=event_name,
            user_id=user_id,
            payload_json=safe_json_dumps(payload or {}),
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(event)
        await self.session.commit()
        await self.session.refresh(event)
        return event

    async def list_events(
        self,
        event_name: str | None = None,
        user_id: str | None = None,
        limit: int = 200,
    ) -> list[Event]:
        """List events, newest first, with optional filters."""
        stmt = select(Event)

        if event_name:
            stmt = stmt.where(Event.event_name == event_name)

        if user_id:
            stmt = stmt.where(Event.user_id == user_id)

        stmt = stmt.order_by(Event.created_at.desc(), Event.id.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_events(self, event_name: str | None = None) -> int:
        """Count events, optionally of one name."""
        stmt = select(func.count()).select_from(Event)

        if event_name:
            stmt = stmt.where(Event.event_name == event_name)

        result = await self.session.execute(stmt)
        return result.scalar() or 0
