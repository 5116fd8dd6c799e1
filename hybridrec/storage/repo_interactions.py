"""Repository for the append-only interaction log."""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hybridrec.core.contracts import ActionKind, InteractionEvent
from hybridrec.storage.models import Interaction


def _ensure_utc(dt: datetime) -> datetime:
    """SQLite returns naive datetimes; treat them as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _to_event(row: Interaction) -> InteractionEvent:
    return InteractionEvent(
        user_id=row.user_id,
        item_id=row.item_id,
        action=ActionKind(row.action),
        value=row.value,
        timestamp=_ensure_utc(row.created_at),
        session_id=row.session_id,
    )


class InteractionsRepo:
    """Repository for interaction log operations.

    Rows are only ever inserted; there is no update or delete path.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        user_id: str,
        item_id: str,
        action: ActionKind,
        value: float,
        session_id: str | None = None,
        created_at: datetime | None = None,
    ) -> InteractionEvent:
        """Append an interaction to the log.

        Args:
            user_id: User ID
            item_id: Item ID
            action: Action kind
            value: Numeric value (rating, seconds watched, 1 for clicks)
            session_id: Optional client session ID
            created_at: Event time, defaults to now

        Returns:
            The stored event
        """
        row = Interaction(
            user_id=user_id,
            item_id=item_id,
            action=action.value,
            value=float(value),
            session_id=session_id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return _to_event(row)

    async def list_user_events(
        self,
        user_id: str,
        limit: int = 1000,
        action: ActionKind | None = None,
    ) -> list[InteractionEvent]:
        """Get the most recent events of a user in chronological order.

        Args:
            user_id: User ID
            limit: Maximum number of events (most recent are kept)
            action: Optional action kind filter

        Returns:
            Events ordered oldest first
        """
        stmt = select(Interaction).where(Interaction.user_id == user_id)
        if action is not None:
            stmt = stmt.where(Interaction.action == action.value)
        stmt = stmt.order_by(Interaction.created_at.desc(), Interaction.id.desc()).limit(limit)

        result = await self.session.execute(stmt)
        rows = list(result.scalars().all())
        rows.reverse()
        return [_to_event(row) for row in rows]

    async def get_user_ratings(self, user_id: str) -> dict[str, float]:
        """Get the latest rating per item for a user."""
        stmt = (
            select(Interaction.item_id, Interaction.value)
            .where(
                Interaction.user_id == user_id,
                Interaction.action == ActionKind.RATE.value,
            )
            .order_by(Interaction.created_at, Interaction.id)
        )
        result = await self.session.execute(stmt)
        return {row.item_id: row.value for row in result.all()}

    async def get_ratings_for_items(
        self,
        item_ids: set[str] | list[str],
        exclude_user_id: str | None = None,
    ) -> dict[str, dict[str, float]]:
        """Get ratings of the given items by all users.

        Args:
            item_ids: Items to look up
            exclude_user_id: User whose ratings are left out

        Returns:
            Mapping of user_id -> {item_id: latest rating}
        """
        if not item_ids:
            return {}

        stmt = (
            select(Interaction.user_id, Interaction.item_id, Interaction.value)
            .where(
                Interaction.action == ActionKind.RATE.value,
                Interaction.item_id.in_(list(item_ids)),
            )
            .order_by(Interaction.created_at, Interaction.id)
        )
        if exclude_user_id is not None:
            stmt = stmt.where(Interaction.user_id != exclude_user_id)

        result = await self.session.execute(stmt)
        ratings: dict[str, dict[str, float]] = {}
        for row in result.all():
            ratings.setdefault(row.user_id, {})[row.item_id] = row.value
        return ratings

    async def get_watchlisted_item_ids(self, user_id: str) -> set[str]:
        """Items whose latest watchlist action for the user is an add."""
        stmt = (
            select(Interaction.item_id, Interaction.action)
            .where(
                Interaction.user_id == user_id,
                Interaction.action.in_(
                    [ActionKind.ADD_WATCHLIST.value, ActionKind.REMOVE_WATCHLIST.value]
                ),
            )
            .order_by(Interaction.created_at, Interaction.id)
        )
        result = await self.session.execute(stmt)

        state: dict[str, bool] = {}
        for row in result.all():
            state[row.item_id] = row.action == ActionKind.ADD_WATCHLIST.value
        return {item_id for item_id, listed in state.items() if listed}

    async def list_all_ratings(self, limit: int = 1_000_000) -> list[tuple[str, str, float]]:
        """Get (user_id, item_id, rating) triples for full model training.

        Over the limit the oldest ratings are left out. Later ratings of the
        same pair replace earlier ones.
        """
        stmt = (
            select(Interaction.user_id, Interaction.item_id, Interaction.value)
            .where(Interaction.action == ActionKind.RATE.value)
            .order_by(Interaction.created_at.desc(), Interaction.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)

        latest: dict[tuple[str, str], float] = {}
        for row in reversed(result.all()):
            latest[(row.user_id, row.item_id)] = row.value
        return [(user_id, item_id, value) for (user_id, item_id), value in latest.items()]
