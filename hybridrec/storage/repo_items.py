"""Repository for catalog item features."""

from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from hybridrec.core.contracts import ItemFeatures
from hybridrec.logging import get_logger
from hybridrec.storage.json_utils import dump_names, load_names
from hybridrec.storage.models import Item

logger = get_logger(__name__)


def _to_features(item: Item) -> ItemFeatures:
    return ItemFeatures(
        item_id=item.item_id,
        title=item.title,
        genres=load_names(item.genres_json),
        directors=load_names(item.directors_json),
        cast=load_names(item.cast_json),
        year=item.year,
        runtime=item.runtime,
        language=item.language,
        popularity=item.popularity,
        vote_average=item.vote_average,
        vote_count=item.vote_count,
    )


class ItemsRepo:
    """Repository for catalog item operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_item(self, features: ItemFeatures) -> None:
        """Insert or update a catalog item.

        Args:
            features: Item features to store
        """
        now = datetime.now(timezone.utc)
        values = {
            "item_id": features.item_id,
            "title": features.title or features.item_id,
            "genres_json": dump_names(features.genres),
            "directors_json": dump_names(features.directors),
            "cast_json": dump_names(features.cast),
            "year": features.year,
            "runtime": features.runtime,
            "language": features.language,
            "popularity": features.popularity,
            "vote_average": features.vote_average,
            "vote_count": features.vote_count,
            "updated_at": now,
        }
        stmt = sqlite_insert(Item).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["item_id"],
            set_={k: v for k, v in values.items() if k != "item_id"},
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def get_item(self, item_id: str) -> ItemFeatures | None:
        """Get features of one item."""
        stmt = select(Item).where(Item.item_id == item_id)
        result = await self.session.execute(stmt)
        item = result.scalar_one_or_none()
        return _to_features(item) if item else None

    async def get_features(self, item_ids: set[str] | list[str]) -> dict[str, ItemFeatures]:
        """Get features for many items.

        Args:
            item_ids: Item IDs to look up

        Returns:
            Mapping of item_id -> features (unknown IDs are absent)
        """
        if not item_ids:
            return {}

        stmt = select(Item).where(Item.item_id.in_(list(item_ids)))
        result = await self.session.execute(stmt)
        return {item.item_id: _to_features(item) for item in result.scalars().all()}

    async def list_candidates(
        self,
        exclude_ids: set[str] | None = None,
        genres: tuple[str, ...] | None = None,
        year_min: int | None = None,
        year_max: int | None = None,
        language: str | None = None,
        min_vote_average: float = 0.0,
        min_vote_count: int = 0,
        limit: int = 500,
    ) -> list[ItemFeatures]:
        """List candidate items for recommendation.

        Args:
            exclude_ids: Item IDs to exclude
            genres: Keep items having at least one of these genres
            year_min: Minimum release year
            year_max: Maximum release year
            language: Original language code
            min_vote_average: Minimum average vote
            min_vote_count: Minimum number of votes
            limit: Maximum items to return

        Returns:
            Candidates ordered by popularity, then item ID
        """
        stmt = select(Item)

        if exclude_ids:
            stmt = stmt.where(Item.item_id.notin_(exclude_ids))
        if year_min is not None:
            stmt = stmt.where(Item.year >= year_min)
        if year_max is not None:
            stmt = stmt.where(Item.year <= year_max)
        if language:
            stmt = stmt.where(Item.language == language)
        if min_vote_average > 0:
            stmt = stmt.where(Item.vote_average >= min_vote_average)
        if min_vote_count > 0:
            stmt = stmt.where(Item.vote_count >= min_vote_count)
        if genres:
            # genres_json holds a compact JSON list, so a quoted match is exact
            stmt = stmt.where(
                or_(*[Item.genres_json.contains(dump_names([g])[1:-1]) for g in genres])
            )

        stmt = stmt.order_by(Item.popularity.desc(), Item.item_id).limit(limit)

        result = await self.session.execute(stmt)
        return [_to_features(item) for item in result.scalars().all()]

    async def count_items(self) -> int:
        """Count catalog items."""
        result = await self.session.execute(select(func.count()).select_from(Item))
        return result.scalar() or 0
