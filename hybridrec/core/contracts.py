"""Domain contracts and type definitions."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ActionKind(str, Enum):
    """Kinds of user actions recorded in the interaction log."""

    VIEW = "view"
    CLICK = "click"
    RATE = "rate"
    WATCH_TIME = "watch_time"
    ADD_WATCHLIST = "add_watchlist"
    REMOVE_WATCHLIST = "remove_watchlist"


MIN_RATING = 1.0
MAX_RATING = 10.0


@dataclass(frozen=True)
class InteractionEvent:
    """One recorded user action against an item."""

    user_id: str
    item_id: str
    action: ActionKind
    value: float
    timestamp: datetime
    session_id: str | None = None


@dataclass(frozen=True)
class ItemFeatures:
    """Read-only feature record for a catalog item."""

    item_id: str
    title: str = ""
    genres: tuple[str, ...] = ()
    directors: tuple[str, ...] = ()
    cast: tuple[str, ...] = ()  # billing order
    year: int | None = None
    runtime: int | None = None
    language: str | None = None
    popularity: float = 0.0
    vote_average: float = 0.0
    vote_count: int = 0


@dataclass(frozen=True)
class RuntimeWindow:
    """Preferred runtime range in minutes with an ideal point."""

    min: float = 60.0
    max: float = 200.0
    ideal: float = 120.0


@dataclass(frozen=True)
class YearWindow:
    """Preferred release year range (inclusive)."""

    min: int = 1990
    max: int = 2100


@dataclass
class PreferenceProfile:
    """User preference profile derived from the interaction history."""

    user_id: str
    rating_count: int = 0
    average_rating: float = 0.0
    rating_variance: float = 0.0
    time_active_days: float = 0.0
    session_count: int = 0
    engagement_score: float = 0.0
    genre_preferences: dict[str, float] = field(default_factory=dict)
    director_preferences: dict[str, float] = field(default_factory=dict)
    actor_preferences: dict[str, float] = field(default_factory=dict)
    runtime_window: RuntimeWindow = field(default_factory=RuntimeWindow)
    year_window: YearWindow = field(default_factory=YearWindow)
    rated_item_ids: set[str] = field(default_factory=set)
    last_active: datetime | None = None

    @property
    def is_cold_start(self) -> bool:
        return self.rating_count == 0


@dataclass(frozen=True)
class Weights:
    """Per-source blending weights. Always sum to 1."""

    content: float
    collaborative: float
    popularity: float

    def total(self) -> float:
        return self.content + self.collaborative + self.popularity

    def to_dict(self) -> dict[str, float]:
        return {
            "content": self.content,
            "collaborative": self.collaborative,
            "popularity": self.popularity,
        }


@dataclass
class RecommendationItem:
    """Ranked recommendation with its per-source breakdown."""

    item_id: str
    title: str
    score: float
    content_score: float
    collaborative_score: float
    popularity_score: float
    weights: Weights
    genres: tuple[str, ...] = ()
    directors: tuple[str, ...] = ()
    source: str = "hybrid"
    explanations: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["genres"] = list(self.genres)
        data["directors"] = list(self.directors)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecommendationItem":
        weights = data.get("weights") or {}
        return cls(
            item_id=data["item_id"],
            title=data.get("title", ""),
            score=float(data["score"]),
            content_score=float(data.get("content_score", 0.0)),
            collaborative_score=float(data.get("collaborative_score", 0.0)),
            popularity_score=float(data.get("popularity_score", 0.0)),
            weights=Weights(
                content=float(weights.get("content", 0.0)),
                collaborative=float(weights.get("collaborative", 0.0)),
                popularity=float(weights.get("popularity", 0.0)),
            ),
            genres=tuple(data.get("genres") or ()),
            directors=tuple(data.get("directors") or ()),
            source=data.get("source", "hybrid"),
            explanations=data.get("explanations"),
        )


class RecommendationOptions(BaseModel):
    """Caller options for a recommendation request.

    Malformed options are the only caller-visible recommendation error and
    surface as a pydantic ``ValidationError``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    count: int = Field(default=25, ge=1, le=200)
    exclude_rated: bool = True
    exclude_watchlisted: bool = True
    min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    diversity_factor: float = Field(default=0.3, ge=0.0, le=1.0)
    include_explanations: bool = False
    genres: tuple[str, ...] | None = None
    year_min: int | None = Field(default=None, ge=1800, le=2200)
    year_max: int | None = Field(default=None, ge=1800, le=2200)
    language: str | None = Field(default=None, min_length=2, max_length=8)
    min_vote_average: float = Field(default=0.0, ge=0.0, le=10.0)
    min_vote_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_year_range(self) -> "RecommendationOptions":
        if (
            self.year_min is not None
            and self.year_max is not None
            and self.year_min > self.year_max
        ):
            raise ValueError("year_min must not be greater than year_max")
        return self

    def cache_key(self) -> str:
        """Stable serialization used to key cached results."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))


class KeyValueCache(Protocol):
    """Short-TTL key-value store used for memoized results."""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        ...

    async def push_list(self, key: str, value: Any, max_length: int, ttl_seconds: float) -> None:
        ...

    async def get_list(self, key: str) -> list[Any]:
        ...
