"""SQLAlchemy ORM models for hybridrec."""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hybridrec.storage.db import Base


class Interaction(Base):
    """Append-only user interaction log."""

    __tablename__ = "interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    item_id: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    session_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "action IN ('view', 'click', 'rate', 'watch_time', 'add_watchlist', 'remove_watchlist')",
            name="ck_interactions_action",
        ),
        Index("ix_interactions_user_created", "user_id", "created_at"),
        Index("ix_interactions_item_action", "item_id", "action"),
        Index("ix_interactions_action_user", "action", "user_id"),
    )


class Item(Base):
    """Catalog items with the features used for scoring."""

    __tablename__ = "items"

    item_id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    genres_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    directors_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    cast_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    runtime: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    popularity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    vote_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_items_popularity", "popularity"),
        Index("ix_items_year", "year"),
    )


class Event(Base):
    """Analytics event log (recommendations served, batches trained)."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_events_name_created", "event_name", "created_at"),
        Index("ix_events_user_created", "user_id", "created_at"),
    )
