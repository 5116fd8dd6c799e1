"""Storage module for database operations."""

from hybridrec.storage.db import (
    Base,
    close_engine,
    ensure_schema,
    get_engine,
    get_session_factory,
)
from hybridrec.storage.json_utils import safe_json_dumps, safe_json_loads
from hybridrec.storage.models import Event, Interaction, Item
from hybridrec.storage.repo_events import EventsRepo
from hybridrec.storage.repo_interactions import InteractionsRepo
from hybridrec.storage.repo_items import ItemsRepo

__all__ = [
    # Database
    "Base",
    "get_engine",
    "get_session_factory",
    "ensure_schema",
    "close_engine",
    # JSON utilities
    "safe_json_dumps",
    "safe_json_loads",
    # Models
    "Interaction",
    "Item",
    "Event",
    # Repositories
    "InteractionsRepo",
    "ItemsRepo",
    "EventsRepo",
]
