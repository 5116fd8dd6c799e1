"""JSON helpers for text columns. They log and fall back instead of raising."""

import json
from typing import Any

from hybridrec.logging import get_logger

logger = get_logger(__name__)


def safe_json_dumps(data: Any, default: str = "{}") -> str:
    """Serialize data to a compact JSON string, returning default on failure."""
    if data is None:
        return default

    try:
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError, OverflowError) as e:
        logger.warning(f"Failed to serialize JSON: {e}")
        return default


def safe_json_loads(text: str | None, default: dict | list | None = None) -> Any:
    """Parse a JSON string, returning default (empty dict) on failure."""
    if default is None:
        default = {}

    if not text:
        return default

    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.warning(f"Failed to parse JSON: {e}")
        return default


def dump_names(names: list[str] | tuple[str, ...] | None) -> str:
    """Serialize an ordered list of names (genres, cast) for storage."""
    return safe_json_dumps([str(n) for n in names or []], default="[]")


def load_names(text: str | None) -> tuple[str, ...]:
    """Load an ordered name list; anything that is not a list of strings is empty."""
    data = safe_json_loads(text, default=[])
    if not isinstance(data, list):
        return ()
    return tuple(str(n) for n in data if isinstance(n, (str, int)))
