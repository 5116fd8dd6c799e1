"""Versioned persistence of embedding model snapshots.

Layout::

    <directory>/<version>/parameters.npz   numpy arrays
    <directory>/<version>/metadata.json    id maps, biases, model info

metadata.json is written last, so a version without it is incomplete and
ignored by ``list_versions``.
"""

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any

import numpy as np

from hybridrec.core.contracts import MAX_RATING, MIN_RATING
from hybridrec.logging import get_logger
from hybridrec.ml.embedding import ModelSnapshot

logger = get_logger(__name__)

PARAMETERS_FILE = "parameters.npz"
METADATA_FILE = "metadata.json"

_VERSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


def _check_version(version: str) -> str:
    if not _VERSION_RE.match(version):
        raise ValueError(f"Invalid model version name: {version!r}")
    return version


def new_version() -> str:
    """Version name from the current UTC time; sorts chronologically."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


def save_snapshot(
    snapshot: ModelSnapshot,
    directory: str | Path,
    version: str | None = None,
    info: dict[str, Any] | None = None,
) -> str:
    """Save a snapshot as a new artifact version.

    Args:
        snapshot: Published model state
        directory: Root artifact directory
        version: Version name, defaults to a UTC timestamp
        info: Extra model info stored in metadata

    Returns:
        Saved version name
    """
    version = _check_version(version or new_version())
    target = Path(directory) / version
    if (target / METADATA_FILE).exists():
        raise FileExistsError(f"Model version {version} already exists")
    target.mkdir(parents=True, exist_ok=True)

    np.savez(
        target / PARAMETERS_FILE,
        user_factors=snapshot.user_factors,
        item_factors=snapshot.item_factors,
        user_bias=snapshot.user_bias,
        item_bias=snapshot.item_bias,
    )

    metadata = {
        "version": version,
        "snapshot_version": snapshot.version,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "factors": snapshot.factors,
        "user_capacity": snapshot.user_capacity,
        "item_capacity": snapshot.item_capacity,
        "rating_sum": snapshot.rating_sum,
        "rating_count": snapshot.rating_count,
        "user_index": dict(snapshot.user_index),
        "item_index": dict(snapshot.item_index),
        "info": info or {},
    }
    with open(target / METADATA_FILE, "w", encoding="utf-8") as f:
        json.dump(metadata, f, ensure_ascii=False, indent=2, default=str)

    logger.info(
        f"Saved model version {version}: {len(snapshot.user_index)} users, "
        f"{len(snapshot.item_index)} items"
    )
    return version


def list_versions(directory: str | Path) -> list[str]:
    """List complete versions, oldest first."""
    root = Path(directory)
    if not root.is_dir():
        return []
    return sorted(
        p.name
        for p in root.iterdir()
        if p.is_dir() and _VERSION_RE.match(p.name) and (p / METADATA_FILE).exists()
    )


def latest_version(directory: str | Path) -> str | None:
    versions = list_versions(directory)
    return versions[-1] if versions else None


def load_snapshot(
    directory: str | Path,
    version: str | None = None,
) -> tuple[ModelSnapshot, str]:
    """Load an artifact version.

    Args:
        directory: Root artifact directory
        version: Version name, defaults to the latest one

    Returns:
        Tuple (snapshot, version name)

    Raises:
        FileNotFoundError: If the version does not exist or is incomplete
    """
    if version is None:
        version = latest_version(directory)
        if version is None:
            raise FileNotFoundError(f"No model versions in {directory}")

    source = Path(directory) / _check_version(version)
    metadata_path = source / METADATA_FILE
    if not metadata_path.exists():
        raise FileNotFoundError(f"Model version {version} not found in {directory}")

    with open(metadata_path, encoding="utf-8") as f:
        metadata = json.load(f)

    with np.load(source / PARAMETERS_FILE) as arrays:
        user_factors = arrays["user_factors"].copy()
        item_factors = arrays["item_factors"].copy()
        user_bias = arrays["user_bias"].copy()
        item_bias = arrays["item_bias"].copy()

    for array in (user_factors, item_factors, user_bias, item_bias):
        array.setflags(write=False)

    rating_sum = float(metadata["rating_sum"])
    rating_count = int(metadata["rating_count"])
    global_bias = rating_sum / rating_count if rating_count else (MIN_RATING + MAX_RATING) / 2

    snapshot = ModelSnapshot(
        user_index=MappingProxyType({str(k): int(v) for k, v in metadata["user_index"].items()}),
        item_index=MappingProxyType({str(k): int(v) for k, v in metadata["item_index"].items()}),
        user_factors=user_factors,
        item_factors=item_factors,
        user_bias=user_bias,
        item_bias=item_bias,
        global_bias=global_bias,
        rating_sum=rating_sum,
        rating_count=rating_count,
        version=int(metadata.get("snapshot_version", 0)),
    )
    logger.info(f"Loaded model version {version}")
    return snapshot, version
