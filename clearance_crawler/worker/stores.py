"""Store list loading."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from clearance_crawler.ingest.base import GlobalFatalError, StoreTarget, normalize_store_id

logger = logging.getLogger(__name__)


def _store_from_entry(entry: dict) -> Optional[StoreTarget]:
    store_id = entry.get("storeId", entry.get("id"))
    if store_id is None:
        return None
    name = entry.get("storeName") or entry.get("city") or entry.get("name") or ""
    return StoreTarget(store_id=str(store_id), store_name=str(name))


def read_store_file(path: str | Path) -> List[StoreTarget]:
    """Read ``[{"storeId": ..., "storeName": ...}, ...]``; a missing file gives []."""
    path = Path(path)
    if not path.exists():
        logger.warning(f"Store list not found: {path}")
        return []

    data = json.loads(path.read_text(encoding="utf-8"))
    stores = []
    for entry in data:
        store = _store_from_entry(entry) if isinstance(entry, dict) else None
        if store is None:
            logger.warning(f"Skipping store entry without id: {entry!r}")
            continue
        stores.append(store)
    logger.info(f"Loaded {len(stores)} store(s) from {path}")
    return stores


def load_stores(
    path: str | Path,
    fallback_store_id: Optional[str] = None,
    fallback_store_name: str = "",
) -> List[StoreTarget]:
    """
    Load the store list, falling back to a single CLI-supplied store.

    Raises:
        GlobalFatalError: If there is neither a store list nor a fallback
    """
    stores = read_store_file(path)
    if stores:
        return stores

    if fallback_store_id:
        logger.info(f"Using fallback store {fallback_store_id} ({fallback_store_name or 'no name'})")
        return [StoreTarget(store_id=str(fallback_store_id), store_name=fallback_store_name or "")]

    raise GlobalFatalError(
        f"No store list at {path} and no fallback store id; pass --store-id or add the file"
    )


def filter_stores(stores: List[StoreTarget], store_id: Optional[str]) -> List[StoreTarget]:
    """Keep only the store matching ``store_id`` (leading zeros ignored)."""
    if not store_id:
        return stores
    wanted = normalize_store_id(store_id)
    selected = [s for s in stores if s.normalized_id == wanted]
    logger.info(f"Store filter {store_id}: {len(selected)} store(s)")
    return selected
