"""Stable deduplication keys and per-store duplicate suppression."""

import logging
from typing import Iterable, Optional, Set
from urllib.parse import urlsplit, urlunsplit

from clearance_crawler.normalize.processor import ProductRecord

logger = logging.getLogger(__name__)


def normalize_url_for_dedup(url: Optional[str]) -> Optional[str]:
    """Drop query string and fragment, lowercase the rest."""
    if not url:
        return None
    parts = urlsplit(url.strip())
    bare = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return bare.lower() or None


def build_dedup_key(
    store_id: Optional[str],
    product_key: Optional[str] = None,
    sku: Optional[str] = None,
    sku_formatted: Optional[str] = None,
    url: Optional[str] = None,
) -> Optional[str]:
    """
    Build the stable identity of a record.

    Precedence is product key, then store+sku, then store+url. The
    product key is global; the other two forms are scoped to the store.

    Returns:
        Key string, or None when no identity can be derived
    """
    if product_key:
        return f"product_key:{product_key.strip().lower()}"

    store = str(store_id).strip() if store_id is not None else ""
    sku_value = (sku or sku_formatted or "").strip().lower()
    if store and sku_value:
        return f"store:{store}|sku:{sku_value}"

    normalized_url = normalize_url_for_dedup(url)
    if store and normalized_url:
        return f"store:{store}|url:{normalized_url}"

    return None


def record_dedup_key(record: ProductRecord) -> Optional[str]:
    return build_dedup_key(
        record.store_id,
        product_key=record.product_key,
        sku=record.sku,
        sku_formatted=record.sku_formatted,
        url=record.url,
    )


class Deduplicator:
    """Tracks keys seen during one store run."""

    def __init__(self, store_id: Optional[str] = None):
        self.store_id = store_id
        self._seen: Set[str] = set()
        self.no_key_count = 0
        self.duplicate_count = 0

    def __len__(self) -> int:
        return len(self._seen)

    def register(self, record: ProductRecord) -> bool:
        """
        Register a record.

        Returns:
            True if the record should be kept. Records without a derivable
            key are always kept and counted in ``no_key_count``.
        """
        key = record_dedup_key(record)
        if key is None:
            self.no_key_count += 1
            logger.debug(f"Keeping record without dedup key: {record.name!r}")
            return True
        if key in self._seen:
            self.duplicate_count += 1
            return False
        self._seen.add(key)
        return True

    def filter(self, records: Iterable[ProductRecord]) -> list:
        return [record for record in records if self.register(record)]

    def reset(self):
        self._seen.clear()
        self.no_key_count = 0
        self.duplicate_count = 0
