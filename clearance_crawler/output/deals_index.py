"""National index of deep-discount records across every store's output."""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_MIN_DISCOUNT = 80.0
DEFAULT_ROOTS = ("outputs", "output", "results", "data/outputs", "data/output")
IGNORE_DIRS = {".git", "node_modules", "public"}


@dataclass
class IndexEntry:
    product_key: Optional[str]
    name: str
    sku: str
    store_id: Optional[str]
    store_slug: str
    city: str
    regular_price: Optional[float]
    sale_price: Optional[float]
    discount_percent: Optional[float]
    availability: str
    stock_qty: Optional[int]
    image: str
    url: str


def _first(item: dict, keys: Sequence[str]) -> Any:
    for key in keys:
        if key in item:
            return item[key]
    return None


def _to_number(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def extract_items(data) -> List[dict]:
    """Records from a data file: a bare list or a list under a well-known key."""
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if not isinstance(data, dict):
        return []
    for key in ("items", "results", "data", "products", "deals"):
        if isinstance(data.get(key), list):
            return [item for item in data[key] if isinstance(item, dict)]
    return []


def to_index_entry(item: dict, store_slug: str = "") -> IndexEntry:
    regular = _to_number(_first(item, ["regular_price", "regularPrice", "originalPrice", "listPrice"]))
    sale = _to_number(_first(item, ["sale_price", "salePrice", "price", "currentPrice"]))
    discount = _to_number(_first(item, ["discount_percent", "discountPercent", "discountPct", "discount"]))
    if discount is None and regular and sale is not None and regular > 0:
        discount = round((regular - sale) / regular * 100, 2)

    store_id = _first(item, ["store_id", "storeId", "store"])
    stock_qty = _first(item, ["stock_qty", "stockQty"])
    return IndexEntry(
        product_key=_first(item, ["product_key", "productKey"]),
        name=_first(item, ["name", "title", "productName"]) or "",
        sku=str(_first(item, ["sku", "sku_formatted", "productId", "product_id"]) or ""),
        store_id=str(store_id) if store_id is not None else None,
        store_slug=store_slug,
        city=_first(item, ["city", "storeCity"]) or "",
        regular_price=regular,
        sale_price=sale,
        discount_percent=discount,
        availability=_first(item, ["availability", "stockStatus"]) or "",
        stock_qty=int(stock_qty) if isinstance(stock_qty, (int, float)) else None,
        image=_first(item, ["image", "image_url", "imageUrl"]) or "",
        url=_first(item, ["url", "productUrl", "link"]) or "",
    )


def collect_json_files(roots: Iterable[str | Path]) -> List[Path]:
    files = []
    for root in roots:
        root = Path(root)
        if not root.is_dir():
            continue
        for path in sorted(root.rglob("*.json")):
            if any(part in IGNORE_DIRS for part in path.parts):
                continue
            files.append(path)
    return files


def _sort_key(entry: IndexEntry):
    return (
        -(entry.discount_percent or 0),
        entry.sku,
        entry.store_id or "",
        entry.sale_price or 0,
        entry.name,
        entry.url,
    )


def build_deals_index(
    roots: Iterable[str | Path] = DEFAULT_ROOTS,
    min_discount: float = DEFAULT_MIN_DISCOUNT,
) -> dict:
    """
    Gather every record at or above ``min_discount`` from the output roots.

    Returns:
        ``{"generated_at", "count", "items"}`` with items sorted by
        discount descending
    """
    entries: List[IndexEntry] = []
    seen = set()
    latest_mtime = 0.0

    for path in collect_json_files(roots):
        latest_mtime = max(latest_mtime, path.stat().st_mtime)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(f"Skipping invalid JSON: {path}")
            continue

        for item in extract_items(data):
            entry = to_index_entry(item, store_slug=path.parent.name)
            if entry.discount_percent is None or entry.discount_percent < min_discount:
                continue
            key = (
                entry.product_key or entry.sku or entry.name or "unknown",
                entry.store_id or "unknown",
                entry.sale_price,
                entry.regular_price,
            )
            if key in seen:
                continue
            seen.add(key)
            entries.append(entry)

    entries.sort(key=_sort_key)
    generated_at = datetime.fromtimestamp(latest_mtime, tz=timezone.utc).isoformat()
    return {
        "generated_at": generated_at,
        "count": len(entries),
        "items": [asdict(entry) for entry in entries],
    }


def write_index(index: dict, output_path: str | Path) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(index, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.info(f"Wrote {index['count']} deal(s) to {output_path}")
    return output_path
