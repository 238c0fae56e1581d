"""Per-store JSON output."""

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from slugify import slugify

from clearance_crawler.config import settings
from clearance_crawler.ingest.base import StoreTarget
from clearance_crawler.normalize.processor import ProductRecord

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "data.json"


def store_slug(store: StoreTarget) -> str:
    """``<storeId>-<slug of store name>``, e.g. ``418-rosemere-qc``."""
    return f"{store.store_id}-{slugify(store.store_name or '')}"


def resolve_output_dir(store: StoreTarget, output_base: Optional[str | Path] = None) -> Path:
    base = Path(output_base or settings.output_base)
    return base / store_slug(store)


class JsonRecordWriter:
    """Writes one store's records to ``<output_base>/<storeId>-<slug>/data.json``."""

    def __init__(self, output_base: Optional[str | Path] = None):
        self.output_base = Path(output_base or settings.output_base)

    def output_dir(self, store: StoreTarget) -> Path:
        return resolve_output_dir(store, self.output_base)

    def write(self, store: StoreTarget, records: Iterable[ProductRecord]) -> Path:
        """Replace the store's data file with ``records``, keeping their order."""
        out_dir = self.output_dir(store)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / OUTPUT_FILENAME

        payload = []
        for record in records:
            item = record.to_dict()
            item["image_url"] = item.get("image")
            payload.append(item)

        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)
        logger.info(f"Wrote {len(payload)} record(s) to {path}")
        return path
