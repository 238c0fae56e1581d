"""Debug bundle writer for listing-page failure analysis."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DebugBundleWriter:
    """
    Writes debug bundles for suspicious listing pages.

    Bundles include:
    - Full-page screenshot
    - Page HTML
    - Metadata about the page (URL, reason, response status, extra fields)

    A writer built without a base path is disabled and every call is a no-op.
    Each artifact write swallows its own failure; capturing never breaks a crawl.
    """

    def __init__(self, base_path: Optional[str | Path] = None, store: str = ""):
        """
        Initialize debug bundle writer.

        Args:
            base_path: Directory receiving the bundles, or None to disable
            store: Store identifier recorded in metadata
        """
        self.base_path = Path(base_path) if base_path else None
        self.store = store

    @property
    def enabled(self) -> bool:
        return self.base_path is not None

    def _bundle_stem(self, page_num: int, reason: str, timestamp: Optional[datetime] = None) -> Path:
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        timestamp_str = timestamp.strftime("%Y%m%d_%H%M%S_%f")
        return self.base_path / f"page-{page_num}-{reason}-{timestamp_str}"

    async def capture_page(
        self,
        page,
        page_num: int,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Path]:
        """
        Capture screenshot, HTML and metadata for the current page.

        Args:
            page: Playwright page
            page_num: Listing page number
            reason: Short label, e.g. ``wait-products-failed``
            metadata: Optional additional metadata

        Returns:
            Stem path of the bundle files, or None when disabled
        """
        if not self.enabled:
            return None

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug(f"Cannot create debug directory {self.base_path}: {e}")
            return None

        stem = self._bundle_stem(page_num, reason)

        try:
            await page.screenshot(path=str(stem.with_suffix(".png")), full_page=True)
        except Exception as e:
            logger.debug(f"Debug screenshot failed: {e}")

        try:
            html = await page.content()
            stem.with_suffix(".html").write_text(html, encoding="utf-8")
        except Exception as e:
            logger.debug(f"Debug HTML capture failed: {e}")

        try:
            url = page.url
        except Exception:
            url = None

        metadata_dict = {
            "store": self.store,
            "page": page_num,
            "reason": reason,
            "url": url,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(metadata or {}),
        }
        try:
            stem.with_suffix(".log").write_text(
                json.dumps(metadata_dict, indent=2, default=str), encoding="utf-8"
            )
        except OSError as e:
            logger.debug(f"Debug metadata write failed: {e}")

        logger.info(f"Wrote debug bundle {stem.name} ({reason})")
        return stem

    def log_card_samples(self, page_num: int, samples: List[dict], limit: int = 10):
        """Log up to ``limit`` card samples for a page without usable prices."""
        for index, sample in enumerate(samples[:limit], start=1):
            logger.info(f"Page {page_num} sample {index}: {json.dumps(sample, ensure_ascii=False, default=str)}")
