"""One store run: browser session, listing crawl, output file."""

import time
from pathlib import Path
from typing import Optional

from clearance_crawler.config import settings
from clearance_crawler.ingest.base import StoreTarget
from clearance_crawler.ingest.browser import BrowserSessionFactory
from clearance_crawler.ingest.card_extractor import CardExtractor, SelectorConfig
from clearance_crawler.ingest.debug_bundle import DebugBundleWriter
from clearance_crawler.ingest.pagination import (
    AdvanceStrategy,
    ClickPageAdvance,
    PaginationController,
    UrlPageAdvance,
)
from clearance_crawler.ingest.stability import StabilityDetector
from clearance_crawler.logging_config import get_logger
from clearance_crawler.normalize.dedupe import Deduplicator
from clearance_crawler.normalize.processor import RecordNormalizer
from clearance_crawler.output.writer import JsonRecordWriter
from clearance_crawler.worker.scheduler import RunContext, StoreRunResult


def store_listing_url(store: StoreTarget, base_url: Optional[str] = None) -> str:
    return f"{base_url or settings.base_url}?store={store.normalized_id}"


class StoreCrawler:
    """Crawls one store end to end. Each call owns its own session and dedup state."""

    def __init__(
        self,
        session_factory: Optional[BrowserSessionFactory] = None,
        writer: Optional[JsonRecordWriter] = None,
        selectors: Optional[SelectorConfig] = None,
        pagination_mode: Optional[str] = None,
        max_pages: Optional[int] = None,
        capture_debug: Optional[bool] = None,
    ):
        self.session_factory = session_factory or BrowserSessionFactory()
        self.writer = writer or JsonRecordWriter()
        self.selectors = selectors or SelectorConfig.from_settings()
        self.pagination_mode = (pagination_mode or settings.pagination_mode).lower()
        self.max_pages = max_pages or settings.max_pages
        self.capture_debug = settings.capture_debug if capture_debug is None else capture_debug

    def _debug_writer(self, store: StoreTarget) -> DebugBundleWriter:
        if not self.capture_debug:
            return DebugBundleWriter()
        if settings.debug_bundle_path:
            return DebugBundleWriter(Path(settings.debug_bundle_path) / store.store_id, store=store.store_id)
        return DebugBundleWriter(self.writer.output_dir(store) / "debug", store=store.store_id)

    def _advance(self, page, store: StoreTarget, stability: StabilityDetector,
                 debug: DebugBundleWriter) -> AdvanceStrategy:
        start_url = store_listing_url(store)
        if self.pagination_mode == "click":
            return ClickPageAdvance(start_url, page, stability, self.selectors, debug)
        return UrlPageAdvance(start_url)

    async def __call__(self, store: StoreTarget, context: RunContext) -> StoreRunResult:
        return await self.crawl(store, context)

    async def crawl(self, store: StoreTarget, context: RunContext) -> StoreRunResult:
        logger = get_logger(__name__, store=store.store_id)
        logger.info(f"Store run start: {store.store_name or 'unnamed'}")
        start = time.monotonic()

        debug = self._debug_writer(store)
        extractor = CardExtractor(self.selectors)

        async with self.session_factory.open() as page:
            stability = StabilityDetector(page, extractor, debug)
            controller = PaginationController(
                page,
                store,
                self._advance(page, store, stability, debug),
                extractor=extractor,
                normalizer=RecordNormalizer(),
                deduplicator=Deduplicator(store.normalized_id),
                debug=debug,
                stability=stability,
                max_pages=self.max_pages,
            )
            outcome = await controller.run()

        path = self.writer.write(store, outcome.records)
        duration = time.monotonic() - start
        logger.info(
            f"Store run done: {len(outcome.records)} deal(s), {outcome.pages_visited} page(s), "
            f"stop={outcome.stop_reason.value}, {duration:.1f}s"
        )
        return StoreRunResult(
            store=store,
            success=True,
            records=len(outcome.records),
            pages_visited=outcome.pages_visited,
            stop_reason=outcome.stop_reason.value,
            output_path=str(path),
            duration=duration,
        )
