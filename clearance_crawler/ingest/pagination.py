"""Per-store listing crawl: the page-by-page state machine and its advance strategies."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set, Tuple

from playwright.async_api import Page

from clearance_crawler import metrics
from clearance_crawler.config import settings
from clearance_crawler.ingest.base import NavigationError, RawCard, StoreTarget
from clearance_crawler.ingest.browser import close_interfering_popups, is_disabled, safe_visible
from clearance_crawler.ingest.card_extractor import CardExtractor, SelectorConfig
from clearance_crawler.ingest.debug_bundle import DebugBundleWriter
from clearance_crawler.ingest.lazy_loader import LazyContentLoader
from clearance_crawler.ingest.navigator import PageNavigator, with_page_param
from clearance_crawler.ingest.stability import StabilityDetector
from clearance_crawler.logging_config import get_logger
from clearance_crawler.normalize.dedupe import Deduplicator, build_dedup_key
from clearance_crawler.normalize.processor import ProductRecord, RecordNormalizer, StoreContext

SCROLL_BOTTOM_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"
CLICK_TIMEOUT_MS = 5000

# Click outcomes meaning the listing has no further page
END_OF_LISTING_REASONS = ("disabled-target", "missing-target", "missing-nav")


class CrawlState(str, Enum):
    NAVIGATE = "navigate"
    STABILIZE = "stabilize"
    LOAD_LAZY = "load-lazy"
    EXTRACT = "extract"
    DECIDE = "decide"
    STOP = "stop"


class StopReason(str, Enum):
    NAV_FAILURE = "nav-failure"
    UNSTABLE = "unstable"
    PLACEHOLDER = "placeholder"
    EMPTY = "empty"
    EMPTY_STREAK = "empty-streak"
    SIGNATURE_REPEAT = "signature-repeat"
    MAX_PAGES = "max-pages"
    NO_ADVANCE = "no-advance"


@dataclass
class CrawlOutcome:
    """Result of one store's listing crawl."""

    records: List[ProductRecord] = field(default_factory=list)
    stop_reason: Optional[StopReason] = None
    pages_visited: int = 0
    no_key_count: int = 0
    duplicates_dropped: int = 0


class AdvanceStrategy:
    """How the crawl gets from page N to page N+1."""

    # State the controller resumes in after a successful advance
    resume_state = CrawlState.NAVIGATE

    def __init__(self, start_url: str):
        self.start_url = start_url

    def url_for(self, page_num: int) -> Optional[str]:
        """URL to navigate to for ``page_num``; only page 1 is needed by click strategies."""
        return self.start_url if page_num == 1 else None

    async def advance(self, next_page: int) -> bool:
        """Prepare ``next_page``. False means the listing offers no further page."""
        raise NotImplementedError


class UrlPageAdvance(AdvanceStrategy):
    """Pages are addressed by the ``page`` query parameter."""

    resume_state = CrawlState.NAVIGATE

    def __init__(self, start_url: str):
        super().__init__(with_page_param(start_url, 1))

    def url_for(self, page_num: int) -> Optional[str]:
        if page_num < 1:
            return None
        try:
            return with_page_param(self.start_url, page_num)
        except ValueError:
            return None

    async def advance(self, next_page: int) -> bool:
        next_url = self.url_for(next_page)
        return bool(next_url) and next_url != self.url_for(next_page - 1)


class ClickPageAdvance(AdvanceStrategy):
    """Pages are reached by clicking the listing's pagination control."""

    resume_state = CrawlState.LOAD_LAZY

    def __init__(
        self,
        start_url: str,
        page: Page,
        stability: StabilityDetector,
        selectors: SelectorConfig,
        debug: Optional[DebugBundleWriter] = None,
        retries: Optional[int] = None,
    ):
        super().__init__(start_url)
        self.page = page
        self.stability = stability
        self.selectors = selectors
        self.debug = debug or DebugBundleWriter()
        self.retries = retries or settings.click_retries
        self.logger = get_logger(__name__)

    def _candidates(self, target_page: int) -> List[Tuple[str, object]]:
        nav = self.page.locator(", ".join(self.selectors.pagination_nav)).first
        numeric, text_next, rel_next = [], [], []
        for template in self.selectors.pagination_next:
            if "{page}" in template:
                numeric.append(template.replace("{page}", str(target_page)))
            elif "rel=" in template:
                rel_next.append(template)
            else:
                text_next.append(template)

        candidates = []
        if numeric:
            candidates.append(("numeric", nav.locator(", ".join(numeric)).first))
        if text_next:
            candidates.append(("text-next", nav.locator(", ".join(text_next)).first))
        current = nav.locator("[aria-current]").first
        candidates.append((
            "relative-next",
            current.locator("xpath=following::a[1] | xpath=following::button[1]").first,
        ))
        if rel_next:
            candidates.append(("rel-next", self.page.locator(", ".join(rel_next)).first))
        return candidates

    async def click_next(self, target_page: int) -> Tuple[bool, str]:
        """
        Click the control leading to ``target_page``.

        Returns:
            (clicked, reason) where reason names the candidate used or why
            nothing was clicked
        """
        nav = self.page.locator(", ".join(self.selectors.pagination_nav)).first
        if not await safe_visible(nav):
            return False, "missing-nav"

        for reason, locator in self._candidates(target_page):
            if not await safe_visible(locator):
                continue
            try:
                await locator.scroll_into_view_if_needed()
            except Exception as e:
                self.logger.debug(f"Pagination scroll into view failed: {e}")
            if await is_disabled(locator):
                return False, "disabled-target"
            try:
                await locator.click(timeout=CLICK_TIMEOUT_MS)
            except Exception as e:
                self.logger.debug(f"Pagination click failed ({e}), retrying with force")
                try:
                    await locator.click(timeout=CLICK_TIMEOUT_MS, force=True)
                except Exception as e:
                    self.logger.warning(f"Forced pagination click failed: {e}")
            return True, reason

        try:
            nav_text = await nav.inner_text()
        except Exception:
            nav_text = ""
        if nav_text:
            self.logger.info(f"No clickable pagination candidate. Pagination text: {nav_text!r}")
        return False, "missing-target"

    async def advance(self, next_page: int) -> bool:
        for attempt in range(1, self.retries + 1):
            before = await self.stability.signature()
            await self.page.evaluate(SCROLL_BOTTOM_SCRIPT)
            await self.page.wait_for_timeout(800)

            clicked, reason = await self.click_next(next_page)
            if not clicked:
                if reason in END_OF_LISTING_REASONS:
                    self.logger.info(f"Page {next_page}: pagination target {reason}, end of listing")
                    await self.debug.capture_page(self.page, next_page, "pagination-missing-target")
                else:
                    self.logger.warning(f"Page {next_page}: pagination click failed ({reason})")
                return False

            try:
                await self.page.wait_for_load_state("domcontentloaded", timeout=30000)
            except Exception as e:
                self.logger.debug(f"DOM content wait after pagination click failed: {e}")
            await self.stability.wait_stable()
            changed = await self.stability.wait_for_signature_change(before)
            await close_interfering_popups(self.page)
            if changed:
                self.logger.info(f"Page {next_page}: reached via {reason} control")
                return True

            self.logger.warning(
                f"Page {next_page}: listing unchanged after click ({attempt}/{self.retries})"
            )
            await self.page.wait_for_timeout(1500)

        await self.debug.capture_page(self.page, next_page, "pagination-signature-stuck")
        return False


class PaginationController:
    """
    Crawls one store's listing page by page.

    NAVIGATE -> STABILIZE -> LOAD_LAZY -> EXTRACT -> DECIDE, looping back to
    NAVIGATE or LOAD_LAZY depending on the advance strategy, until a stop
    condition is met. Pages of one store are strictly sequential.
    """

    def __init__(
        self,
        page: Page,
        store: StoreTarget,
        advance: AdvanceStrategy,
        extractor: Optional[CardExtractor] = None,
        normalizer: Optional[RecordNormalizer] = None,
        deduplicator: Optional[Deduplicator] = None,
        debug: Optional[DebugBundleWriter] = None,
        stability: Optional[StabilityDetector] = None,
        max_pages: Optional[int] = None,
        empty_page_limit: Optional[int] = None,
    ):
        self.page = page
        self.store = store
        self.advance_strategy = advance
        self.extractor = extractor or CardExtractor()
        self.normalizer = normalizer or RecordNormalizer()
        self.deduplicator = deduplicator or Deduplicator(store.normalized_id)
        self.debug = debug or DebugBundleWriter()
        self.navigator = PageNavigator(page)
        self.stability = stability or StabilityDetector(page, self.extractor, self.debug)
        self.loader = LazyContentLoader(page, self.extractor.selectors, self.stability)
        self.max_pages = max_pages or settings.max_pages
        self.empty_page_limit = empty_page_limit or settings.empty_page_limit
        self.logger = get_logger(__name__, store=store.store_id)

        self._page_num = 1
        self._empty_streak = 0
        self._page_keys: Set[str] = set()
        self._previous_keys: Optional[Set[str]] = None
        self._response_status: Optional[int] = None

    def _card_key(self, card: RawCard) -> Optional[str]:
        keys = self.normalizer.derive_keys(card)
        return build_dedup_key(
            self.store.normalized_id,
            product_key=keys.product_key,
            sku=card.sku,
            sku_formatted=card.sku_formatted,
            url=card.link,
        )

    async def run(self) -> CrawlOutcome:
        outcome = CrawlOutcome()
        state = CrawlState.NAVIGATE
        self.logger.info(f"Crawl start: {self.advance_strategy.url_for(1)}")

        while state is not CrawlState.STOP:
            if state is CrawlState.NAVIGATE:
                state = await self._navigate(outcome)
            elif state is CrawlState.STABILIZE:
                state = await self._stabilize(outcome)
            elif state is CrawlState.LOAD_LAZY:
                await self.loader.load_all()
                state = CrawlState.EXTRACT
            elif state is CrawlState.EXTRACT:
                state = await self._extract(outcome)
            elif state is CrawlState.DECIDE:
                state = await self._decide(outcome)

        outcome.no_key_count = self.deduplicator.no_key_count
        outcome.duplicates_dropped = self.deduplicator.duplicate_count
        self.logger.info(
            f"Crawl stop: reason={outcome.stop_reason.value} pages={outcome.pages_visited} "
            f"records={len(outcome.records)} no_key={outcome.no_key_count} "
            f"duplicates={outcome.duplicates_dropped}"
        )
        return outcome

    def _stop(self, outcome: CrawlOutcome, reason: StopReason) -> CrawlState:
        outcome.stop_reason = reason
        self.logger.info(f"Page {self._page_num}: stop ({reason.value})")
        return CrawlState.STOP

    async def _navigate(self, outcome: CrawlOutcome) -> CrawlState:
        url = self.advance_strategy.url_for(self._page_num)
        if not url:
            return self._stop(outcome, StopReason.NO_ADVANCE)
        try:
            meta = await self.navigator.navigate(url, self._page_num)
        except NavigationError as e:
            self.logger.warning(str(e))
            metrics.record_page(self.store.store_id, "nav-failure")
            return self._stop(outcome, StopReason.NAV_FAILURE)
        self._response_status = meta.status
        return CrawlState.STABILIZE

    async def _stabilize(self, outcome: CrawlOutcome) -> CrawlState:
        stable = await self.stability.wait_stable_with_retries(
            self._page_num, response_status=self._response_status
        )
        if not stable:
            metrics.record_page(self.store.store_id, "unstable")
            return self._stop(outcome, StopReason.UNSTABLE)

        if not await self.stability.wait_real_cards():
            stats = await self.stability.card_stats()
            if self._page_num > 1 and stats.is_placeholder(settings.placeholder_max_cards):
                await self.debug.capture_page(
                    self.page,
                    self._page_num,
                    "pagination-placeholder",
                    {"response_status": self._response_status},
                )
                metrics.record_page(self.store.store_id, "placeholder")
                return self._stop(outcome, StopReason.PLACEHOLDER)

        return CrawlState.LOAD_LAZY

    async def _extract(self, outcome: CrawlOutcome) -> CrawlState:
        page_num = self._page_num
        nodes = await self.stability.snapshot()
        cards = [card for card in self.extractor.extract_all(nodes) if card.is_usable]
        outcome.pages_visited += 1

        context = StoreContext(
            store_id=self.store.normalized_id,
            city=self.store.store_name or None,
            listing_url=self.page.url,
        )
        page_records, stats = self.normalizer.normalize_page(cards, context)

        accepted = []
        for record in page_records:
            kept = self.deduplicator.register(record)
            metrics.record_dedupe(self.store.store_id, kept)
            if kept:
                accepted.append(record)
        outcome.records.extend(accepted)

        self._page_keys = set()
        for card in cards:
            key = self._card_key(card)
            if key:
                self._page_keys.add(key)

        self.logger.info(
            f"Page {page_num}: cards={stats.cards_detected} with_any_price={stats.with_any_price} "
            f"with_both_prices={stats.with_both_prices} deals={stats.deals} accepted={len(accepted)}"
        )
        metrics.record_page(self.store.store_id, "ok" if cards else "empty", cards=len(cards))

        if stats.needs_price_debug or (page_num == 1 and stats.cards_detected and stats.deals == 0):
            reason = "no-prices" if stats.needs_price_debug else "no-deals"
            self.debug.log_card_samples(page_num, stats.samples)
            await self.debug.capture_page(
                self.page,
                page_num,
                reason,
                {"stats": {
                    "cards_detected": stats.cards_detected,
                    "with_any_price": stats.with_any_price,
                    "with_both_prices": stats.with_both_prices,
                    "deals": stats.deals,
                }},
            )

        if not cards:
            if page_num == 1:
                return self._stop(outcome, StopReason.EMPTY)
            self._empty_streak += 1
        else:
            self._empty_streak = 0
        return CrawlState.DECIDE

    async def _decide(self, outcome: CrawlOutcome) -> CrawlState:
        if self._empty_streak >= self.empty_page_limit:
            return self._stop(outcome, StopReason.EMPTY_STREAK)
        if self._page_keys and self._page_keys == self._previous_keys:
            return self._stop(outcome, StopReason.SIGNATURE_REPEAT)
        if self._page_num >= self.max_pages:
            return self._stop(outcome, StopReason.MAX_PAGES)

        self._previous_keys = self._page_keys
        next_page = self._page_num + 1
        if not await self.advance_strategy.advance(next_page):
            return self._stop(outcome, StopReason.NO_ADVANCE)
        self._page_num = next_page
        return self.advance_strategy.resume_state
