"""Product grid stability and placeholder detection."""

import logging
import math
import time
from typing import List, Optional

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError
from selectolax.parser import Node

from clearance_crawler import metrics
from clearance_crawler.config import settings
from clearance_crawler.ingest.base import CardStats, PageSignature
from clearance_crawler.ingest.browser import close_interfering_popups
from clearance_crawler.ingest.card_extractor import CardExtractor, card_stats, snapshot_cards
from clearance_crawler.ingest.debug_bundle import DebugBundleWriter
from clearance_crawler.ingest.navigator import wait_for_network_idle_or_timeout

logger = logging.getLogger(__name__)

SETTLE_MS = 300


class StabilityDetector:
    """Decides when a listing page has rendered real product cards."""

    def __init__(
        self,
        page: Page,
        extractor: CardExtractor,
        debug: Optional[DebugBundleWriter] = None,
    ):
        self.page = page
        self.extractor = extractor
        self.selectors = extractor.selectors
        self.debug = debug or DebugBundleWriter()

    async def snapshot(self) -> List[Node]:
        return await snapshot_cards(self.page, self.selectors.card_selector)

    async def card_stats(self) -> CardStats:
        return card_stats(await self.snapshot())

    async def signature(self) -> PageSignature:
        return self.extractor.signature(await self.snapshot())

    async def wait_stable(self, timeout_ms: Optional[int] = None) -> bool:
        """Wait for at least one card container to attach. False on timeout."""
        timeout_ms = timeout_ms or settings.stable_timeout_ms
        try:
            await self.page.wait_for_selector(
                self.selectors.card_selector, state="attached", timeout=timeout_ms
            )
        except PlaywrightTimeoutError:
            logger.warning(f"Product cards not attached after {timeout_ms}ms")
            return False
        except Exception as e:
            logger.warning(f"Waiting for product cards failed: {type(e).__name__}: {e}")
            return False
        await self.page.wait_for_timeout(SETTLE_MS)
        return True

    async def wait_stable_with_retries(
        self,
        page_num: int = 1,
        retries: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        response_status: Optional[int] = None,
    ) -> bool:
        """
        Run wait_stable up to ``retries + 1`` times.

        Pauses and dismisses overlays between tries; a final failure
        captures a ``wait-products-failed`` debug bundle.
        """
        retries = settings.stable_retries if retries is None else retries
        total = retries + 1

        for attempt in range(1, total + 1):
            if await self.wait_stable(timeout_ms):
                return True
            logger.warning(f"Page {page_num}: products not stable (attempt {attempt}/{total})")
            if attempt < total:
                await self.page.wait_for_timeout(settings.stable_retry_wait_ms)
                await close_interfering_popups(self.page)

        await self.debug.capture_page(
            self.page,
            page_num,
            "wait-products-failed",
            {"response_status": response_status},
        )
        return False

    async def wait_real_cards(
        self,
        timeout_ms: Optional[int] = None,
        min_real_cards: Optional[int] = None,
    ) -> bool:
        """
        Poll until enough real cards are present.

        Placeholder markup (very few containers, none real) triggers one
        reload; if it persists the wait gives up.

        Returns:
            True once ``min_real_cards`` real cards are present; False on
            persistent placeholder or timeout
        """
        timeout_ms = timeout_ms or settings.real_cards_timeout_ms
        min_real_cards = settings.min_real_cards if min_real_cards is None else min_real_cards
        poll_ms = settings.real_cards_poll_ms
        max_polls = max(1, math.ceil(timeout_ms / poll_ms))
        deadline = time.monotonic() + timeout_ms / 1000
        reloads = 0

        for _ in range(max_polls):
            if time.monotonic() > deadline:
                break

            stats = await self.card_stats()
            if stats.real_cards >= min_real_cards:
                return True

            if stats.is_placeholder(settings.placeholder_max_cards):
                if reloads < settings.placeholder_reload_cap:
                    reloads += 1
                    metrics.placeholder_reloads_total.inc()
                    logger.warning(
                        f"Placeholder cards detected (cards={stats.cards_detected}, real=0), reloading"
                    )
                    await self._reload()
                    continue
                logger.warning(
                    f"Placeholder cards persist after {reloads} reload(s) "
                    f"(cards={stats.cards_detected})"
                )
                return False

            await self.page.wait_for_timeout(poll_ms)

        logger.warning(f"Fewer than {min_real_cards} real cards after {timeout_ms}ms")
        return False

    async def wait_for_signature_change(
        self,
        previous: PageSignature,
        timeout_ms: Optional[int] = None,
    ) -> bool:
        """True once the grid shows a non-empty signature different from ``previous``."""
        timeout_ms = timeout_ms or settings.signature_change_timeout_ms
        poll_ms = settings.real_cards_poll_ms
        max_polls = max(1, math.ceil(timeout_ms / poll_ms))
        deadline = time.monotonic() + timeout_ms / 1000

        for _ in range(max_polls):
            current = await self.signature()
            if current.card_count and current != previous:
                return True
            if time.monotonic() > deadline:
                break
            await self.page.wait_for_timeout(poll_ms)
        return False

    async def _reload(self):
        try:
            await self.page.reload(wait_until="domcontentloaded")
        except Exception as e:
            logger.warning(f"Reload failed: {type(e).__name__}: {e}")
        await wait_for_network_idle_or_timeout(self.page, label="after placeholder reload")
