"""Lazy-loaded listing content: infinite scroll and "load more" buttons."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from clearance_crawler.config import settings
from clearance_crawler.ingest.browser import is_disabled
from clearance_crawler.ingest.card_extractor import SelectorConfig
from clearance_crawler.ingest.navigator import wait_for_network_idle_or_timeout
from clearance_crawler.ingest.stability import StabilityDetector

logger = logging.getLogger(__name__)

SCROLL_BY_SCRIPT = "(px) => window.scrollBy(0, px)"
SCROLL_VIEWPORT_SCRIPT = "() => window.scrollBy(0, window.innerHeight)"

WARMUP_SCRIPT = """
async () => {
  const viewport = window.innerHeight || 800;
  const maxScroll = document.body.scrollHeight || viewport;
  if (maxScroll <= viewport * 1.15) {
    window.scrollTo(0, 0);
    return;
  }
  const step = Math.max(260, Math.floor(viewport * 1.3));
  for (let y = 0; y < maxScroll; y += step) {
    window.scrollTo(0, y);
    await new Promise((resolve) => setTimeout(resolve, 35));
  }
  window.scrollTo(0, 0);
}
"""

WARMUP_PRICE_RACE_MS = 650
CLICK_TIMEOUT_MS = 5000


@dataclass
class LoadMoreResult:
    clicks: int = 0
    final_count: int = 0


class LazyContentLoader:
    """Drives scrolling and "load more" clicks until the grid stops growing."""

    def __init__(self, page: Page, selectors: SelectorConfig, stability: StabilityDetector):
        self.page = page
        self.selectors = selectors
        self.stability = stability

    async def _count(self, selector: str) -> int:
        try:
            return await self.page.locator(selector).count()
        except Exception as e:
            logger.debug(f"Card count failed: {e}")
            return 0

    async def scroll_until_stable(
        self,
        stable_rounds: Optional[int] = None,
        max_seconds: Optional[float] = None,
    ) -> int:
        """
        Scroll until the card count stops growing.

        Returns:
            Final card count
        """
        stable_rounds = stable_rounds or settings.scroll_stable_rounds
        max_seconds = max_seconds or settings.scroll_max_seconds
        count_selector = self.selectors.card_count_selector

        start = time.monotonic()
        stable = 0
        last_count = await self._count(count_selector)
        logger.debug(f"Scroll start: cards={last_count}")

        while stable < stable_rounds:
            if time.monotonic() - start > max_seconds:
                logger.info(f"Scroll stopped after {max_seconds:.0f}s global cap")
                break

            await self.page.mouse.wheel(0, settings.scroll_wheel_px)
            await self.page.evaluate(SCROLL_BY_SCRIPT, settings.scroll_by_px)
            await self.page.wait_for_timeout(random.randint(600, 900))

            count = await self._count(count_selector)
            if count > last_count:
                last_count = count
                stable = 0
            else:
                stable += 1
            logger.debug(f"Scroll: cards={count} stable={stable}/{stable_rounds}")

        return last_count

    async def click_load_more_until_no_growth(
        self,
        max_clicks: Optional[int] = None,
        stable_rounds: Optional[int] = None,
        max_seconds: Optional[float] = None,
        per_click_wait_ms: Optional[int] = None,
    ) -> LoadMoreResult:
        """
        Click the "load more" control while it keeps adding cards.

        Stops when the control disappears or is disabled, after
        ``stable_rounds`` clicks in a row without growth, after ``max_clicks``
        or after ``max_seconds``.
        """
        max_clicks = max_clicks or settings.load_more_max_clicks
        stable_rounds = stable_rounds or settings.load_more_stable_rounds
        max_seconds = max_seconds or settings.load_more_max_seconds
        per_click_wait_ms = per_click_wait_ms or settings.load_more_wait_ms
        card_selector = self.selectors.card_selector
        button_selector = ", ".join(self.selectors.load_more)

        start = time.monotonic()
        previous_count = await self._count(card_selector)
        result = LoadMoreResult(clicks=0, final_count=previous_count)
        stable = 0

        for _ in range(max_clicks):
            if time.monotonic() - start > max_seconds:
                logger.info(f"Load more stopped after {max_seconds:.0f}s global cap")
                break

            button = self.page.locator(button_selector).first
            try:
                visible = await button.is_visible()
            except Exception:
                visible = False
            if not visible:
                logger.debug("Load more control absent")
                break
            if await is_disabled(button):
                logger.debug("Load more control disabled")
                break

            await self._click(button)
            result.clicks += 1

            await wait_for_network_idle_or_timeout(self.page, label="after load more")
            await self.stability.wait_real_cards(
                timeout_ms=settings.load_more_real_cards_timeout_ms
            )
            await self.page.wait_for_timeout(per_click_wait_ms)

            new_count = await self._count(card_selector)
            logger.info(
                f"Load more click {result.clicks}: {previous_count} -> {new_count} "
                f"(+{new_count - previous_count})"
            )
            if new_count <= previous_count:
                stable += 1
                if stable >= stable_rounds:
                    break
            else:
                stable = 0
                previous_count = new_count

        result.final_count = previous_count
        return result

    async def warmup(self):
        """Quick full-height scroll so prices and images render before extraction."""
        try:
            await self.page.evaluate(WARMUP_SCRIPT)
            await self.page.wait_for_timeout(40)
        except Exception as e:
            logger.debug(f"Warmup scroll failed: {e}")
            return
        try:
            await self.page.wait_for_selector(
                ", ".join(self.selectors.price_ready), timeout=WARMUP_PRICE_RACE_MS
            )
        except PlaywrightTimeoutError:
            logger.debug("No price element rendered during warmup")
        except Exception as e:
            logger.debug(f"Warmup price wait failed: {e}")

    async def load_all(self) -> int:
        """Scroll, then load more, then warm up. Returns the final card count."""
        await self.scroll_until_stable()
        result = await self.click_load_more_until_no_growth()
        await self.warmup()
        return result.final_count

    async def _click(self, locator):
        try:
            await locator.scroll_into_view_if_needed()
        except Exception as e:
            logger.debug(f"Scroll into view failed: {e}")
        await self.page.evaluate(SCROLL_VIEWPORT_SCRIPT)
        try:
            await locator.click(timeout=CLICK_TIMEOUT_MS)
        except Exception as e:
            logger.debug(f"Click failed ({e}), retrying with force")
            try:
                await locator.click(timeout=CLICK_TIMEOUT_MS, force=True)
            except Exception as e:
                logger.warning(f"Forced click failed: {e}")
