"""Playwright browser sessions and overlay dismissal."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from clearance_crawler.config import settings

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
]

# Feedback-survey scripts only ever add overlays
BLOCKED_ROUTES = [
    "**/*medallia*",
    "**/resources.digital-cloud.medallia.ca/**",
]

SURVEY_CLOSE_SELECTORS = [
    "#kampyleInviteContainer button",
    "#MDigitalInvitationWrapper button",
    "button[aria-label*='close' i]",
    "button[aria-label*='fermer' i]",
    "button[aria-label*='feedback' i]",
]

SURVEY_NODE_IDS = ["MDigitalInvitationWrapper", "kampyleInviteContainer", "kampyleInvite"]

REMOVE_SURVEY_SCRIPT = """
(ids) => {
  for (const id of ids) {
    const el = document.getElementById(id);
    if (el) el.remove();
  }
}
"""

COOKIE_SELECTORS = [
    "button:has-text('Accepter')",
    "button:has-text('Accepter tout')",
    "button:has-text('Tout accepter')",
    "button:has-text('Accept')",
    "button:has-text('Accept all')",
    "button[aria-label*='accepter' i]",
    "button[aria-label*='accept' i]",
]

STORE_MODAL_SELECTORS = [
    "button[aria-label='Fermer']",
    "button[aria-label='Close']",
    "button:has-text('Plus tard')",
    "button:has-text('Later')",
    "button:has-text('Continuer')",
    "button:has-text('Continue')",
]


async def safe_visible(locator) -> bool:
    try:
        return await locator.is_visible()
    except Exception:
        return False


async def is_disabled(locator) -> bool:
    """True when the control is disabled by attribute or by Playwright's own check."""
    try:
        disabled_attr = await locator.get_attribute("disabled")
        aria_disabled = await locator.get_attribute("aria-disabled")
    except Exception:
        disabled_attr, aria_disabled = None, None
    try:
        enabled = await locator.is_enabled()
    except Exception:
        enabled = True
    return disabled_attr is not None or aria_disabled in ("true", "disabled") or not enabled


async def _click_first_visible(page: Page, selectors, pause_ms: int = 0, stop_after_first: bool = True) -> int:
    clicked = 0
    for selector in selectors:
        try:
            locator = page.locator(selector).first
            if not await locator.is_visible():
                continue
            await locator.click(timeout=2000)
            clicked += 1
            if pause_ms:
                await page.wait_for_timeout(pause_ms)
            if stop_after_first:
                break
        except Exception as e:
            logger.debug(f"Overlay selector {selector} not clickable: {e}")
    return clicked


async def dismiss_survey(page: Page):
    try:
        await _click_first_visible(page, SURVEY_CLOSE_SELECTORS)
        await page.evaluate(REMOVE_SURVEY_SCRIPT, SURVEY_NODE_IDS)
    except Exception as e:
        logger.debug(f"Survey overlay dismissal failed: {e}")


async def close_cookie_banner(page: Page):
    await _click_first_visible(page, COOKIE_SELECTORS, pause_ms=300)


async def close_store_modal(page: Page):
    await _click_first_visible(page, STORE_MODAL_SELECTORS, pause_ms=500, stop_after_first=False)


async def close_interfering_popups(page: Page):
    """Dismiss survey overlay, cookie banner and store modal. Never raises."""
    results = await asyncio.gather(
        dismiss_survey(page),
        close_cookie_banner(page),
        close_store_modal(page),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, Exception):
            logger.debug(f"Popup dismissal error: {result}")


class BrowserSessionFactory:
    """Launches one Chromium session per store run."""

    def __init__(self, headless: Optional[bool] = None, locale: Optional[str] = None):
        self.headless = settings.headless if headless is None else headless
        self.locale = locale or settings.locale

    @asynccontextmanager
    async def open(self) -> AsyncIterator[Page]:
        """Yield a fresh page; browser, context and driver are closed on exit."""
        playwright = await async_playwright().start()
        browser: Optional[Browser] = None
        context: Optional[BrowserContext] = None
        try:
            browser = await playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
            context = await browser.new_context(locale=self.locale)
            page = await context.new_page()
            page.set_default_navigation_timeout(settings.nav_timeout_ms)
            for pattern in BLOCKED_ROUTES:
                await page.route(pattern, lambda route: route.abort())
            yield page
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    logger.error(f"Error closing browser context: {e}")
            if browser is not None:
                try:
                    await browser.close()
                except Exception as e:
                    logger.error(f"Error closing browser: {e}")
            await playwright.stop()
