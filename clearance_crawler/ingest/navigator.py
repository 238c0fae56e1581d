"""Listing page navigation with retries."""

import logging
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from clearance_crawler import metrics
from clearance_crawler.config import settings
from clearance_crawler.ingest.base import NavigationError, ResponseMeta
from clearance_crawler.ingest.browser import close_interfering_popups

logger = logging.getLogger(__name__)

PAGE_PARAM = "page"


def has_page_param(url: Optional[str], page_num: int) -> bool:
    """True when ``url`` carries ``page=<page_num>``; page 1 may omit it."""
    if not url:
        return False
    try:
        values = parse_qs(urlsplit(url).query).get(PAGE_PARAM)
    except ValueError:
        return False
    if not values:
        return page_num == 1
    return values[0] == str(page_num)


def with_page_param(url: str, page_num: int) -> str:
    """Return ``url`` with its ``page`` query parameter set, keeping the others."""
    parts = urlsplit(url)
    query = [
        (key, value)
        for key, values in parse_qs(parts.query, keep_blank_values=True).items()
        if key != PAGE_PARAM
        for value in values
    ]
    if page_num > 1:
        query.append((PAGE_PARAM, str(page_num)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


async def wait_for_network_idle_or_timeout(page: Page, timeout_ms: Optional[int] = None, label: str = ""):
    """Wait for network idle, giving up quietly after ``timeout_ms``."""
    timeout_ms = timeout_ms if timeout_ms is not None else settings.network_idle_race_ms
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except PlaywrightTimeoutError:
        logger.debug(f"Network not idle after {timeout_ms}ms{f' ({label})' if label else ''}")
    except Exception as e:
        logger.debug(f"Network idle wait failed{f' ({label})' if label else ''}: {e}")


class PageNavigator:
    """Loads listing URLs, retrying transient failures with a fixed backoff."""

    def __init__(
        self,
        page: Page,
        attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.page = page
        self.attempts = attempts or settings.nav_attempts
        self.backoff_ms = settings.nav_backoff_ms if backoff_ms is None else backoff_ms
        self.timeout_ms = timeout_ms or settings.nav_timeout_ms

    async def navigate(self, url: str, page_num: int = 1) -> ResponseMeta:
        """
        Navigate to ``url``.

        Args:
            url: Listing URL to load
            page_num: Page number the URL is expected to show

        Returns:
            ResponseMeta for the successful attempt

        Raises:
            NavigationError: If every attempt failed
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.attempts + 1):
            try:
                response = await self.page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=self.timeout_ms,
                )
                await wait_for_network_idle_or_timeout(self.page, label=f"after goto page {page_num}")
                await close_interfering_popups(self.page)

                final_url = self.page.url
                meta = ResponseMeta(
                    requested_url=url,
                    final_url=final_url,
                    status=response.status if response is not None else None,
                    page_param_ok=has_page_param(final_url, page_num),
                    attempts=attempt,
                )
                if not meta.page_param_ok:
                    logger.warning(
                        f"Page {page_num} parameter missing from final URL {final_url} "
                        f"(requested {url})"
                    )
                return meta

            except Exception as e:
                last_error = e
                metrics.navigation_retries_total.inc()
                if attempt < self.attempts:
                    logger.warning(
                        f"Navigation {attempt}/{self.attempts} to {url} failed, "
                        f"retrying in {self.backoff_ms}ms: {type(e).__name__}: {e}"
                    )
                    await self.page.wait_for_timeout(self.backoff_ms)
                else:
                    logger.error(f"All {self.attempts} navigation attempts to {url} failed: {e}")

        raise NavigationError(url, self.attempts, str(last_error))
