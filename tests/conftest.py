"""Shared fixtures: an in-memory stand-in for a Playwright page serving scripted listings."""

from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

LISTING_URL = "https://www.canadiantire.ca/fr/promotions/liquidation.html?store=418"


def product_card(
    number: str,
    title: str = "Article",
    sale: str = "40,00 $",
    regular: Optional[str] = "100,00 $",
    availability: str = "Plus que 3 en stock",
    badge: Optional[str] = None,
) -> str:
    """Listing card markup; ``number`` is a product number like ``123-4567-8``."""
    digits = number.replace("-", "")
    regular_html = f'<span class="nl-price__was"><s>{regular}</s></span>' if regular else ""
    badge_html = f'<div class="nl-plp-badges">{badge}</div>' if badge else ""
    return (
        '<li data-testid="product-grids" class="nl-product-card">'
        f'<a class="nl-product-card__no-button prod-link" href="/fr/p/{title.lower().replace(" ", "-")}-{digits[:7]}p.html"'
        f' aria-labelledby="title__promolisting-{number}">'
        f'<span id="title__promolisting-{number}" class="nl-product-card__title">{title}</span>'
        "</a>"
        f"{badge_html}"
        '<div class="nl-price">'
        f'<span data-testid="priceTotal">{sale}</span>'
        f"{regular_html}"
        "</div>"
        f'<div class="nl-product-card__availability-message">{availability}</div>'
        "</li>"
    )


def skeleton_card() -> str:
    return '<li data-testid="product-grids" class="nl-product-card"><div class="skeleton"></div></li>'


def page_of_cards(page_num: int, count: int = 5) -> List[str]:
    """``count`` distinct discounted cards unique to ``page_num``."""
    return [
        product_card(f"{page_num:03d}-{index:04d}-1", title=f"Produit {page_num} {index}")
        for index in range(count)
    ]


class FakeResponse:
    def __init__(self, status: int = 200):
        self.status = status


class FakeMouse:
    def __init__(self):
        self.wheel_calls = 0

    async def wheel(self, delta_x, delta_y):
        self.wheel_calls += 1


class FakeControl:
    """A clickable element such as a pagination button."""

    def __init__(
        self,
        visible: bool = True,
        enabled: bool = True,
        attributes: Optional[Dict[str, str]] = None,
        text: str = "",
        on_click: Optional[Callable[["FakePage"], None]] = None,
    ):
        self.visible = visible
        self.enabled = enabled
        self.attributes = attributes or {}
        self.text = text
        self.on_click = on_click
        self.clicks = 0


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str, control: Optional[FakeControl]):
        self.page = page
        self.selector = selector
        self.control = control

    @property
    def first(self) -> "FakeLocator":
        return self

    def nth(self, index: int) -> "FakeLocator":
        return self

    def locator(self, selector: str) -> "FakeLocator":
        return self.page.locator(selector)

    async def count(self) -> int:
        if self.control is not None:
            return 1 if self.control.visible else 0
        return len(self.page.cards)

    async def is_visible(self) -> bool:
        return self.control is not None and self.control.visible

    async def is_enabled(self) -> bool:
        return self.control is None or self.control.enabled

    async def get_attribute(self, name: str) -> Optional[str]:
        if self.control is None:
            return None
        return self.control.attributes.get(name)

    async def inner_text(self) -> str:
        return self.control.text if self.control is not None else ""

    async def scroll_into_view_if_needed(self):
        return None

    async def click(self, timeout: Optional[int] = None, force: bool = False):
        if self.control is None:
            raise PlaywrightTimeoutError(f"Nothing to click for {self.selector}")
        self.control.clicks += 1
        if self.control.on_click is not None:
            self.control.on_click(self.page)

    async def evaluate_all(self, script: str):
        return list(self.page.cards)


class FakePage:
    """
    Serves ``listing(page_num) -> [card html]`` for URLs carrying ``page=N``.

    Controls are matched by substring: a locator whose selector contains a
    control's key resolves to that control; anything else addresses the cards.
    """

    def __init__(
        self,
        listing: Callable[[int], List[str]],
        controls: Optional[Dict[str, FakeControl]] = None,
        fail_goto: bool = False,
    ):
        self.listing = listing
        self.controls = controls or {}
        self.fail_goto = fail_goto
        self.mouse = FakeMouse()
        self.url = "about:blank"
        self.page_num = 0
        self.cards: List[str] = []
        self.visited: List[str] = []
        self.reloads = 0
        self.goto_calls = 0
        self.waited_ms = 0

    def show_page(self, page_num: int):
        self.page_num = page_num
        self.cards = list(self.listing(page_num))

    def locator(self, selector: str) -> FakeLocator:
        for key, control in self.controls.items():
            if key in selector:
                return FakeLocator(self, selector, control)
        return FakeLocator(self, selector, None)

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[int] = None):
        self.goto_calls += 1
        if self.fail_goto:
            raise PlaywrightTimeoutError(f"Timeout navigating to {url}")
        self.url = url
        self.visited.append(url)
        values = parse_qs(urlsplit(url).query).get("page")
        self.show_page(int(values[0]) if values else 1)
        return FakeResponse(200)

    async def reload(self, wait_until: Optional[str] = None):
        self.reloads += 1
        self.show_page(self.page_num)

    async def wait_for_selector(self, selector: str, state: Optional[str] = None, timeout: Optional[int] = None):
        if not self.cards:
            raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[int] = None):
        return None

    async def wait_for_timeout(self, timeout: float):
        self.waited_ms += timeout

    async def evaluate(self, script: str, arg=None):
        return None

    async def content(self) -> str:
        return "<html><body>" + "".join(self.cards) + "</body></html>"

    async def screenshot(self, path: Optional[str] = None, full_page: bool = False):
        return b""


@pytest.fixture
def listing_url() -> str:
    return LISTING_URL
