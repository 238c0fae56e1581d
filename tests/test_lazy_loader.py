"""Tests for infinite scroll and "load more" clicking."""

import pytest

from clearance_crawler.ingest.card_extractor import CardExtractor, SelectorConfig
from clearance_crawler.ingest.lazy_loader import LazyContentLoader
from clearance_crawler.ingest.stability import StabilityDetector

from conftest import FakeControl, FakeMouse, FakePage, page_of_cards


async def _loader(listing_url, controls=None):
    page = FakePage(page_of_cards, controls=controls)
    await page.goto(listing_url)
    extractor = CardExtractor(SelectorConfig())
    stability = StabilityDetector(page, extractor)
    return page, LazyContentLoader(page, extractor.selectors, stability)


def _appending_button(hide_after=None):
    button = FakeControl(text="Charger plus")

    def add_batch(page):
        page.cards.extend(page_of_cards(100 + button.clicks))
        if hide_after is not None and button.clicks >= hide_after:
            button.visible = False

    button.on_click = add_batch
    return button


class GrowingMouse(FakeMouse):
    """Each wheel appends a batch of cards until ``batches`` run out."""

    def __init__(self, page, batches):
        super().__init__()
        self.page = page
        self.batches = batches

    async def wheel(self, delta_x, delta_y):
        await super().wheel(delta_x, delta_y)
        if self.batches:
            self.batches -= 1
            self.page.cards.extend(page_of_cards(200 + self.wheel_calls))


@pytest.mark.asyncio
async def test_load_more_until_control_hides(listing_url):
    """Every batch revealed by the control ends up in the grid."""
    button = _appending_button(hide_after=3)
    page, loader = await _loader(listing_url, {"Charger plus": button})

    result = await loader.click_load_more_until_no_growth()

    assert button.clicks == 3
    assert result.clicks == 3
    assert result.final_count == 20
    assert len(page.cards) == 20


@pytest.mark.asyncio
async def test_load_more_respects_click_cap(listing_url):
    button = _appending_button()
    page, loader = await _loader(listing_url, {"Charger plus": button})

    result = await loader.click_load_more_until_no_growth(max_clicks=4)

    assert button.clicks == 4
    assert result.final_count == 25


@pytest.mark.asyncio
async def test_load_more_stops_without_growth(listing_url):
    button = FakeControl(text="Charger plus")
    page, loader = await _loader(listing_url, {"Charger plus": button})

    result = await loader.click_load_more_until_no_growth(stable_rounds=2)

    assert button.clicks == 2
    assert result.final_count == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "button",
    [
        FakeControl(enabled=False),
        FakeControl(attributes={"aria-disabled": "true"}),
        FakeControl(attributes={"disabled": ""}),
    ],
)
async def test_disabled_load_more_is_not_clicked(listing_url, button):
    page, loader = await _loader(listing_url, {"Charger plus": button})

    result = await loader.click_load_more_until_no_growth()

    assert button.clicks == 0
    assert result.clicks == 0
    assert result.final_count == 5


@pytest.mark.asyncio
async def test_absent_load_more_is_a_noop(listing_url):
    page, loader = await _loader(listing_url)

    result = await loader.click_load_more_until_no_growth()

    assert result.clicks == 0
    assert result.final_count == 5


@pytest.mark.asyncio
async def test_scroll_until_count_stops_growing(listing_url):
    page, loader = await _loader(listing_url)
    page.mouse = GrowingMouse(page, batches=2)

    count = await loader.scroll_until_stable(stable_rounds=2)

    assert count == 15
    assert page.mouse.wheel_calls == 4


@pytest.mark.asyncio
async def test_load_all_scrolls_then_clicks(listing_url):
    button = _appending_button(hide_after=1)
    page, loader = await _loader(listing_url, {"Charger plus": button})
    page.mouse = GrowingMouse(page, batches=1)

    count = await loader.load_all()

    assert count == 15
    assert len(page.cards) == 15
