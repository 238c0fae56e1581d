"""Tests for the per-store pagination state machine."""

import pytest

from clearance_crawler.ingest.base import StoreTarget
from clearance_crawler.ingest.card_extractor import CardExtractor, SelectorConfig
from clearance_crawler.ingest.pagination import (
    ClickPageAdvance,
    CrawlState,
    PaginationController,
    StopReason,
    UrlPageAdvance,
)
from clearance_crawler.ingest.stability import StabilityDetector
from clearance_crawler.normalize.processor import RecordNormalizer

from conftest import FakeControl, FakePage, page_of_cards, product_card, skeleton_card

STORE = StoreTarget(store_id="0418", store_name="Rosemère")


def _controller(page, listing_url, max_pages=10, advance=None, stability=None):
    extractor = CardExtractor(SelectorConfig())
    return PaginationController(
        page,
        STORE,
        advance or UrlPageAdvance(listing_url),
        extractor=extractor,
        normalizer=RecordNormalizer(50.0),
        stability=stability,
        max_pages=max_pages,
        empty_page_limit=2,
    )


@pytest.mark.asyncio
async def test_max_pages_stops_endless_listing(listing_url):
    """An ever-growing listing stops exactly at the page cap."""
    page = FakePage(page_of_cards)
    outcome = await _controller(page, listing_url, max_pages=5).run()

    assert outcome.stop_reason is StopReason.MAX_PAGES
    assert outcome.pages_visited == 5
    assert len(outcome.records) == 25
    assert page.visited[-1].endswith("page=5")
    assert "page=" not in page.visited[0]


@pytest.mark.asyncio
async def test_repeated_page_signature_stops_after_second_page(listing_url):
    """Page 2 repeating page 1 ends the crawl with the deduplicated union."""
    def listing(page_num):
        return page_of_cards(1) if page_num <= 2 else page_of_cards(page_num)

    page = FakePage(listing)
    outcome = await _controller(page, listing_url).run()

    assert outcome.stop_reason is StopReason.SIGNATURE_REPEAT
    assert outcome.pages_visited == 2
    assert len(outcome.records) == 5
    assert outcome.duplicates_dropped == 5
    keys = [record.product_key for record in outcome.records]
    assert len(set(keys)) == 5


@pytest.mark.asyncio
async def test_records_carry_store_and_page_context(listing_url):
    page = FakePage(lambda n: page_of_cards(n, count=5))
    outcome = await _controller(page, listing_url, max_pages=1).run()

    record = outcome.records[0]
    assert record.store_id == "418"
    assert record.city == "Rosemère"
    assert record.discount_percent == 60.0
    assert record.liquidation is True
    assert record.url.startswith("https://www.canadiantire.ca/fr/p/")


@pytest.mark.asyncio
async def test_first_page_without_usable_cards_stops_empty(listing_url):
    page = FakePage(lambda n: [skeleton_card() for _ in range(3)])
    outcome = await _controller(page, listing_url).run()

    assert outcome.stop_reason is StopReason.EMPTY
    assert outcome.pages_visited == 1
    assert outcome.records == []


@pytest.mark.asyncio
async def test_page_without_cards_is_unstable(listing_url):
    page = FakePage(lambda n: [])
    outcome = await _controller(page, listing_url).run()

    assert outcome.stop_reason is StopReason.UNSTABLE
    assert outcome.pages_visited == 0


@pytest.mark.asyncio
async def test_empty_page_streak_stops(listing_url):
    def listing(page_num):
        if page_num == 1:
            return page_of_cards(1)
        return [skeleton_card() for _ in range(3)]

    page = FakePage(listing)
    outcome = await _controller(page, listing_url).run()

    assert outcome.stop_reason is StopReason.EMPTY_STREAK
    assert outcome.pages_visited == 3
    assert len(outcome.records) == 5


@pytest.mark.asyncio
async def test_persistent_placeholder_on_later_page(listing_url):
    """A lone skeleton card on page 2 triggers one reload, then stops the store."""
    def listing(page_num):
        return page_of_cards(1) if page_num == 1 else [skeleton_card()]

    page = FakePage(listing)
    outcome = await _controller(page, listing_url).run()

    assert outcome.stop_reason is StopReason.PLACEHOLDER
    assert page.reloads == 1
    assert len(outcome.records) == 5


@pytest.mark.asyncio
async def test_navigation_failure_stops_after_retries(listing_url):
    page = FakePage(page_of_cards, fail_goto=True)
    outcome = await _controller(page, listing_url).run()

    assert outcome.stop_reason is StopReason.NAV_FAILURE
    assert page.goto_calls == 3
    assert outcome.records == []


@pytest.mark.asyncio
async def test_cheap_cards_are_dropped(listing_url):
    cards = [
        product_card("111-1111-1", sale="60,00 $", regular="100,00 $"),
        product_card("222-2222-2", sale="10,00 $", regular="100,00 $"),
    ]
    page = FakePage(lambda n: cards)
    outcome = await _controller(page, listing_url, max_pages=1).run()

    assert [r.product_key for r in outcome.records] == ["ct:222-2222-2"]


@pytest.mark.asyncio
async def test_click_pagination_until_disabled(listing_url):
    """Click mode follows the "next" control until it is disabled."""
    last_page = 3
    next_button = FakeControl()

    def click_next(page):
        page.show_page(page.page_num + 1)
        if page.page_num == last_page:
            next_button.enabled = False

    next_button.on_click = click_next
    page = FakePage(
        page_of_cards,
        controls={"pagination": FakeControl(), "Suivant": next_button},
    )
    extractor = CardExtractor(SelectorConfig())
    stability = StabilityDetector(page, extractor)
    advance = ClickPageAdvance(listing_url, page, stability, extractor.selectors)

    outcome = await _controller(page, listing_url, advance=advance, stability=stability).run()

    assert outcome.stop_reason is StopReason.NO_ADVANCE
    assert outcome.pages_visited == 3
    assert len(outcome.records) == 15
    assert next_button.clicks == 2
    assert page.goto_calls == 1


@pytest.mark.asyncio
async def test_click_pagination_stuck_signature(listing_url):
    """A click that never changes the grid is retried, then ends the crawl."""
    stuck_button = FakeControl()
    page = FakePage(
        page_of_cards,
        controls={"pagination": FakeControl(), "Suivant": stuck_button},
    )
    extractor = CardExtractor(SelectorConfig())
    stability = StabilityDetector(page, extractor)
    advance = ClickPageAdvance(listing_url, page, stability, extractor.selectors, retries=3)

    outcome = await _controller(page, listing_url, advance=advance, stability=stability).run()

    assert outcome.stop_reason is StopReason.NO_ADVANCE
    assert outcome.pages_visited == 1
    assert stuck_button.clicks == 3


@pytest.mark.asyncio
async def test_click_pagination_missing_nav(listing_url):
    page = FakePage(page_of_cards)
    extractor = CardExtractor(SelectorConfig())
    stability = StabilityDetector(page, extractor)
    advance = ClickPageAdvance(listing_url, page, stability, extractor.selectors)

    assert await advance.click_next(2) == (False, "missing-nav")


def test_url_advance_builds_page_urls(listing_url):
    advance = UrlPageAdvance(listing_url + "&page=7")

    assert advance.url_for(1) == listing_url
    assert advance.url_for(3) == listing_url + "&page=3"


class CountingStability(StabilityDetector):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.stabilize_calls = 0

    async def wait_stable_with_retries(self, *args, **kwargs):
        self.stabilize_calls += 1
        return await super().wait_stable_with_retries(*args, **kwargs)


@pytest.mark.asyncio
async def test_click_pages_resume_at_lazy_loading(listing_url):
    """Pages reached by a click are already stable and go straight to lazy loading."""
    next_button = FakeControl()

    def click_next(page):
        page.show_page(page.page_num + 1)
        if page.page_num == 3:
            next_button.enabled = False

    next_button.on_click = click_next
    page = FakePage(
        page_of_cards,
        controls={"pagination": FakeControl(), "Suivant": next_button},
    )
    extractor = CardExtractor(SelectorConfig())
    stability = CountingStability(page, extractor)
    advance = ClickPageAdvance(listing_url, page, stability, extractor.selectors)

    outcome = await _controller(page, listing_url, advance=advance, stability=stability).run()

    assert ClickPageAdvance.resume_state is CrawlState.LOAD_LAZY
    assert outcome.pages_visited == 3
    assert stability.stabilize_calls == 1
