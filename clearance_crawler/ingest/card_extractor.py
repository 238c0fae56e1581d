"""Listing card extraction with ordered selector fallbacks.

Cards are snapshotted from the live page as outer HTML in a single
``evaluate_all`` call and parsed with selectolax, so extracting one page
never suspends the event loop halfway through.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from clearance_crawler.config import settings
from clearance_crawler.ingest.base import CardStats, PageSignature, RawCard

logger = logging.getLogger(__name__)

# Product number: "123-4567-8" (optionally "#"-prefixed) or a bare 8-digit run
FORMATTED_PRODUCT_NUMBER_RE = re.compile(r"#?\s*(\d{3}-\d{4}-\d)\b")
DIGITS_PRODUCT_NUMBER_RE = re.compile(r"\b(\d{8})\b")
SKU_FROM_HREF_RE = re.compile(r"-([0-9]{7})p\.html", re.IGNORECASE)
SKU_FORMATTED_RE = re.compile(r"promolisting-([0-9-]+)", re.IGNORECASE)

WAS_LABEL_RE = re.compile(r"(était|etait|was|regular)[^0-9]*([\d\s.,]+)", re.IGNORECASE)
NOW_LABEL_RE = re.compile(r"(maintenant|now|sale|price)[^0-9]*([\d\s.,]+)", re.IGNORECASE)

PRICE_NUMBER_RE = re.compile(r"\d[\d.,]*\d|\d")
THOUSANDS_ONLY_RE = re.compile(r"^\d{1,3},\d{3}$")

REAL_LINK_MARKERS = ("/p/", "/product/", "/produit/")
REAL_ID_ATTRIBUTES = ("data-sku", "data-product-sku", "data-product-id", "data-productid")

SNAPSHOT_SCRIPT = "nodes => nodes.map(n => n.outerHTML)"


@dataclass(frozen=True)
class FieldCandidate:
    """One (selector, accessor) pair in a field's fallback chain.

    An empty selector targets the card node itself. Accessors:
    ``text`` (text content), ``attr:<name>`` and ``parent-attr:<tag>:<name>``
    (attribute of the closest enclosing ``<tag>``).
    """

    selector: str
    accessor: str = "text"

    def evaluate(self, card: Node) -> Optional[str]:
        node = card if not self.selector else card.css_first(self.selector)
        if node is None:
            return None
        return _read(node, self.accessor)


def _candidates(*pairs) -> List[FieldCandidate]:
    out = []
    for pair in pairs:
        if isinstance(pair, str):
            out.append(FieldCandidate(pair))
        else:
            out.append(FieldCandidate(*pair))
    return out


@dataclass
class SelectorConfig:
    """Prioritized selector chains for listing pages.

    Defaults target the Canadian Tire listing markup. Any chain can be
    overridden from a JSON file whose keys match the attribute names; field
    chains are lists of ``[selector, accessor]`` pairs.
    """

    card: List[str] = field(default_factory=lambda: [
        "li[data-testid='product-grids']",
        "article:has(a[href*='/p/'])",
        ".nl-product-card",
    ])
    card_count: List[str] = field(default_factory=lambda: [
        "[data-testid*='product-card']",
        "article",
        ".product-card",
        "[class*='productCard']",
        "li[data-testid='product-grids']",
        ".nl-product-card",
    ])
    title: List[FieldCandidate] = field(default_factory=lambda: _candidates(
        "[id^='title__promolisting-']",
        ".nl-product-card__title",
        "[data-testid='product-title']",
        ("img", "attr:alt"),
    ))
    sale_price: List[FieldCandidate] = field(default_factory=lambda: _candidates(
        "span[data-testid='priceTotal']",
        "[data-testid='sale-price']",
        ".nl-price--total",
        ".nl-price__total",
        ".c-pricing__current",
        ".price__value",
    ))
    regular_price: List[FieldCandidate] = field(default_factory=lambda: _candidates(
        "[data-testid='regular-price']",
        ".nl-price__was s",
        ".nl-price--was",
        ".nl-price__was",
        "del",
        "s",
    ))
    price_container: List[str] = field(default_factory=lambda: [
        "[data-testid='price']",
        "[data-testid='pricing']",
        ".nl-price",
        ".nl-price__container",
        ".c-pricing",
        ".price",
    ])
    image: List[FieldCandidate] = field(default_factory=lambda: _candidates(
        (".nl-product-card__image-wrap img", "attr:src"),
        (".nl-product-card__image-wrap img", "attr:data-src"),
        ("img", "attr:src"),
        ("img", "attr:data-src"),
    ))
    availability: List[FieldCandidate] = field(default_factory=lambda: _candidates(
        ".nl-product-card__availability-message",
        "[data-testid='availability']",
    ))
    badges: List[str] = field(default_factory=lambda: [".nl-plp-badges"])
    primary_anchor: List[str] = field(default_factory=lambda: [
        "a.nl-product-card__no-button.prod-link",
    ])
    link: List[FieldCandidate] = field(default_factory=lambda: _candidates(
        ("a.nl-product-card__no-button.prod-link", "attr:href"),
        ("[id^='title__promolisting-']", "parent-attr:a:href"),
        (".nl-product-card__title", "parent-attr:a:href"),
        ("a[href*='/p/']", "attr:href"),
        ("a[href*='/product/']", "attr:href"),
        ("a[href*='/produit/']", "attr:href"),
    ))
    product_id: List[FieldCandidate] = field(default_factory=lambda: _candidates(
        ("", "attr:data-product-id"),
        ("", "attr:data-productid"),
    ))
    load_more: List[str] = field(default_factory=lambda: [
        "button:has-text('Charger plus')",
        "button:has-text('Load more')",
        "a:has-text('Charger plus')",
        "a:has-text('Load more')",
        "[data-testid*='load-more']",
        "[data-testid*='LoadMore']",
    ])
    pagination_nav: List[str] = field(default_factory=lambda: [
        "nav[aria-label*='pagination' i]",
        "[data-testid='pagination']",
        "[data-testid='pagination-container']",
    ])
    pagination_next: List[str] = field(default_factory=lambda: [
        "a[aria-label*='{page}']",
        "button:has-text('{page}')",
        "a:has-text('Suivant')",
        "button:has-text('Suivant')",
        "a:has-text('Next')",
        "button:has-text('Next')",
        "a[rel='next']",
        "button[rel='next']",
    ])
    price_ready: List[str] = field(default_factory=lambda: [
        "[data-testid='sale-price']",
        "[data-testid='regular-price']",
        "span[data-testid='priceTotal']",
        ".nl-price--total",
        ".nl-price__total",
        ".price__value",
        ".c-pricing__current",
    ])

    @property
    def card_selector(self) -> str:
        return ", ".join(self.card)

    @property
    def card_count_selector(self) -> str:
        return ", ".join(self.card_count)

    @classmethod
    def from_json(cls, path: str | Path) -> "SelectorConfig":
        """Load a config, overriding defaults with the keys present in the file."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        config = cls()
        for key, value in data.items():
            if not hasattr(config, key):
                logger.warning(f"Unknown selector config key ignored: {key}")
                continue
            current = getattr(config, key)
            if current and isinstance(current[0], FieldCandidate):
                value = [
                    FieldCandidate(item) if isinstance(item, str) else FieldCandidate(*item)
                    for item in value
                ]
            setattr(config, key, list(value))
        logger.info(f"Loaded selector overrides from {path}: {sorted(data)}")
        return config

    @classmethod
    def from_settings(cls) -> "SelectorConfig":
        if settings.selector_config_path:
            return cls.from_json(settings.selector_config_path)
        return cls()


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(value.replace("\u00a0", " ").split())
    return text or None


def _read(node: Node, accessor: str) -> Optional[str]:
    if accessor == "text":
        return _clean_text(node.text(deep=True))
    if accessor.startswith("attr:"):
        return _clean_text(node.attributes.get(accessor[5:]))
    if accessor.startswith("parent-attr:"):
        _, tag, name = accessor.split(":", 2)
        parent = node.parent
        while parent is not None and parent.tag != tag:
            parent = parent.parent
        if parent is None:
            return None
        return _clean_text(parent.attributes.get(name))
    raise ValueError(f"Unknown accessor: {accessor}")


def first_match(card: Node, chain: Iterable[FieldCandidate]) -> Optional[str]:
    """Evaluate a fallback chain; the first non-empty value wins."""
    for candidate in chain:
        value = candidate.evaluate(card)
        if value:
            return value
    return None


def parse_price(text) -> Optional[float]:
    """Parse a displayed price into a float.

    Strips currency symbols and (non-breaking) spaces and accepts a comma
    decimal separator. Returns None when nothing numeric is found.

    >>> parse_price("24,99 $")
    24.99
    """
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)
    compact = re.sub(r"\s", "", str(text).replace("\u00a0", " "))
    match = PRICE_NUMBER_RE.search(compact)
    if not match:
        return None
    number = match.group(0)
    if "," in number and "." in number:
        # "1,299.99" or "1.299,99": the right-most separator is the decimal one
        decimal_sep = "," if number.rfind(",") > number.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        number = number.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif number.count(",") > 1 or THOUSANDS_ONLY_RE.match(number):
        number = number.replace(",", "")
    else:
        number = number.replace(",", ".")
    try:
        return float(number)
    except ValueError:
        return None


def find_product_number(value) -> Optional[str]:
    """Return the first product-number-looking substring of ``value``."""
    if not value:
        return None
    text = str(value)
    formatted = FORMATTED_PRODUCT_NUMBER_RE.search(text)
    if formatted:
        return formatted.group(0).strip()
    digits = DIGITS_PRODUCT_NUMBER_RE.search(text)
    return digits.group(1) if digits else None


def first_product_number(*candidates) -> Optional[str]:
    for candidate in candidates:
        found = find_product_number(candidate)
        if found:
            return found
    return None


def absolutize(url: Optional[str], site_root: str) -> Optional[str]:
    if not url:
        return None
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("/"):
        return urljoin(site_root, url)
    return url


def is_real_card(card: Node) -> bool:
    """Real cards expose a product link or an identifier attribute."""
    for anchor in card.css("a[href]"):
        href = anchor.attributes.get("href") or ""
        if any(marker in href for marker in REAL_LINK_MARKERS):
            return True
    return any((card.attributes.get(name) or "").strip() for name in REAL_ID_ATTRIBUTES)


def parse_snapshot(outer_html: List[str]) -> List[Node]:
    """Parse outer-HTML strings into card root nodes."""
    if not outer_html:
        return []
    tree = HTMLParser(f"<div id='__cards'>{''.join(outer_html)}</div>")
    return [node for node in tree.css("#__cards > *")]


async def snapshot_cards(page, selector: str) -> List[Node]:
    """Grab every card's outer HTML in one round-trip."""
    try:
        outer_html = await page.locator(selector).evaluate_all(SNAPSHOT_SCRIPT)
    except Exception as e:
        logger.warning(f"Card snapshot failed: {type(e).__name__}: {e}")
        return []
    return parse_snapshot(outer_html or [])


def card_stats(cards: List[Node]) -> CardStats:
    return CardStats(
        cards_detected=len(cards),
        real_cards=sum(1 for card in cards if is_real_card(card)),
    )


class CardExtractor:
    """Pulls raw fields out of listing cards."""

    def __init__(self, selectors: Optional[SelectorConfig] = None, site_root: Optional[str] = None):
        self.selectors = selectors or SelectorConfig.from_settings()
        self.site_root = site_root or settings.site_root

    def extract(self, card: Node) -> RawCard:
        """Extract one card. Missing fields come back as None, never an error."""
        sel = self.selectors

        title = first_match(card, sel.title)
        pricing_root = self._pricing_root(card)
        sale_text = first_match(pricing_root, sel.sale_price) or first_match(card, sel.sale_price)
        regular_text = first_match(pricing_root, sel.regular_price) or first_match(card, sel.regular_price)

        if not regular_text or not sale_text:
            label = _read(pricing_root, "attr:aria-label") or _read(pricing_root, "attr:title")
            if label:
                if not regular_text:
                    regular_text = _label_amount(WAS_LABEL_RE, label)
                if not sale_text:
                    sale_text = _label_amount(NOW_LABEL_RE, label)
        if not regular_text:
            data_values = " ".join(
                value for key, value in pricing_root.attributes.items()
                if key.startswith("data-") and value
            )
            if data_values:
                regular_text = _label_amount(WAS_LABEL_RE, data_values)

        link = absolutize(first_match(card, sel.link), self.site_root)
        image = absolutize(first_match(card, sel.image), self.site_root)

        badges = []
        for badge_selector in sel.badges:
            for node in card.css(badge_selector):
                text = _read(node, "text")
                if text:
                    badges.append(text)

        sku, sku_formatted, aria_labelledby = self._anchor_identifiers(card)
        product_number_raw = first_product_number(
            aria_labelledby,
            sku_formatted,
            sku,
            link,
            title,
        )

        return RawCard(
            title=title,
            sale_price_text=sale_text,
            regular_price_text=regular_text,
            image=image,
            availability_text=first_match(card, sel.availability),
            link=link,
            badges=badges,
            product_id=first_match(card, sel.product_id),
            sku=sku,
            sku_formatted=sku_formatted,
            product_number_raw=product_number_raw,
        )

    def extract_all(self, cards: List[Node]) -> List[RawCard]:
        return [self.extract(card) for card in cards]

    def signature(self, cards: List[Node]) -> PageSignature:
        if not cards:
            return PageSignature()
        first = cards[0]
        title = first_match(first, self.selectors.title) or ""
        anchor = first.css_first("a[href]")
        href = (anchor.attributes.get("href") or "") if anchor is not None else ""
        return PageSignature(card_count=len(cards), first_title=title, first_link=href)

    def _pricing_root(self, card: Node) -> Node:
        for selector in self.selectors.price_container:
            node = card.css_first(selector)
            if node is not None:
                return node
        return card

    def _anchor_identifiers(self, card: Node):
        anchor = None
        for selector in self.selectors.primary_anchor:
            anchor = card.css_first(selector)
            if anchor is not None:
                break
        if anchor is None:
            return None, None, None

        href = anchor.attributes.get("href") or ""
        aria_labelledby = anchor.attributes.get("aria-labelledby") or ""
        sku_match = SKU_FROM_HREF_RE.search(href)
        formatted_match = SKU_FORMATTED_RE.search(aria_labelledby)
        return (
            sku_match.group(1) if sku_match else None,
            formatted_match.group(1) if formatted_match else None,
            aria_labelledby or None,
        )


def _label_amount(pattern: re.Pattern, label: str) -> Optional[str]:
    match = pattern.search(label)
    if not match:
        return None
    return _clean_text(match.group(2))
