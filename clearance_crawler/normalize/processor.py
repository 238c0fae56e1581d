"""Normalize raw listing cards into discounted product records."""

import logging
import re
import unicodedata
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from clearance_crawler.config import settings
from clearance_crawler.ingest.base import RawCard
from clearance_crawler.ingest.card_extractor import first_product_number, parse_price
from clearance_crawler.normalize.product_key import (
    ProductKeys,
    keys_from_text,
    make_product_key,
    normalize_product_number,
)

logger = logging.getLogger(__name__)

CLEARANCE_URL_RE = re.compile(r"/liquidation\.html", re.IGNORECASE)
LIQUIDATION_BADGE_RE = re.compile(r"liquidation|clearance", re.IGNORECASE)
QUANTITY_RE = re.compile(r"(\d+)")

# Checked in this order: an out-of-stock phrase wins over a generic "stock" mention
OUT_OF_STOCK_RE = re.compile(
    r"(rupture|out of stock|not in stock|epuise|sold out|indisponible|non disponible|unavailable|not available)"
)
IN_STOCK_RE = re.compile(r"(en stock|in stock|available|disponible|quantite|reste)")

MAX_DEBUG_SAMPLES = 10


class Availability(str, Enum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    UNKNOWN = "unknown"


@dataclass
class StoreContext:
    """Per-store values stamped onto every record."""

    store_id: Optional[str]
    city: Optional[str] = None
    listing_url: Optional[str] = None

    @property
    def is_clearance_listing(self) -> bool:
        return bool(self.listing_url and CLEARANCE_URL_RE.search(self.listing_url))


@dataclass
class ProductRecord:
    """A card that cleared the discount threshold."""

    store_id: Optional[str]
    city: Optional[str]
    name: Optional[str]
    price: Optional[float]
    regular_price: float
    sale_price: float
    discount_percent: float
    product_number: Optional[str] = None
    product_key: Optional[str] = None
    availability: Availability = Availability.UNKNOWN
    stock_qty: Optional[int] = None
    badges: List[str] = field(default_factory=list)
    liquidation: bool = False
    url: Optional[str] = None
    image: Optional[str] = None
    sku: Optional[str] = None
    sku_formatted: Optional[str] = None
    product_id: Optional[str] = None
    product_number_raw: Optional[str] = None
    availability_text: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["availability"] = self.availability.value
        return data


@dataclass
class AvailabilityInfo:
    availability: Availability
    stock_qty: Optional[int]
    text: Optional[str]


@dataclass
class PageStats:
    """Per-page price coverage counters used for diagnostics."""

    cards_detected: int = 0
    with_any_price: int = 0
    with_both_prices: int = 0
    deals: int = 0
    samples: List[dict] = field(default_factory=list)

    @property
    def needs_price_debug(self) -> bool:
        return self.cards_detected > 0 and self.with_any_price == 0


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def compute_discount_percent(regular: Optional[float], sale: Optional[float]) -> Optional[float]:
    """Discount relative to the regular price, rounded to 2 decimals."""
    if regular is None or sale is None:
        return None
    if regular <= 0 or sale <= 0:
        return None
    return round((regular - sale) / regular * 100, 2)


def normalize_availability(text: Optional[str], stock_qty: Optional[int] = None,
                           max_qty: Optional[int] = None) -> AvailabilityInfo:
    """Map free availability text to a state and an optional stock count.

    An explicit quantity before any "#" wins; otherwise French/English
    keywords decide; otherwise the state is unknown.
    """
    max_qty = max_qty if max_qty is not None else settings.max_stock_qty
    cleaned = text.strip() if text else None

    enum_values = {member.value for member in Availability}
    if cleaned in enum_values and stock_qty is None:
        return AvailabilityInfo(Availability(cleaned), None, cleaned)

    if stock_qty is None and cleaned:
        prefix = cleaned.split("#")[0]
        quantities = [int(m) for m in QUANTITY_RE.findall(prefix) if int(m) < max_qty]
        if quantities:
            stock_qty = quantities[0]

    if stock_qty is not None:
        state = Availability.IN_STOCK if stock_qty > 0 else Availability.OUT_OF_STOCK
        return AvailabilityInfo(state, stock_qty, cleaned)

    state = Availability.UNKNOWN
    if cleaned:
        folded = strip_accents(cleaned).lower()
        if OUT_OF_STOCK_RE.search(folded):
            state = Availability.OUT_OF_STOCK
        elif IN_STOCK_RE.search(folded):
            state = Availability.IN_STOCK
    return AvailabilityInfo(state, None, cleaned)


class RecordNormalizer:
    """Turns RawCards into ProductRecords, dropping anything below the threshold."""

    def __init__(self, min_discount_percent: Optional[float] = None):
        self.min_discount_percent = (
            min_discount_percent
            if min_discount_percent is not None
            else settings.min_discount_percent
        )

    def derive_keys(self, card: RawCard) -> ProductKeys:
        """Product number and key, falling back to one embedded in availability text."""
        from_availability = keys_from_text(card.availability_text)
        raw = (
            card.product_number_raw
            or first_product_number(card.link, card.title)
            or from_availability.product_number_raw
        )
        product_number = normalize_product_number(raw) or from_availability.product_number
        product_key = make_product_key(raw) or from_availability.product_key
        return ProductKeys(
            product_number_raw=raw,
            product_number=product_number,
            product_key=product_key,
        )

    def normalize(self, card: RawCard, context: StoreContext) -> Optional[ProductRecord]:
        """
        Normalize one card.

        Returns:
            ProductRecord, or None when prices are missing or the discount is
            below the threshold. Dropping is silent.
        """
        sale = parse_price(card.sale_price_text)
        regular = parse_price(card.regular_price_text)
        discount = compute_discount_percent(regular, sale)
        if discount is None or discount < self.min_discount_percent:
            return None

        keys = self.derive_keys(card)
        availability = normalize_availability(card.availability_text)

        has_liquidation_badge = any(LIQUIDATION_BADGE_RE.search(b) for b in card.badges)
        liquidation = has_liquidation_badge or (context.is_clearance_listing and sale <= regular)

        return ProductRecord(
            store_id=context.store_id,
            city=context.city,
            name=card.title,
            price=sale,
            regular_price=regular,
            sale_price=sale,
            discount_percent=discount,
            product_number=keys.product_number,
            product_key=keys.product_key,
            availability=availability.availability,
            stock_qty=availability.stock_qty,
            badges=list(card.badges),
            liquidation=liquidation,
            url=card.link,
            image=card.image,
            sku=card.sku,
            sku_formatted=card.sku_formatted,
            product_id=card.product_id,
            product_number_raw=keys.product_number_raw,
            availability_text=availability.text,
        )

    def normalize_page(
        self, cards: List[RawCard], context: StoreContext
    ) -> Tuple[List[ProductRecord], PageStats]:
        """Normalize every card of one page and collect coverage stats."""
        stats = PageStats(cards_detected=len(cards))
        records: List[ProductRecord] = []

        for card in cards:
            sale = parse_price(card.sale_price_text)
            regular = parse_price(card.regular_price_text)
            if sale is not None or regular is not None:
                stats.with_any_price += 1
                if sale is not None and regular is not None:
                    stats.with_both_prices += 1

            if len(stats.samples) < MAX_DEBUG_SAMPLES:
                stats.samples.append({
                    "title": card.title,
                    "sale_raw": card.sale_price_text,
                    "was_raw": card.regular_price_text,
                    "sale": sale,
                    "regular": regular,
                    "discount": compute_discount_percent(regular, sale),
                    "url": card.link,
                })

            record = self.normalize(card, context)
            if record is None:
                continue
            stats.deals += 1
            records.append(record)

        return records, stats
