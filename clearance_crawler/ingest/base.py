"""Shared listing-crawl types and the crawler error taxonomy."""

from dataclasses import dataclass, field
from typing import Optional


class CrawlerError(Exception):
    """Base class for crawler errors."""


class NavigationError(CrawlerError):
    """Navigation kept failing after all retries."""

    def __init__(self, url: str, attempts: int, reason: str):
        self.url = url
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Failed to load {url} after {attempts} attempt(s): {reason}")


class StoreRunFailure(CrawlerError):
    """A store run raised and was abandoned."""

    def __init__(self, store_id: str, cause: BaseException):
        self.store_id = store_id
        self.cause = cause
        super().__init__(f"Store {store_id} failed: {type(cause).__name__}: {cause}")


class GlobalFatalError(CrawlerError):
    """No store list and no fallback target: nothing can run."""


@dataclass(frozen=True)
class StoreTarget:
    """One store whose listing is crawled."""

    store_id: str
    store_name: str = ""

    @property
    def normalized_id(self) -> str:
        """Store id without leading zeros, as the site expects it in URLs."""
        return normalize_store_id(self.store_id)


def normalize_store_id(value) -> str:
    if value is None:
        return ""
    return str(value).strip().lstrip("0") or str(value).strip()


@dataclass
class RawCard:
    """Raw fields pulled from one listing card. Any field may be missing."""

    title: Optional[str] = None
    sale_price_text: Optional[str] = None
    regular_price_text: Optional[str] = None
    image: Optional[str] = None
    availability_text: Optional[str] = None
    link: Optional[str] = None
    badges: list[str] = field(default_factory=list)
    product_id: Optional[str] = None
    sku: Optional[str] = None
    sku_formatted: Optional[str] = None
    product_number_raw: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        """A card with neither title nor link carries nothing we can emit."""
        return bool(self.title or self.link)


@dataclass
class ResponseMeta:
    """Outcome of a successful navigation."""

    requested_url: str
    final_url: str
    status: Optional[int] = None
    page_param_ok: bool = True
    attempts: int = 1


@dataclass(frozen=True)
class PageSignature:
    """Cheap fingerprint used to detect unchanged listing content."""

    card_count: int = 0
    first_title: str = ""
    first_link: str = ""

    def __str__(self) -> str:
        return f"{self.card_count}|{self.first_title}|{self.first_link}"


@dataclass(frozen=True)
class CardStats:
    """Container count versus cards exposing a real product link or sku."""

    cards_detected: int = 0
    real_cards: int = 0

    def is_placeholder(self, max_cards: int) -> bool:
        return self.cards_detected <= max_cards and self.real_cards == 0
