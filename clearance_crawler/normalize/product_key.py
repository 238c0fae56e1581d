"""Canonical product numbers and namespaced product keys."""

import re
from dataclasses import dataclass
from typing import Optional

KEY_NAMESPACE = "ct"
FORMAT_SEGMENTS = (3, 4, 1)

GROUPED_DIGITS_RE = re.compile(r"(\d{3})\D*(\d{4})\D*(\d)\b")
RAW_DIGITS_RE = re.compile(r"\b(\d{8})\b")


@dataclass(frozen=True)
class ProductKeys:
    """Product number in its raw, canonical and namespaced forms."""

    product_number_raw: Optional[str] = None
    product_number: Optional[str] = None
    product_key: Optional[str] = None


def extract_digits(value) -> Optional[str]:
    """Pull the 8 product-number digits out of free text."""
    if value is None:
        return None
    text = str(value)
    match = GROUPED_DIGITS_RE.search(text)
    if match:
        return "".join(match.groups())
    match = RAW_DIGITS_RE.search(text)
    return match.group(1) if match else None


def format_product_number(digits: Optional[str]) -> Optional[str]:
    if not digits or len(digits) != sum(FORMAT_SEGMENTS):
        return None
    a, b, _ = FORMAT_SEGMENTS
    return f"{digits[:a]}-{digits[a:a + b]}-{digits[a + b:]}"


def normalize_product_number(value) -> Optional[str]:
    """``"12345678"``, ``"1234567-8"`` and ``"#123-4567-8"`` all give ``"123-4567-8"``."""
    return format_product_number(extract_digits(value))


def make_product_key(value) -> Optional[str]:
    normalized = normalize_product_number(value)
    return f"{KEY_NAMESPACE}:{normalized}" if normalized else None


def keys_from_text(value) -> ProductKeys:
    """Derive all key forms from text such as an availability message."""
    digits = extract_digits(value)
    if not digits:
        return ProductKeys()
    product_number = format_product_number(digits)
    return ProductKeys(
        product_number_raw=digits,
        product_number=product_number,
        product_key=f"{KEY_NAMESPACE}:{product_number}" if product_number else None,
    )
