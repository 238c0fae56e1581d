"""Tests for listing card extraction."""

import json

import pytest

from clearance_crawler.ingest.card_extractor import (
    CardExtractor,
    FieldCandidate,
    SelectorConfig,
    card_stats,
    find_product_number,
    parse_price,
    parse_snapshot,
)

from conftest import product_card, skeleton_card


@pytest.mark.parametrize(
    "text, expected",
    [
        ("24,99 $", 24.99),
        ("$24.99", 24.99),
        ("\u00a049,99\u00a0$", 49.99),
        ("1 299,99 $", 1299.99),
        ("$1,299.99", 1299.99),
        ("1,299", 1299.0),
        ("Maintenant 5 $", 5.0),
        ("n/a", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_price(text, expected):
    assert parse_price(text) == expected


def test_find_product_number():
    assert find_product_number("Article #123-4567-8") == "#123-4567-8"
    assert find_product_number("/fr/p/scie-12345678.html") == "12345678"
    assert find_product_number("no digits here") is None


def test_extract_full_card():
    """All fields of a well-formed card are extracted."""
    html = product_card(
        "123-4567-8",
        title="Scie circulaire",
        badge="Liquidation",
    )
    card = parse_snapshot([html])[0]

    raw = CardExtractor(SelectorConfig(), site_root="https://www.canadiantire.ca").extract(card)

    assert raw.title == "Scie circulaire"
    assert raw.sale_price_text == "40,00 $"
    assert raw.regular_price_text == "100,00 $"
    assert raw.availability_text == "Plus que 3 en stock"
    assert raw.link == "https://www.canadiantire.ca/fr/p/scie-circulaire-1234567p.html"
    assert raw.badges == ["Liquidation"]
    assert raw.sku == "1234567"
    assert raw.sku_formatted == "123-4567-8"
    assert raw.product_number_raw == "123-4567-8"
    assert raw.is_usable


def test_extract_missing_fields_are_none():
    card = parse_snapshot([skeleton_card()])[0]

    raw = CardExtractor(SelectorConfig()).extract(card)

    assert raw.title is None
    assert raw.sale_price_text is None
    assert raw.regular_price_text is None
    assert raw.link is None
    assert raw.badges == []
    assert not raw.is_usable


def test_extract_prices_from_aria_label():
    """Prices only exposed through the pricing container's label are recovered."""
    html = (
        '<li data-testid="product-grids">'
        '<a href="/fr/p/marteau-7654321p.html"><span class="nl-product-card__title">Marteau</span></a>'
        '<div class="nl-price" aria-label="Était 80,00 $ maintenant 20,00 $"></div>'
        "</li>"
    )
    card = parse_snapshot([html])[0]

    raw = CardExtractor(SelectorConfig()).extract(card)

    assert parse_price(raw.regular_price_text) == 80.0
    assert parse_price(raw.sale_price_text) == 20.0


def test_custom_selector_chain_from_json(tmp_path):
    config_path = tmp_path / "selectors.json"
    config_path.write_text(json.dumps({
        "title": [[".name", "text"]],
        "sale_price": [".now"],
    }))

    selectors = SelectorConfig.from_json(config_path)
    card = parse_snapshot(['<div><b class="name">Pelle</b><i class="now">9,99 $</i></div>'])[0]
    raw = CardExtractor(selectors).extract(card)

    assert selectors.title == [FieldCandidate(".name", "text")]
    assert raw.title == "Pelle"
    assert raw.sale_price_text == "9,99 $"


def test_card_stats_counts_real_cards():
    nodes = parse_snapshot([product_card("123-4567-8"), skeleton_card(), skeleton_card()])

    stats = card_stats(nodes)

    assert stats.cards_detected == 3
    assert stats.real_cards == 1
    assert not stats.is_placeholder(2)


def test_signature_uses_first_card():
    nodes = parse_snapshot([product_card("123-4567-8", title="Scie"), product_card("222-2222-2")])

    signature = CardExtractor(SelectorConfig()).signature(nodes)

    assert signature.card_count == 2
    assert signature.first_title == "Scie"
    assert signature.first_link == "/fr/p/scie-1234567p.html"
