from __future__ import annotations

import pytest

from receipt_ledger.core.currencies import (
    KNOWN_CURRENCIES,
    currency_from_content,
    infer_from_field,
    normalize_currency,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("$", "USD"),
        ("€", "EUR"),
        ("£", "GBP"),
        ("¥", "JPY"),
        ("₹", "INR"),
        ("Rs", "INR"),
        ("rupees", "INR"),
        ("Dollars", "USD"),
        ("  euros ", "EUR"),
        ("C$", "CAD"),
        ("yen", "JPY"),
    ],
)
def test_normalize_maps_symbols_and_words(raw, expected):
    assert normalize_currency(raw) == expected


def test_normalize_accepts_known_codes_case_insensitively():
    assert normalize_currency("inr") == "INR"
    assert normalize_currency(" chf ") == "CHF"
    for code in KNOWN_CURRENCIES:
        assert normalize_currency(code) == code


@pytest.mark.parametrize("raw", ["XYZ", "ABC", "QQQ", "zzz"])
def test_normalize_defaults_unknown_codes_to_usd(raw):
    assert normalize_currency(raw) == "USD"


@pytest.mark.parametrize("raw", [None, "", "   ", "bitcoin", "12.50", "USDX"])
def test_normalize_is_total(raw):
    assert normalize_currency(raw) == "USD"


def test_content_scan_prefers_longest_symbol():
    assert currency_from_content("C$ 12.00") == "CAD"
    assert currency_from_content("HK$88") == "HKD"
    assert currency_from_content("$12.00") == "USD"


def test_content_scan_finds_iso_code_token():
    assert currency_from_content("Total 1,200.00 INR") == "INR"
    assert currency_from_content("TOTAL 12.00") is None
    assert currency_from_content("12.00 XYZ") is None


def test_infer_from_field_order():
    # A recognised provider code wins over the raw text.
    assert infer_from_field("eur", "$12.00") == "EUR"
    # Unrecognised provider code falls through to the text scan.
    assert infer_from_field("XX", "£4.20") == "GBP"
    assert infer_from_field(None, "4.20", default="SGD") == "SGD"
    assert infer_from_field(None, None) is None


def test_content_scan_accepts_lower_case_codes():
    assert currency_from_content("120.00 inr") == "INR"
    assert infer_from_field(None, "Total: 45.00 eur", default="USD") == "EUR"
    # An upper-case code wins over a lower-case word that happens to be a code.
    assert currency_from_content("try 45 EUR") == "EUR"
