"""
Currency inference for OCR output, speech extraction and manual entry.

All tables are module-level constants built once at import and never mutated.
"""

from __future__ import annotations

import re

DEFAULT_CURRENCY = "USD"

KNOWN_CURRENCIES: frozenset[str] = frozenset(
    {
        "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY", "SEK", "NZD",
        "MXN", "SGD", "HKD", "NOK", "TRY", "ZAR", "BRL", "INR", "KRW", "PLN",
        "DKK", "CZK", "HUF", "ILS", "CLP", "PHP", "AED", "COP", "SAR", "MYR",
        "RON", "THB", "BGN", "HRK", "RUB", "ISK", "IDR", "UAH", "NGN", "CRC",
        "PKR",
    }
)  # fmt: skip

_ALIASES: dict[str, str] = {
    "$": "USD",
    "us$": "USD",
    "dollar": "USD",
    "dollars": "USD",
    "us dollar": "USD",
    "us dollars": "USD",
    "¢": "USD",
    "€": "EUR",
    "euro": "EUR",
    "euros": "EUR",
    "£": "GBP",
    "pound": "GBP",
    "pounds": "GBP",
    "british pound": "GBP",
    "¥": "JPY",
    "yen": "JPY",
    "japanese yen": "JPY",
    "₹": "INR",
    "rs": "INR",
    "rs.": "INR",
    "rupee": "INR",
    "rupees": "INR",
    "indian rupee": "INR",
    "c$": "CAD",
    "ca$": "CAD",
    "canadian dollar": "CAD",
    "canadian dollars": "CAD",
    "a$": "AUD",
    "australian dollar": "AUD",
    "australian dollars": "AUD",
    "swiss franc": "CHF",
    "swiss francs": "CHF",
    "yuan": "CNY",
    "chinese yuan": "CNY",
    "rmb": "CNY",
    "₩": "KRW",
    "won": "KRW",
    "korean won": "KRW",
    "₽": "RUB",
    "₦": "NGN",
    "₡": "CRC",
    "₨": "PKR",
}

# Longest symbols first so "C$" wins over "$".
_CONTENT_SYMBOLS: tuple[tuple[str, str], ...] = (
    ("US$", "USD"),
    ("CA$", "CAD"),
    ("NZ$", "NZD"),
    ("HK$", "HKD"),
    ("C$", "CAD"),
    ("A$", "AUD"),
    ("S$", "SGD"),
    ("R$", "BRL"),
    ("$", "USD"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("₹", "INR"),
    ("₽", "RUB"),
    ("¢", "USD"),
    ("₦", "NGN"),
    ("₡", "CRC"),
    ("₨", "PKR"),
    ("₩", "KRW"),
)

_CODE_TOKEN_RE = re.compile(r"(?<![A-Za-z])([A-Za-z]{3})(?![A-Za-z])")


def is_known_currency(code: str | None) -> bool:
    return bool(code) and code.strip().upper() in KNOWN_CURRENCIES


def normalize_currency(raw: str | None) -> str:
    """Map a symbol, currency word or ISO code to an ISO-4217 code; never fails."""
    if not raw:
        return DEFAULT_CURRENCY
    cleaned = " ".join(str(raw).split())
    mapped = _ALIASES.get(cleaned.lower())
    if mapped:
        return mapped
    if len(cleaned) == 3 and cleaned.isalpha() and cleaned.upper() in KNOWN_CURRENCIES:
        return cleaned.upper()
    return DEFAULT_CURRENCY


def currency_from_content(content: str | None) -> str | None:
    if not content:
        return None
    for symbol, code in _CONTENT_SYMBOLS:
        if symbol in content:
            return code
    tokens = [m.group(1) for m in _CODE_TOKEN_RE.finditer(content)]
    # Upper-case tokens win over lower-case words such as "try".
    for token in sorted(tokens, key=lambda t: not t.isupper()):
        if token.upper() in KNOWN_CURRENCIES:
            return token.upper()
    return None


def infer_from_field(
    field_value: str | None, field_content: str | None, *, default: str | None = None
) -> str | None:
    """
    Resolve the currency of a currency-typed document field.

    `field_value` is the code the provider attached to the field (if any) and
    `field_content` the raw text the value was read from. The provider code wins
    when it is a recognised ISO code; otherwise the raw text is scanned for a
    symbol, then for an upper-case ISO code. Falls back to `default`.
    """
    if field_value:
        value = field_value.strip()
        if len(value) == 3 and value.isalpha() and value.upper() in KNOWN_CURRENCIES:
            return value.upper()
    return currency_from_content(field_content) or default
