"""Sanitize and validate user-supplied product fields and search terms."""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlparse

NUMBER_LIMIT = 999_999_999
TWO_PLACES = Decimal("0.01")

_STRING_STRIP = re.compile(r"[<>'\"\\;]")
_ANGLE_BRACKETS = re.compile(r"[<>]")
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+=", re.IGNORECASE)

_SEARCH_STRIP = re.compile(r"[;'\"\\,()*]")
_SQL_COMMENTS = re.compile(r"--|/\*|\*/")
_SQL_KEYWORDS = re.compile(
    r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|UNION|ALTER|CREATE|EXEC|EXECUTE)\b",
    re.IGNORECASE,
)

_SQL_INJECTION_PATTERNS = [
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION)\b", re.IGNORECASE),
    re.compile(r"--|/\*|\*/"),
    re.compile(r"\bOR\b.*=.*\bOR\b", re.IGNORECASE),
    re.compile(r"\bAND\b.*=.*\bAND\b", re.IGNORECASE),
    re.compile(r"['\";]"),
]
_XSS_PATTERNS = [
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<iframe[^>]*>.*?</iframe>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<[^>]*\s(on\w+|href|src)\s*=", re.IGNORECASE),
]
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# (wire key, max length) for plain string columns
STRING_FIELDS: list[tuple[str, int]] = [
    ("category_id", 50),
    ("product-category", 100),
    ("title", 500),
    ("subtitle", 500),
    ("author", 200),
    ("product-code-or-isbn", 50),
    ("currency_id", 10),
]
NUMBER_FIELDS = ["price", "base_price"]
INTEGER_FIELDS = ["available_quantity"]


def sanitize_string(value: Any, max_length: int = 1000) -> str:
    """Strip markup/quote characters, trim and truncate."""
    if not value:
        return ""
    cleaned = _STRING_STRIP.sub("", str(value)).strip()
    return cleaned[:max_length]


def sanitize_html(value: Any) -> str:
    """Remove tags, javascript: URLs and inline event handlers."""
    if not value or not isinstance(value, str):
        return ""
    cleaned = _ANGLE_BRACKETS.sub("", value)
    cleaned = _JS_PROTOCOL.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    return cleaned.strip()


def sanitize_number(value: Any) -> float | None:
    """Parse a decimal amount rounded half-up to two places.

    Returns None for missing, non-numeric, non-finite or out-of-range input;
    callers treat None as "field omitted/invalid".
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    if number > NUMBER_LIMIT or number < -NUMBER_LIMIT:
        return None

    # Round on the decimal string form so 10.005 becomes 10.01, not 10.0.
    try:
        rounded = Decimal(str(value).strip() if isinstance(value, str) else repr(number))
    except InvalidOperation:
        rounded = Decimal(repr(number))
    return float(rounded.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def sanitize_integer(value: Any) -> int | None:
    """Parse a non-negative integer (fractions truncate); None when invalid."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        if isinstance(value, str):
            text = value.strip()
            try:
                number = int(text)
            except ValueError:
                number = int(float(text))
        else:
            number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if number < 0 or number > NUMBER_LIMIT:
        return None
    return number


def sanitize_search_term(term: str | None) -> str | None:
    """Clean a free-text search term before it becomes a pattern filter.

    Returns None when nothing usable is left or when the term still contains
    a SQL reserved keyword as a whole word.
    """
    if not term or not isinstance(term, str):
        return None
    # Stripping one character can join the halves of a comment marker
    # ("a-;-b" -> "a--b"), so repeat both passes until nothing changes.
    cleaned = term
    previous = None
    while cleaned != previous:
        previous = cleaned
        cleaned = _SQL_COMMENTS.sub("", cleaned)
        cleaned = _SEARCH_STRIP.sub("", cleaned)
    cleaned = cleaned.strip()
    if _SQL_KEYWORDS.search(cleaned):
        return None
    return cleaned or None


def sanitize_product_data(payload: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """Apply per-field sanitizers to a product payload keyed by wire names.

    With ``partial=True`` only keys present in ``payload`` are returned,
    which is what partial updates need.
    """
    sanitized: dict[str, Any] = {}

    for key, max_length in STRING_FIELDS:
        if partial and key not in payload:
            continue
        sanitized[key] = sanitize_string(payload.get(key), max_length)

    if not partial or "description" in payload:
        sanitized["description"] = sanitize_html(payload.get("description"))

    for key in NUMBER_FIELDS:
        if partial and key not in payload:
            continue
        sanitized[key] = sanitize_number(payload.get(key))

    for key in INTEGER_FIELDS:
        if partial and key not in payload:
            continue
        sanitized[key] = sanitize_integer(payload.get(key))

    return sanitized


def contains_sql_injection(value: str) -> bool:
    return any(pattern.search(value) for pattern in _SQL_INJECTION_PATTERNS)


def contains_xss(value: str) -> bool:
    return any(pattern.search(value) for pattern in _XSS_PATTERNS)


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL.match(value or ""))


def is_valid_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)
