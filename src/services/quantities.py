from __future__ import annotations

import re
from fractions import Fraction

_UNICODE_FRACTIONS = {
    "½": "1/2",
    "⅓": "1/3",
    "⅔": "2/3",
    "¼": "1/4",
    "¾": "3/4",
    "⅕": "1/5",
    "⅛": "1/8",
    "⅜": "3/8",
    "⅝": "5/8",
    "⅞": "7/8",
}
_MIXED_RE = re.compile(r"^(\d+)\s+(\d+)\s*/\s*(\d+)$")
_FRACTION_RE = re.compile(r"^(\d+)\s*/\s*(\d+)$")
_DECIMAL_RE = re.compile(r"^\d+(?:[.,]\d+)?$")
_RANGE_RE = re.compile(r"^(.+?)\s*(?:-|–|to)\s*(.+)$")
_LEADING_NUMBER_RE = re.compile(r"(\d+)")


def _expand_unicode(text: str) -> str:
    for symbol, ascii_value in _UNICODE_FRACTIONS.items():
        text = text.replace(symbol, f" {ascii_value}")
    return text.strip()


def _parse_single(text: str) -> float | None:
    if _DECIMAL_RE.match(text):
        return float(text.replace(",", "."))
    mixed = _MIXED_RE.match(text)
    if mixed:
        whole, num, den = (int(g) for g in mixed.groups())
        if den == 0:
            return None
        return float(whole + Fraction(num, den))
    frac = _FRACTION_RE.match(text)
    if frac:
        num, den = (int(g) for g in frac.groups())
        if den == 0:
            return None
        return float(Fraction(num, den))
    return None


def parse_amount(value: object) -> float | None:
    """
    Coerce an ingredient amount into a float.

    Accepts numbers, decimal strings ("0.5", "1,5"), fractions ("1/2"),
    mixed numbers ("1 1/2"), unicode fractions ("1½") and ranges, where the
    lower bound wins ("2-3" -> 2.0). Anything else yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    text = _expand_unicode(value.strip())
    if not text:
        return None

    single = _parse_single(text)
    if single is not None:
        return single

    ranged = _RANGE_RE.match(text)
    if ranged:
        return _parse_single(ranged.group(1).strip())
    return None


def normalize_servings(value: object) -> str | None:
    """
    Reduce a yield string to its first number ("4, 4 servings" -> "4",
    "4-6" -> "4"). Strings without digits are returned stripped.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, list):
        for item in value:
            normalized = normalize_servings(item)
            if normalized:
                return normalized
        return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    match = _LEADING_NUMBER_RE.search(text)
    return match.group(1) if match else text
