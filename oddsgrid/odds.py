"""Fractional odds conversion and market lookups."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

_FRACTION_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*/\s*(-?\d+(?:\.\d+)?)\s*$")
_HANDICAP_RE = re.compile(r"[0-9.-]+")


def round_half_up(value: float, digits: int = 2) -> float:
    """Round on the shortest decimal representation, halves away from zero (2.675 -> 2.68)."""
    try:
        q = Decimal(1).scaleb(-int(digits))
        return float(Decimal(repr(float(value))).quantize(q, rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        return float(value)


def parse_fraction(fractional: Any) -> Optional[float]:
    if not isinstance(fractional, str):
        return None
    m = _FRACTION_RE.match(fractional)
    if not m:
        return None
    numerator = float(m.group(1))
    denominator = float(m.group(2))
    if denominator == 0:
        return None
    return numerator / denominator


def fractional_to_decimal(fractional: Any) -> Optional[float]:
    """`"N/D"` -> N/D rounded to 2 places (basketball money line)."""
    ratio = parse_fraction(fractional)
    if ratio is None:
        return None
    return round_half_up(ratio)


def fractional_to_football_decimal(fractional: Any) -> Optional[float]:
    """`"N/D"` -> round(N/D) + 1, the European decimal price used for football rows."""
    ratio = parse_fraction(fractional)
    if ratio is None:
        return None
    return round_half_up(round_half_up(ratio) + 1)


def find_market(markets: Optional[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
    items = (markets or {}).get("markets")
    if not isinstance(items, list):
        return None
    for m in items:
        if isinstance(m, dict) and m.get("marketName") == name:
            return m
    return None


def _choices(market: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    items = (market or {}).get("choices")
    if not isinstance(items, list):
        return []
    return [c for c in items if isinstance(c, dict)]


def full_time_fractions(markets: Optional[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
    """Fractional prices of choices "1" and "2" of the "Full time" market."""
    home = away = None
    for c in _choices(find_market(markets, "Full time")):
        if c.get("name") == "1" and home is None:
            home = c.get("fractionalValue")
        elif c.get("name") == "2" and away is None:
            away = c.get("fractionalValue")
    return home, away


def parse_handicap_label(label: str) -> Optional[float]:
    """
    Best-effort: labels look like "(-0.5) Arsenal" or "+1.25 Arsenal"; the
    handicap is the first numeric run of the first space-separated token.
    """
    token = (label or "").split(" ")[0]
    m = _HANDICAP_RE.search(token)
    if not m:
        return None
    try:
        return float(m.group(0))
    except ValueError:
        return None


def home_handicap(markets: Optional[Dict[str, Any]], home_team: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    """(handicap, decimal odd) of the "Asian handicap" choice naming the home team."""
    names = [n for n in (home_team.get("name"), home_team.get("shortName")) if isinstance(n, str) and n]
    if not names:
        return None, None
    for c in _choices(find_market(markets, "Asian handicap")):
        label = c.get("name")
        if not isinstance(label, str):
            continue
        if any(n in label for n in names):
            return parse_handicap_label(label), fractional_to_football_decimal(c.get("fractionalValue"))
    return None, None
