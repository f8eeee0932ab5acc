"""Ordered UI selector lists and navigation strategy tables (kept as data)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .errors import ConfigError

_DATA_FILE = Path(__file__).resolve().parent / "data" / "selectors.json"

_WAIT_STATES = ("networkidle", "domcontentloaded", "load", "commit")


@dataclass(frozen=True)
class NavigationStrategy:
    wait_until: str
    timeout_ms: int


@lru_cache(maxsize=None)
def _load(path: str = str(_DATA_FILE)) -> Dict[str, Any]:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot load selector table {path}: {e}") from e


def selector_list(name: str) -> Tuple[str, ...]:
    items = _load().get(name)
    if not isinstance(items, list) or not items:
        raise ConfigError(f"selector list {name!r} missing or empty")
    return tuple(str(s) for s in items)


def navigation_strategies(name: str) -> Tuple[NavigationStrategy, ...]:
    table = (_load().get("navigation") or {}).get(name)
    if not isinstance(table, list) or not table:
        raise ConfigError(f"navigation strategies {name!r} missing or empty")
    out: List[NavigationStrategy] = []
    for item in table:
        wait_until = str((item or {}).get("wait_until") or "")
        if wait_until not in _WAIT_STATES:
            raise ConfigError(f"unknown wait state {wait_until!r} in {name!r}")
        out.append(NavigationStrategy(wait_until=wait_until, timeout_ms=int(item.get("timeout_ms") or 30000)))
    return tuple(out)
