"""Print-based logging helpers shared by the scraper pipelines."""

from __future__ import annotations

import os
import sys

_TRUTHY = ("1", "true", "yes")


def _dbg(msg: str) -> None:
    if os.getenv("ODDSGRID_DEBUG") in _TRUTHY:
        print(f"[debug] {msg}", flush=True)


def _log_step(msg: str) -> None:
    """
    Progress logging for long-running scrapes.
    Enabled when ODDSGRID_PROGRESS is set (the CLI turns it on unless --quiet).
    """
    if os.getenv("ODDSGRID_PROGRESS") in _TRUTHY:
        print(f"[progress] {msg}", flush=True)


def _log_warn(msg: str) -> None:
    print(f"[warn] {msg}", file=sys.stderr, flush=True)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw not in (None, "") else default
    except Exception:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in _TRUTHY
