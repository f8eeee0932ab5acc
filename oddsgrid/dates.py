"""Date helpers: fixed target timezone and date ranges."""

from __future__ import annotations

import os
import re
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from .errors import ConfigError

DEFAULT_TIMEZONE = "Europe/Athens"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def target_timezone() -> ZoneInfo:
    return ZoneInfo((os.getenv("ODDSGRID_TIMEZONE") or DEFAULT_TIMEZONE).strip())


def local_datetime(start_timestamp: int, tz: Optional[ZoneInfo] = None) -> datetime:
    return datetime.fromtimestamp(int(start_timestamp), tz=timezone.utc).astimezone(tz or target_timezone())


def date_time_strings(start_timestamp: int, tz: Optional[ZoneInfo] = None) -> Tuple[str, str]:
    """Return (`yyyy-MM-dd`, `HH:mm`) in the target timezone."""
    dt = local_datetime(start_timestamp, tz)
    return dt.strftime("%Y-%m-%d"), dt.strftime("%H:%M")


def parse_date(raw: str) -> date:
    s = (raw or "").strip()
    if not _DATE_RE.match(s):
        raise ConfigError(f"date must be yyyy-MM-dd, got {raw!r}")
    try:
        return date.fromisoformat(s)
    except ValueError as e:
        raise ConfigError(f"invalid date {raw!r}") from e


def date_range(from_date: str, to_date: str) -> List[str]:
    start = parse_date(from_date)
    end = parse_date(to_date)
    if start > end:
        raise ConfigError(f"fromDate {from_date} is after toDate {to_date}")
    out = []
    cur = start
    while cur <= end:
        out.append(cur.isoformat())
        cur += timedelta(days=1)
    return out


def today_string(tz: Optional[ZoneInfo] = None) -> str:
    return datetime.now(tz or target_timezone()).strftime("%Y-%m-%d")
