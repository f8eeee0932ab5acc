"""JSON parameter files: discovery, defaults and validation."""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .dates import parse_date
from .errors import ConfigError
from .logging_utils import _dbg, _log_step
from .proxy_pool import ProxyPool, proxies_from_env

_OPEN_RANGE = {"from": -1, "to": 999}

DEFAULT_FOOTBALL_OUTPUT_PARAMS: Dict[str, Any] = {
    "homeFullTimeOdd": dict(_OPEN_RANGE),
    "awayFullTimeOdd": dict(_OPEN_RANGE),
    "homeExpectedWinningPercentage": dict(_OPEN_RANGE),
    "homeActualWinningPercentage": dict(_OPEN_RANGE),
    "awayExpectedWinningPercentage": dict(_OPEN_RANGE),
    "awayActualWinningPercentage": dict(_OPEN_RANGE),
    "homePregameFormLast5": [],
    "awayPregameFormLast5": [],
    "homeHandicap": dict(_OPEN_RANGE),
    "homeHandicapOdd": dict(_OPEN_RANGE),
}

DEFAULT_BASKETBALL_OUTPUT_PARAMS: Dict[str, Any] = {
    "homeOdd": dict(_OPEN_RANGE),
    "awayOdd": dict(_OPEN_RANGE),
    "homePregameFormLast5": [],
    "homeWins": [],
    "homeLoses": [],
    "awayPregameFormLast5": [],
    "awayWins": [],
    "awayLoses": [],
}


@dataclass(frozen=True)
class ScrapeConfig:
    sport: str
    output_params: Dict[str, Any] = field(default_factory=dict)
    proxies: Tuple[str, ...] = ()
    from_date: Optional[str] = None
    to_date: Optional[str] = None
    source: Optional[str] = None


def default_config(sport: str) -> ScrapeConfig:
    if sport == "football":
        params = DEFAULT_FOOTBALL_OUTPUT_PARAMS
    elif sport == "basketball":
        params = DEFAULT_BASKETBALL_OUTPUT_PARAMS
    else:
        raise ConfigError(f"Sport {sport} is not supported!")
    return ScrapeConfig(sport=sport, output_params=copy.deepcopy(params))


def detect_sport(raw: Dict[str, Any]) -> str:
    params = raw.get("outputParams")
    if isinstance(params, dict) and "homeFullTimeOdd" in params:
        return "football"
    return "basketball"


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_output_params(params: Any) -> Dict[str, Any]:
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise ConfigError("outputParams must be an object")
    out: Dict[str, Any] = {}
    for key, spec in params.items():
        if isinstance(spec, list):
            out[key] = list(spec)
        elif isinstance(spec, dict):
            if "from" not in spec or "to" not in spec:
                raise ConfigError(f"outputParams.{key} must have both 'from' and 'to'")
            if not _is_number(spec["from"]) or not _is_number(spec["to"]):
                raise ConfigError(f"outputParams.{key} range bounds must be numbers")
            out[key] = {"from": spec["from"], "to": spec["to"]}
        else:
            raise ConfigError(f"outputParams.{key} must be a list or a {{from, to}} object")
    return out


def _proxy_list(config_params: Dict[str, Any]) -> List[str]:
    urls: List[str] = []
    single = config_params.get("proxy")
    if isinstance(single, str) and single.strip():
        urls.append(single.strip())
    many = config_params.get("proxies")
    if many is not None:
        if not isinstance(many, list) or not all(isinstance(u, str) for u in many):
            raise ConfigError("configParams.proxies must be a list of proxy urls")
        urls.extend(u.strip() for u in many if u.strip())
    return urls


def parse_config(raw: Any, *, source: Optional[str] = None) -> ScrapeConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"config must be a JSON object ({source or '<inline>'})")
    config_params = raw.get("configParams") or {}
    if not isinstance(config_params, dict):
        raise ConfigError("configParams must be an object")

    from_date = raw.get("fromDate") or None
    to_date = raw.get("toDate") or None
    if from_date is not None:
        parse_date(str(from_date))
    if to_date is not None:
        parse_date(str(to_date))
    if from_date and to_date and parse_date(str(from_date)) > parse_date(str(to_date)):
        raise ConfigError(f"fromDate {from_date} is after toDate {to_date}")

    return ScrapeConfig(
        sport=detect_sport(raw),
        output_params=validate_output_params(raw.get("outputParams")),
        proxies=tuple(_proxy_list(config_params)),
        from_date=str(from_date) if from_date else None,
        to_date=str(to_date) if to_date else None,
        source=source,
    )


def load_config(path: str) -> ScrapeConfig:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except ValueError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}") from e
    return parse_config(raw, source=str(p))


def discover_config(sport: str, directory: str = ".") -> ScrapeConfig:
    """
    Pick the first `*.json` in `directory` (sorted by name) whose detected
    sport matches; fall back to the sport's defaults.
    Unreadable files are skipped, a matching but malformed file raises.
    """
    for p in sorted(Path(directory).glob("*.json")):
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            _dbg(f"config discovery: skip unreadable {p}")
            continue
        if not isinstance(raw, dict) or "outputParams" not in raw:
            continue
        if detect_sport(raw) != sport:
            continue
        _log_step(f"using config {p}")
        return parse_config(raw, source=str(p))
    _log_step(f"no {sport} config found in {os.path.abspath(directory)}, using defaults")
    return default_config(sport)


def build_proxy_pool(config: Optional[ScrapeConfig] = None) -> ProxyPool:
    urls = list(config.proxies if config else ()) + proxies_from_env()
    return ProxyPool.from_urls(urls)
