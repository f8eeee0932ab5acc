"""Proxy endpoint pool with health tracking and failure cool-down."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

from .errors import ConfigError
from .logging_utils import _dbg, _log_warn

FAILURE_LIMIT = 3
COOLDOWN_S = 30 * 60
EMA_ALPHA = 0.3
LATENCY_WEIGHT = 0.2
HEALTHY_THRESHOLD = 0.3
NEUTRAL_SUCCESS_RATE = 0.5

_PROTOCOLS = ("http", "https", "socks5")


@dataclass
class ProxyEndpoint:
    host: str
    port: int
    protocol: str = "http"
    username: Optional[str] = None
    password: Optional[str] = None
    country: str = ""
    quality: str = "medium"
    success_rate: float = 1.0
    avg_response_ms: float = 0.0
    healthy: bool = True
    last_used_at: Optional[float] = None
    failures: int = 0
    last_failed_at: Optional[float] = None
    successes: int = 0

    @property
    def server(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    def playwright_proxy(self) -> Dict[str, str]:
        out = {"server": self.server}
        if self.username:
            out["username"] = self.username
            out["password"] = self.password or ""
        return out

    def __str__(self) -> str:
        return self.server


@dataclass(frozen=True)
class PoolStats:
    total: int
    healthy: int
    success_rate: float
    failures: int
    rotations: int

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def parse_proxy_url(url: str) -> ProxyEndpoint:
    """
    Parse `scheme://[user:pass@]host:port[#country]`.
    A bare `host:port` is treated as http.
    """
    raw = (url or "").strip()
    if not raw:
        raise ConfigError("empty proxy url")
    if "://" not in raw:
        raw = f"http://{raw}"
    parts = urlsplit(raw)
    protocol = (parts.scheme or "http").lower()
    if protocol not in _PROTOCOLS:
        raise ConfigError(f"unsupported proxy protocol: {protocol}")
    try:
        port = parts.port
    except ValueError as e:
        raise ConfigError(f"bad proxy port in {url!r}") from e
    if not parts.hostname or not port:
        raise ConfigError(f"proxy url must include host and port: {url!r}")
    return ProxyEndpoint(
        host=parts.hostname,
        port=int(port),
        protocol=protocol,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        country=(parts.fragment or "").upper(),
    )


def proxies_from_env() -> List[str]:
    raw = os.getenv("ODDSGRID_PROXIES") or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


class ProxyPool:
    """
    Rotating set of proxy endpoints.

    An endpoint is eligible while it is healthy and not cooling down
    (FAILURE_LIMIT failures within COOLDOWN_S). When nothing is eligible the
    failure state is dropped and the first endpoint is handed out again.
    An empty pool means a direct connection: every accessor returns None.
    """

    def __init__(self, endpoints: Optional[Iterable[ProxyEndpoint]] = None, *, clock: Callable[[], float] = time.time):
        self._endpoints: List[ProxyEndpoint] = list(endpoints or [])
        self._cursor = 0
        self._rotations = 0
        self._lock = threading.Lock()
        self._clock = clock

    @classmethod
    def from_urls(cls, urls: Iterable[str], **kwargs) -> "ProxyPool":
        seen = set()
        endpoints = []
        for u in urls:
            ep = parse_proxy_url(u)
            if ep.server in seen:
                continue
            seen.add(ep.server)
            endpoints.append(ep)
        return cls(endpoints, **kwargs)

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def endpoints(self) -> List[ProxyEndpoint]:
        return list(self._endpoints)

    def _expire_locked(self, now: float) -> None:
        for ep in self._endpoints:
            if ep.last_failed_at is None or now - ep.last_failed_at < COOLDOWN_S:
                continue
            if ep.failures >= FAILURE_LIMIT or not ep.healthy:
                ep.success_rate = NEUTRAL_SUCCESS_RATE
            ep.failures = 0
            ep.last_failed_at = None
            ep.healthy = True

    def _cooling_down(self, ep: ProxyEndpoint, now: float) -> bool:
        if ep.failures < FAILURE_LIMIT or ep.last_failed_at is None:
            return False
        return now - ep.last_failed_at < COOLDOWN_S

    def _eligible_locked(self, now: float) -> List[ProxyEndpoint]:
        self._expire_locked(now)
        return [ep for ep in self._endpoints if ep.healthy and not self._cooling_down(ep, now)]

    def _working_locked(self, now: float) -> Tuple[List[ProxyEndpoint], bool]:
        """Eligible endpoints, and whether the pool had to be reset to get any."""
        working = self._eligible_locked(now)
        if working or not self._endpoints:
            return working, False
        _log_warn("proxy pool: no eligible endpoints left, clearing failure state")
        self._reset_locked()
        return list(self._endpoints), True

    def _reset_locked(self) -> None:
        for ep in self._endpoints:
            ep.failures = 0
            ep.last_failed_at = None
            ep.healthy = True
            ep.success_rate = 1.0
        self._cursor = 0

    def current(self) -> Optional[ProxyEndpoint]:
        with self._lock:
            now = self._clock()
            working, _reset = self._working_locked(now)
            if not working:
                return None
            ep = working[self._cursor % len(working)]
            ep.last_used_at = now
            return ep

    def rotate(self) -> Optional[ProxyEndpoint]:
        with self._lock:
            now = self._clock()
            working, reset = self._working_locked(now)
            if not working:
                return None
            self._rotations += 1
            if reset:
                # after a full reset the first endpoint is used again
                ep = working[0]
            else:
                self._cursor = (self._cursor + 1) % len(working)
                ep = working[self._cursor]
            ep.last_used_at = now
            _dbg(f"proxy pool: rotated to {ep} ({len(working)} working)")
            return ep

    def mark_failed(self, endpoint: Optional[ProxyEndpoint], reason: str = "") -> None:
        if endpoint is None:
            return
        with self._lock:
            endpoint.failures += 1
            endpoint.last_failed_at = self._clock()
            endpoint.success_rate = endpoint.success_rate * (1.0 - EMA_ALPHA)
            if endpoint.success_rate < HEALTHY_THRESHOLD:
                endpoint.healthy = False
            _dbg(f"proxy pool: {endpoint} failed ({endpoint.failures}) reason={reason or '-'}")

    def mark_successful(self, endpoint: Optional[ProxyEndpoint], latency_ms: Optional[float] = None) -> None:
        if endpoint is None:
            return
        with self._lock:
            endpoint.successes += 1
            endpoint.success_rate = endpoint.success_rate * (1.0 - EMA_ALPHA) + EMA_ALPHA
            if latency_ms is not None:
                if endpoint.avg_response_ms <= 0:
                    endpoint.avg_response_ms = float(latency_ms)
                else:
                    endpoint.avg_response_ms = endpoint.avg_response_ms * (1.0 - LATENCY_WEIGHT) + float(latency_ms) * LATENCY_WEIGHT
            if endpoint.failures > 0:
                endpoint.failures -= 1
            if endpoint.success_rate >= HEALTHY_THRESHOLD:
                endpoint.healthy = True

    def best(self) -> Optional[ProxyEndpoint]:
        with self._lock:
            if not self._endpoints:
                return None
            return max(self._endpoints, key=lambda ep: ep.successes - 2 * ep.failures)

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()

    def stats(self) -> PoolStats:
        with self._lock:
            now = self._clock()
            eligible = self._eligible_locked(now)
            total = len(self._endpoints)
            rate = sum(ep.success_rate for ep in self._endpoints) / total if total else 0.0
            return PoolStats(
                total=total,
                healthy=len(eligible),
                success_rate=round(rate, 3),
                failures=sum(ep.failures for ep in self._endpoints),
                rotations=self._rotations,
            )
