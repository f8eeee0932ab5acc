"""Rate-governed, retry-aware request client for the Sofascore JSON API."""

from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlsplit

from ..fingerprints import FingerprintPool, NetworkIdentity
from ..logging_utils import _dbg, _log_warn
from ..proxy_pool import ProxyEndpoint, ProxyPool
from .base import (
    SOFASCORE_ORIGIN,
    SOFASCORE_SITE_URL,
    ClientError,
    ErrorKind,
    TransportError,
    kind_for_status,
)
from .pacing import PacingPolicy, RateGate, backoff_ms, compute_delay_ms

_DOCUMENT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"
_JSON_ACCEPT = "application/json, text/plain, */*"


@dataclass(frozen=True)
class RequestOutcome:
    url: str
    status: Optional[int]
    error_kind: Optional[ErrorKind]
    latency_ms: float
    retries_used: int


def build_headers(
    identity: NetworkIdentity,
    url: str,
    *,
    document: bool = False,
    extra: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    headers = {
        "User-Agent": identity.user_agent,
        "Accept": _DOCUMENT_ACCEPT if document else _JSON_ACCEPT,
        "Accept-Language": identity.accept_language,
        "Accept-Encoding": identity.accept_encoding,
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "DNT": "1",
    }
    if identity.is_chromium and identity.sec_ch_ua:
        headers["Sec-Ch-Ua"] = identity.sec_ch_ua
        headers["Sec-Ch-Ua-Mobile"] = "?0"
        headers["Sec-Ch-Ua-Platform"] = identity.sec_ch_ua_platform or '"Windows"'
        headers["Sec-Fetch-Dest"] = "document" if document else "empty"
        headers["Sec-Fetch-Mode"] = "navigate" if document else "cors"
        headers["Sec-Fetch-Site"] = "none" if document else "same-site"
        if document:
            headers["Sec-Fetch-User"] = "?1"
            headers["Upgrade-Insecure-Requests"] = "1"
    host = (urlsplit(url).hostname or "").lower()
    if not document and host.endswith("sofascore.com"):
        headers["Referer"] = SOFASCORE_SITE_URL
        headers["Origin"] = SOFASCORE_ORIGIN
    if extra:
        headers.update(extra)
    return headers


class RequestClient:
    """
    One scraping session: pacing gate, identity, counters and transport.

    Callers construct it explicitly and share it across the calls of one run.
    `sleep`, `clock`, `rng` and `transport` are injectable for tests.
    """

    def __init__(
        self,
        *,
        pool: Optional[ProxyPool] = None,
        fingerprints: Optional[FingerprintPool] = None,
        policy: Optional[PacingPolicy] = None,
        transport=None,
        gate: Optional[RateGate] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        bootstrap: bool = True,
        timeout_ms: int = 30_000,
    ):
        self.policy = policy or PacingPolicy()
        self.pool = pool if pool is not None else ProxyPool()
        self._rng = rng or random.Random()
        self.fingerprints = fingerprints or FingerprintPool(rng=self._rng)
        if transport is None:
            from .transport import PlaywrightTransport

            transport = PlaywrightTransport()
        self.transport = transport
        self._sleep = sleep
        self._clock = clock
        self.gate = gate or RateGate(self.policy, clock=clock, sleep=sleep)
        self.timeout_ms = int(timeout_ms)
        self._bootstrap_enabled = bool(bootstrap)
        self._initialized = not self._bootstrap_enabled
        self._bootstrap_lock = asyncio.Lock()
        self._identity = self.fingerprints.random()
        self._request_count = 0
        self._last_request_at: Optional[float] = None
        self.last_outcome: Optional[RequestOutcome] = None

    async def __aenter__(self) -> "RequestClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            await close()

    @property
    def identity(self) -> NetworkIdentity:
        return self._identity

    @property
    def request_count(self) -> int:
        return self._request_count

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _rotate_identity(self) -> None:
        self._identity = self.fingerprints.random()
        _dbg(f"session: identity rotated ({self._identity.browser}, {self._identity.timezone_id})")

    def _check_deadline(self, wait_s: float, deadline: Optional[float], url: str) -> None:
        if deadline is None:
            return
        if self._clock() + wait_s > deadline:
            raise ClientError(ErrorKind.TIMEOUT, f"deadline exceeded before waiting {wait_s:.1f}s", url=url)

    async def _bootstrap(self, proxy: Optional[ProxyEndpoint]) -> None:
        headers = build_headers(self._identity, SOFASCORE_SITE_URL, document=True)
        try:
            resp = await self.transport.fetch("GET", SOFASCORE_SITE_URL, headers=headers, proxy=proxy, timeout_ms=self.timeout_ms)
        except TransportError as e:
            _log_warn(f"session bootstrap failed via {proxy or 'direct'}: {e}")
            if e.kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK):
                self.pool.mark_failed(proxy, f"bootstrap {e.kind.value}")
            return
        if resp.status >= 400:
            _log_warn(f"session bootstrap got HTTP {resp.status} via {proxy or 'direct'}")
            return
        self._initialized = True
        pause = self._rng.uniform(3.0, 7.0)
        _dbg(f"session: bootstrapped via {proxy or 'direct'}, pausing {pause:.1f}s")
        await self._sleep(pause)

    async def _ensure_session(self, proxy: Optional[ProxyEndpoint]) -> None:
        if self._initialized:
            return
        async with self._bootstrap_lock:
            if not self._initialized:
                await self._bootstrap(proxy)

    async def _pace(self, retry: int, deadline: Optional[float], url: str) -> None:
        if self._last_request_at is None:
            return
        since_ms = (self._clock() - self._last_request_at) * 1000.0
        delay_ms = compute_delay_ms(self._request_count, retry, since_ms, self._rng)
        if delay_ms <= 1000:
            return
        self._check_deadline(delay_ms / 1000.0, deadline, url)
        await self._sleep(delay_ms / 1000.0)

    def _record(self, url: str, status: Optional[int], kind: Optional[ErrorKind], started: float, retry: int) -> float:
        latency_ms = (self._clock() - started) * 1000.0
        self.last_outcome = RequestOutcome(url=url, status=status, error_kind=kind, latency_ms=latency_ms, retries_used=retry)
        return latency_ms

    async def get_json(self, url: str, *, deadline: Optional[float] = None) -> Any:
        return await self.request("GET", url, deadline=deadline)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        deadline: Optional[float] = None,
    ) -> Any:
        retry = 0
        forbidden = 0
        while True:
            proxy = self.pool.current()
            status: Optional[int] = None
            kind: Optional[ErrorKind] = None
            message = ""
            body = ""
            async with self.gate.slot():
                await self._ensure_session(proxy)
                await self._pace(retry, deadline, url)
                self._request_count += 1
                if self._request_count % self.policy.rotate_every == 0:
                    self._rotate_identity()
                started = self._clock()
                hdrs = build_headers(self._identity, url, extra=headers)
                try:
                    resp = await self.transport.fetch(method, url, headers=hdrs, proxy=proxy, timeout_ms=self.timeout_ms)
                    status = resp.status
                    body = resp.text
                    kind = kind_for_status(status)
                except TransportError as e:
                    kind = e.kind
                    message = str(e)
                finally:
                    self._last_request_at = self._clock()

            latency_ms = self._record(url, status, kind, started, retry)
            if kind is None:
                try:
                    payload = json.loads(body)
                except ValueError as e:
                    self._record(url, status, ErrorKind.PARSE, started, retry)
                    raise ClientError(ErrorKind.PARSE, f"invalid JSON from {url}: {body[:200]}", url=url, status=status, retries=retry) from e
                self.pool.mark_successful(proxy, latency_ms)
                return payload

            if not message:
                message = f"HTTP {status} for {url}: {body[:200]}"

            if kind == ErrorKind.NOT_FOUND:
                raise ClientError(kind, message, url=url, status=status, retries=retry)

            if kind == ErrorKind.FORBIDDEN:
                forbidden += 1
                self.pool.mark_failed(proxy, "403")
                if forbidden >= self.policy.max_forbidden:
                    stats = self.pool.stats()
                    raise ClientError(
                        kind,
                        f"blocked: {forbidden} forbidden responses for {url} (working proxies {stats.healthy}/{stats.total})",
                        url=url,
                        status=status,
                        retries=retry,
                        pool_stats=stats.as_dict(),
                    )
                next_proxy = self.pool.rotate()
                await self.transport.reset(proxy)
                self._initialized = not self._bootstrap_enabled
                self._request_count = 0
                self._rotate_identity()
                _log_warn(f"403 for {url}; switched to {next_proxy or 'direct'}")
            else:
                if retry >= self.policy.max_retries:
                    raise ClientError(kind, message, url=url, status=status, retries=retry)
                if kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK) and (status is None or status == 407):
                    self.pool.mark_failed(proxy, kind.value)

            wait_s = backoff_ms(kind, retry) / 1000.0
            self._check_deadline(wait_s, deadline, url)
            _dbg(f"retry {retry + 1} for {url} after {kind.value}; waiting {wait_s:.1f}s")
            await self._sleep(wait_s)
            retry += 1
