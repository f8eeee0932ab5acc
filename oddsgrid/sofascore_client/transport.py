"""HTTP transport backed by Playwright's APIRequestContext (one per proxy)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from ..logging_utils import _dbg
from ..proxy_pool import ProxyEndpoint
from .base import ErrorKind, TransportError


@dataclass(frozen=True)
class TransportResponse:
    status: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)


class PlaywrightTransport:
    """
    Each proxy endpoint gets its own request context so cookies acquired
    during session bootstrap stay bound to the identity that earned them.
    """

    def __init__(self) -> None:
        self._manager = None
        self._pw = None
        self._contexts: Dict[str, object] = {}

    @staticmethod
    def _key(proxy: Optional[ProxyEndpoint]) -> str:
        return proxy.server if proxy is not None else "direct"

    async def _context(self, proxy: Optional[ProxyEndpoint]):
        key = self._key(proxy)
        ctx = self._contexts.get(key)
        if ctx is not None:
            return ctx
        if self._pw is None:
            self._manager = async_playwright()
            self._pw = await self._manager.start()
        kwargs = {"ignore_https_errors": True}
        if proxy is not None:
            kwargs["proxy"] = proxy.playwright_proxy()
        ctx = await self._pw.request.new_context(**kwargs)
        self._contexts[key] = ctx
        _dbg(f"transport: new request context for {key}")
        return ctx

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        proxy: Optional[ProxyEndpoint],
        timeout_ms: int = 30_000,
    ) -> TransportResponse:
        ctx = await self._context(proxy)
        try:
            resp = await ctx.fetch(url, method=method, headers=headers, timeout=timeout_ms, fail_on_status_code=False)
            text = await resp.text()
            return TransportResponse(status=int(resp.status), text=text, headers=dict(resp.headers))
        except PlaywrightTimeoutError as e:
            raise TransportError(ErrorKind.TIMEOUT, f"timeout for {url}: {e}") from e
        except PlaywrightError as e:
            raise TransportError(ErrorKind.NETWORK, f"network error for {url}: {e}") from e

    async def reset(self, proxy: Optional[ProxyEndpoint]) -> None:
        ctx = self._contexts.pop(self._key(proxy), None)
        if ctx is None:
            return
        try:
            await ctx.dispose()
        except Exception:
            pass

    async def close(self) -> None:
        contexts = list(self._contexts.values())
        self._contexts.clear()
        for ctx in contexts:
            try:
                await ctx.dispose()
            except Exception:
                pass
        if self._pw is not None:
            try:
                await self._pw.stop()
            except Exception:
                pass
        self._pw = None
        self._manager = None
