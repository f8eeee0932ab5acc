"""Browser-driven StubHub ticket listing scraper."""

from __future__ import annotations

import asyncio
import json
import os
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from playwright.async_api import Page, async_playwright

from .browser_utils import (
    close_quietly,
    human_click,
    human_mouse_move,
    launch_browser,
    new_stealth_context,
    random_delay,
    simulate_browsing,
)
from .fingerprints import FingerprintPool
from .logging_utils import _dbg, _env_flag, _log_step, _log_warn
from .proxy_pool import ProxyEndpoint, ProxyPool
from .selectors import NavigationStrategy, navigation_strategies, selector_list
from .ticket_extract import ExtractionNotFound, TicketRow, TicketScrapeError, extract_ticket_rows

STUBHUB_EVENT_URL = "https://www.stubhub.com/event/{event_id}/?quantity=0"
CONNECTIVITY_URL = "https://httpbin.org/status/200"


@dataclass(frozen=True)
class ScrapeResult:
    event_id: str
    tickets: List[TicketRow]
    file_path: Optional[str]
    attempts: int
    direct: bool

    @property
    def ticket_count(self) -> int:
        return len(self.tickets)

    def data(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.tickets]


class StubHubScraper:
    """
    One scraper per event. Each attempt owns its own browser, context and
    page; they are closed before the next attempt starts.
    """

    def __init__(
        self,
        event_id: str,
        *,
        use_proxy: bool = True,
        max_retries: int = 5,
        stealth: bool = True,
        headless: Optional[bool] = None,
        output_dir: str = "stubhub-data",
        pool: Optional[ProxyPool] = None,
        fingerprints: Optional[FingerprintPool] = None,
        humanize: bool = True,
        check_connectivity: bool = True,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.event_id = str(event_id).strip()
        if not self.event_id:
            raise ValueError("event_id is required")
        self.use_proxy = bool(use_proxy)
        self.max_retries = max(1, int(max_retries))
        self.stealth = bool(stealth)
        self.headless = _env_flag("ODDSGRID_HEADLESS", True) if headless is None else bool(headless)
        self.output_dir = output_dir
        self.pool = pool if pool is not None else ProxyPool()
        self._rng = rng or random.Random()
        self.fingerprints = fingerprints or FingerprintPool(rng=self._rng)
        self.humanize = bool(humanize)
        self.check_connectivity = bool(check_connectivity)
        self._sleep = sleep
        self._pw_manager = None
        self._pw = None
        self._browser = None
        self._context = None
        self._page: Optional[Page] = None

    @property
    def url(self) -> str:
        return STUBHUB_EVENT_URL.format(event_id=self.event_id)

    async def _start(self) -> None:
        if self._pw is None:
            self._pw_manager = async_playwright()
            self._pw = await self._pw_manager.start()

    async def _open(self, proxy: Optional[ProxyEndpoint]) -> Page:
        identity = self.fingerprints.random()
        _log_step(f"launching browser via {proxy or 'direct connection'} ({identity.browser})")
        self._browser = await launch_browser(self._pw, headless=self.headless, proxy=proxy, stealth=self.stealth)
        self._context = await new_stealth_context(self._browser, identity, stealth=self.stealth, rng=self._rng)
        self._page = await self._context.new_page()
        return self._page

    async def _close_attempt(self) -> None:
        await close_quietly(self._page, self._context, self._browser)
        self._page = None
        self._context = None
        self._browser = None

    async def cleanup(self) -> None:
        await self._close_attempt()
        if self._pw is not None:
            try:
                await self._pw.stop()
            except Exception:
                pass
        self._pw = None
        self._pw_manager = None

    async def _browse(self, page: Page, intensity: str) -> None:
        if self.humanize:
            await simulate_browsing(page, intensity=intensity, rng=self._rng)

    async def navigate(self, page: Page, url: str, strategies: Sequence[NavigationStrategy]) -> NavigationStrategy:
        """Try each wait strategy in order; the first that loads the page wins."""
        last_error: Optional[BaseException] = None
        for i, strategy in enumerate(strategies):
            try:
                page.set_default_timeout(strategy.timeout_ms)
                page.set_default_navigation_timeout(strategy.timeout_ms)
                _dbg(f"goto {url} wait_until={strategy.wait_until} timeout={strategy.timeout_ms}ms")
                await page.goto(url, wait_until=strategy.wait_until, timeout=strategy.timeout_ms)
                _log_step(f"navigation ok with {strategy.wait_until}")
                return strategy
            except Exception as e:
                last_error = e
                _log_warn(f"navigation with {strategy.wait_until} failed: {e}")
                if i < len(strategies) - 1:
                    await self._sleep(self._rng.uniform(2.0, 4.0))
        raise TicketScrapeError(f"navigation to {url} failed with all {len(strategies)} strategies: {last_error}")

    async def _first_visible(self, page: Page, selectors: Sequence[str], timeout_ms: int) -> Optional[str]:
        for sel in selectors:
            try:
                await page.locator(sel).first.wait_for(state="visible", timeout=timeout_ms)
                return sel
            except Exception:
                continue
        return None

    async def _click(self, page: Page, selector: str) -> bool:
        if self.humanize and await human_click(page, selector, rng=self._rng):
            return True
        try:
            await page.locator(selector).first.click()
            return True
        except Exception as e:
            _dbg(f"click failed on {selector}: {e}")
            return False

    async def _toggle_recommended_off(self, page: Page) -> bool:
        sel = await self._first_visible(page, selector_list("recommended_toggle"), 5000)
        if sel is None:
            for fallback in selector_list("filter_panel_checkbox"):
                try:
                    if await page.locator(fallback).first.is_visible():
                        sel = fallback
                        break
                except Exception:
                    continue
        if sel is None:
            _log_step("recommended-tickets toggle not found")
            return False
        try:
            checked = await page.locator(sel).first.is_checked()
        except Exception:
            checked = False
        if not checked:
            return True
        return await self._click(page, sel)

    async def _close_filter_panel(self, page: Page) -> None:
        for sel in selector_list("close_panel"):
            try:
                if await page.locator(sel).first.is_visible() and await self._click(page, sel):
                    _dbg(f"filter panel closed via {sel}")
                    return
            except Exception:
                continue
        try:
            if self.humanize:
                await human_mouse_move(page, 400, 400, 100, 100, rng=self._rng)
            await page.mouse.click(100, 100)
        except Exception as e:
            _dbg(f"click-outside failed: {e}")

    async def _open_filter_panel(self, page: Page) -> Optional[str]:
        """Click the first visible filter control that accepts the click."""
        for sel in selector_list("filter_button"):
            if await self._first_visible(page, (sel,), 3000) is None:
                continue
            if await self._click(page, sel):
                return sel
            _dbg(f"filter control {sel} visible but not clickable, trying next")
        return None

    async def apply_filters(self, page: Page) -> bool:
        """Best effort: switch off the recommended-tickets filter. Never raises."""
        try:
            if await self._open_filter_panel(page) is None:
                _log_step("filter control not found, continuing unfiltered")
                return False
            if self.humanize:
                await random_delay(1000, 2000, rng=self._rng)
            toggled = await self._toggle_recommended_off(page)
            await self._close_filter_panel(page)
            return toggled
        except Exception as e:
            _log_warn(f"filter interaction failed: {e}")
            return False

    async def _run_attempt(self, page: Page, event_table: str, source_table: str) -> List[TicketRow]:
        await self._browse(page, "light")
        await self.navigate(page, self.url, navigation_strategies(event_table))
        await self._browse(page, "medium")
        await self.apply_filters(page)
        await self.navigate(page, f"view-source:{self.url}", navigation_strategies(source_table))
        return await extract_ticket_rows(page)

    async def probe_connectivity(self) -> bool:
        """Load a tiny page once before scraping; only logs the outcome."""
        proxy = self.pool.current() if self.use_proxy else None
        try:
            page = await self._open(proxy)
            await page.goto(CONNECTIVITY_URL, wait_until="domcontentloaded", timeout=15_000)
            _log_step("connectivity check ok")
            return True
        except Exception as e:
            _log_warn(f"connectivity check failed via {proxy or 'direct'}: {e}")
            return False
        finally:
            await self._close_attempt()

    def save_response(self, tickets: List[TicketRow]) -> str:
        os.makedirs(self.output_dir, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        path = os.path.join(self.output_dir, f"stubhub_{self.event_id}_{stamp}.json")
        payload = {
            "eventId": self.event_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "ticketCount": len(tickets),
            "data": [t.to_dict() for t in tickets],
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        _log_step(f"saved {len(tickets)} listings to {path}")
        return path

    async def _attempt(self, proxy: Optional[ProxyEndpoint], event_table: str, source_table: str) -> List[TicketRow]:
        try:
            page = await self._open(proxy)
            return await self._run_attempt(page, event_table, source_table)
        finally:
            await self._close_attempt()

    def _finish(self, tickets: List[TicketRow], attempts: int, direct: bool) -> ScrapeResult:
        try:
            path = self.save_response(tickets)
        except OSError as e:
            raise TicketScrapeError(f"event {self.event_id}: could not save {len(tickets)} listings: {e}") from e
        return ScrapeResult(event_id=self.event_id, tickets=tickets, file_path=path, attempts=attempts, direct=direct)

    async def scrape_event(self) -> ScrapeResult:
        try:
            try:
                await self._start()
            except Exception as e:
                raise TicketScrapeError(f"event {self.event_id}: browser runtime failed to start: {e}") from e
            if self.check_connectivity:
                await self.probe_connectivity()

            last_error: Optional[BaseException] = None
            for attempt in range(1, self.max_retries + 1):
                proxy = self.pool.current() if self.use_proxy else None
                _log_step(f"event {self.event_id}: attempt {attempt}/{self.max_retries}")
                try:
                    tickets = await self._attempt(proxy, "event_page", "source_view")
                except Exception as e:
                    last_error = e
                    _log_warn(f"event {self.event_id}: attempt {attempt} failed: {e}")
                    self.pool.mark_failed(proxy, type(e).__name__)
                else:
                    self.pool.mark_successful(proxy)
                    return self._finish(tickets, attempt, direct=proxy is None)

                if attempt < self.max_retries:
                    if self.use_proxy:
                        self.pool.rotate()
                    wait_ms = min(10_000, 2000 * 2 ** (attempt - 1)) + self._rng.uniform(0, 1000)
                    await self._sleep(wait_ms / 1000.0)

            if self.use_proxy and len(self.pool):
                _log_step(f"event {self.event_id}: proxied attempts exhausted, trying direct connection")
                try:
                    tickets = await self._attempt(None, "direct", "direct")
                except Exception as e:
                    last_error = e
                    _log_warn(f"event {self.event_id}: direct attempt failed: {e}")
                else:
                    return self._finish(tickets, self.max_retries + 1, direct=True)

            if isinstance(last_error, TicketScrapeError):
                raise last_error
            raise TicketScrapeError(f"event {self.event_id}: all attempts failed: {last_error}") from last_error
        finally:
            await self.cleanup()


__all__ = ["ExtractionNotFound", "ScrapeResult", "StubHubScraper", "TicketScrapeError"]
