import json
import os
import random
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from oddsgrid.proxy_pool import ProxyPool
from oddsgrid.selectors import NavigationStrategy, navigation_strategies, selector_list
from oddsgrid.stubhub import StubHubScraper
from oddsgrid.ticket_extract import ExtractionNotFound, TicketScrapeError

PAYLOAD = json.dumps({"grid": {"items": [{"rawPrice": 120.0, "section": "112"}, {"rawPrice": 80.0}]}})


class _Missing:
    """Locator for an element that never shows up."""

    @property
    def first(self):
        return self

    async def wait_for(self, **kwargs):
        raise TimeoutError("not visible")

    async def is_visible(self):
        return False

    async def count(self):
        return 0


class _Rows:
    def __init__(self, texts):
        self.texts = texts

    @property
    def first(self):
        return self

    def locator(self, selector):
        return self

    async def count(self):
        return len(self.texts)

    def nth(self, i):
        text = self.texts[i]

        class _Row:
            async def text_content(self):
                return text

        return _Row()


class _Control:
    """Visible element; clicking it raises unless it is clickable."""

    def __init__(self, page, selector, clickable):
        self.page = page
        self.selector = selector
        self.clickable = clickable

    @property
    def first(self):
        return self

    async def wait_for(self, **kwargs):
        return None

    async def is_visible(self):
        return True

    async def click(self):
        if not self.clickable:
            raise RuntimeError("element is covered by another element")
        self.page.clicks.append(self.selector)


class FakePage:
    def __init__(self, *, failing_waits=(), rows=None, goto_error=None, controls=None):
        self.failing_waits = set(failing_waits)
        self.rows = rows
        self.goto_error = goto_error
        self.controls = dict(controls or {})
        self.clicks = []
        self.gotos = []
        self.timeouts = []
        self.closed = False

    def set_default_timeout(self, ms):
        self.timeouts.append(ms)

    def set_default_navigation_timeout(self, ms):
        pass

    async def goto(self, url, wait_until=None, timeout=None):
        self.gotos.append((url, wait_until))
        if self.goto_error is not None:
            raise self.goto_error
        if wait_until in self.failing_waits:
            raise TimeoutError(f"Timeout {timeout}ms exceeded")

    def locator(self, selector):
        if selector == "tbody" and self.rows is not None:
            return _Rows(self.rows)
        if selector in self.controls:
            return _Control(self, selector, self.controls[selector])
        return _Missing()

    async def close(self):
        self.closed = True


class _Sleeper:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _scraper(tmp, **kwargs):
    sleeper = _Sleeper()
    kwargs.setdefault("pool", ProxyPool())
    scraper = StubHubScraper(
        "150593848",
        output_dir=tmp,
        humanize=False,
        check_connectivity=False,
        rng=random.Random(1),
        sleep=sleeper,
        **kwargs,
    )
    return scraper, sleeper


class SelectorTableTests(unittest.TestCase):
    def test_navigation_tables(self) -> None:
        event = navigation_strategies("event_page")
        self.assertEqual([s.wait_until for s in event], ["networkidle", "domcontentloaded", "load", "commit"])
        self.assertEqual(event[0].timeout_ms, 150000)
        self.assertEqual(len(navigation_strategies("direct")), 2)
        self.assertTrue(selector_list("filter_button"))


class NavigateTests(unittest.IsolatedAsyncioTestCase):
    async def test_falls_through_to_last_strategy(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scraper, sleeper = _scraper(tmp)
            page = FakePage(failing_waits={"networkidle", "domcontentloaded", "load"})
            used = await scraper.navigate(page, scraper.url, navigation_strategies("event_page"))
        self.assertEqual(used.wait_until, "commit")
        self.assertEqual(len(sleeper.calls), 3)
        self.assertTrue(all(2.0 <= s <= 4.0 for s in sleeper.calls))
        self.assertEqual(page.timeouts, [150000, 90000, 120000, 60000])

    async def test_all_strategies_failing_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scraper, sleeper = _scraper(tmp)
            page = FakePage(goto_error=RuntimeError("net::ERR_PROXY_CONNECTION_FAILED"))
            strategies = (NavigationStrategy("load", 1000), NavigationStrategy("commit", 1000))
            with self.assertRaises(TicketScrapeError) as cm:
                await scraper.navigate(page, scraper.url, strategies)
        self.assertIn("ERR_PROXY_CONNECTION_FAILED", str(cm.exception))
        self.assertEqual(len(sleeper.calls), 1)

    async def test_apply_filters_never_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scraper, _sleeper = _scraper(tmp)
            self.assertFalse(await scraper.apply_filters(FakePage()))

    async def test_filter_panel_skips_unclickable_control(self) -> None:
        first, second = selector_list("filter_button")[:2]
        page = FakePage(controls={first: False, second: True})
        with tempfile.TemporaryDirectory() as tmp:
            scraper, _sleeper = _scraper(tmp)
            self.assertEqual(await scraper._open_filter_panel(page), second)
        self.assertEqual(page.clicks, [second])


class ScrapeEventTests(unittest.IsolatedAsyncioTestCase):
    async def test_first_attempt_saves_listings(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scraper, _sleeper = _scraper(tmp, use_proxy=False)
            page = FakePage(rows=["<span>", PAYLOAD])
            with patch.object(scraper, "_start", AsyncMock()), patch.object(scraper, "_open", AsyncMock(return_value=page)):
                result = await scraper.scrape_event()
            self.assertEqual(result.attempts, 1)
            self.assertTrue(result.direct)
            self.assertEqual(result.ticket_count, 2)
            self.assertTrue(os.path.basename(result.file_path).startswith("stubhub_150593848_"))
            with open(result.file_path, encoding="utf-8") as f:
                saved = json.load(f)
        self.assertEqual(saved["eventId"], "150593848")
        self.assertEqual(saved["ticketCount"], 2)
        self.assertEqual(saved["data"][0]["section"], "112")
        self.assertEqual(page.gotos[-1][0], "view-source:https://www.stubhub.com/event/150593848/?quantity=0")

    async def test_retries_rotate_proxy_and_back_off(self) -> None:
        pool = ProxyPool.from_urls(["http://p1:8000", "http://p2:8000"], clock=lambda: 0.0)
        bad = FakePage(rows=[])
        good = FakePage(rows=[PAYLOAD])
        with tempfile.TemporaryDirectory() as tmp:
            scraper, sleeper = _scraper(tmp, pool=pool, max_retries=3)
            opener = AsyncMock(side_effect=[bad, good])
            with patch.object(scraper, "_start", AsyncMock()), patch.object(scraper, "_open", opener):
                result = await scraper.scrape_event()
        self.assertEqual(result.attempts, 2)
        self.assertFalse(result.direct)
        self.assertEqual([c.args[0].host for c in opener.call_args_list], ["p1", "p2"])
        self.assertEqual(pool.stats().rotations, 1)
        self.assertEqual(pool.endpoints[0].failures, 1)
        self.assertTrue(any(2.0 <= s <= 3.0 for s in sleeper.calls))

    async def test_direct_fallback_after_proxied_attempts(self) -> None:
        pool = ProxyPool.from_urls(["http://p1:8000"], clock=lambda: 0.0)
        pages = [FakePage(rows=[]), FakePage(rows=[]), FakePage(rows=[PAYLOAD])]
        with tempfile.TemporaryDirectory() as tmp:
            scraper, _sleeper = _scraper(tmp, pool=pool, max_retries=2)
            opener = AsyncMock(side_effect=pages)
            with patch.object(scraper, "_start", AsyncMock()), patch.object(scraper, "_open", opener):
                result = await scraper.scrape_event()
        self.assertTrue(result.direct)
        self.assertEqual(result.attempts, 3)
        self.assertIsNone(opener.call_args_list[-1].args[0])
        self.assertEqual(pages[-1].gotos[0][1], "domcontentloaded")

    async def test_exhausted_attempts_raise_typed_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scraper, _sleeper = _scraper(tmp, use_proxy=False, max_retries=2)
            opener = AsyncMock(side_effect=lambda proxy: FakePage(rows=[]))
            with patch.object(scraper, "_start", AsyncMock()), patch.object(scraper, "_open", opener):
                with self.assertRaises(ExtractionNotFound):
                    await scraper.scrape_event()
            self.assertEqual(opener.await_count, 2)
            self.assertEqual(os.listdir(tmp), [])

    async def test_save_failure_is_not_retried(self) -> None:
        pool = ProxyPool.from_urls(["http://p1:8000", "http://p2:8000"], clock=lambda: 0.0)
        with tempfile.TemporaryDirectory() as tmp:
            scraper, sleeper = _scraper(tmp, pool=pool, max_retries=3)
            opener = AsyncMock(return_value=FakePage(rows=[PAYLOAD]))
            with patch.object(scraper, "_start", AsyncMock()), patch.object(scraper, "_open", opener), patch.object(
                scraper, "save_response", side_effect=OSError("No space left on device")
            ):
                with self.assertRaises(TicketScrapeError) as cm:
                    await scraper.scrape_event()
        self.assertIn("could not save 2 listings", str(cm.exception))
        self.assertEqual(opener.await_count, 1)
        self.assertEqual(sleeper.calls, [])
        first = pool.endpoints[0]
        self.assertEqual((first.failures, first.successes), (0, 1))
        self.assertEqual(pool.stats().rotations, 0)

    async def test_browser_start_failure_raises_typed_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scraper, _sleeper = _scraper(tmp, use_proxy=False)
            starter = AsyncMock(side_effect=RuntimeError("Executable doesn't exist at /ms-playwright/chromium"))
            opener = AsyncMock()
            with patch.object(scraper, "_start", starter), patch.object(scraper, "_open", opener):
                with self.assertRaises(TicketScrapeError) as cm:
                    await scraper.scrape_event()
        self.assertIn("browser runtime failed to start", str(cm.exception))
        self.assertIsInstance(cm.exception.__cause__, RuntimeError)
        opener.assert_not_awaited()

    def test_event_id_required(self) -> None:
        with self.assertRaises(ValueError):
            StubHubScraper("  ")


if __name__ == "__main__":
    unittest.main()
