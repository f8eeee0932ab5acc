# Helpers that keep automated Chromium sessions looking and behaving like a
# real browser: launch flags, masked navigator fields, human-paced input.

from __future__ import annotations

import asyncio
import json
import random
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright

from .fingerprints import NetworkIdentity
from .logging_utils import _dbg
from .proxy_pool import ProxyEndpoint

STEALTH_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--no-default-browser-check",
    "--no-first-run",
    "--disable-dev-shm-usage",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
    "--disable-ipc-flooding-protection",
    "--force-color-profile=srgb",
)

INTENSITY_PATTERNS = {
    "light": {"movements": 2, "scrolls": 1, "pauses": 2},
    "medium": {"movements": 4, "scrolls": 2, "pauses": 3},
    "heavy": {"movements": 6, "scrolls": 3, "pauses": 4},
}


async def launch_browser(pw: Playwright, *, headless: bool, proxy: Optional[ProxyEndpoint] = None, stealth: bool = True) -> Browser:
    kwargs = {"headless": headless, "args": list(STEALTH_ARGS) if stealth else []}
    if proxy is not None:
        kwargs["proxy"] = proxy.playwright_proxy()
    return await pw.chromium.launch(**kwargs)


def _init_script(identity: NetworkIdentity, avail_w: int, avail_h: int) -> str:
    langs = json.dumps(list(identity.languages or ("en-US", "en")))
    return f"""
        Object.defineProperty(navigator, 'webdriver', {{ get: () => undefined }});
        Object.defineProperty(navigator, 'languages', {{ get: () => {langs} }});
        Object.defineProperty(navigator, 'plugins', {{ get: () => [1,2,3,4,5] }});
        Object.defineProperty(navigator, 'hardwareConcurrency', {{ get: () => {int(identity.hardware_concurrency)} }});
        Object.defineProperty(screen, 'availWidth', {{ get: () => {int(avail_w)} }});
        Object.defineProperty(screen, 'availHeight', {{ get: () => {int(avail_h)} }});
    """


async def new_stealth_context(
    browser: Browser,
    identity: NetworkIdentity,
    *,
    stealth: bool = True,
    rng: Optional[random.Random] = None,
) -> BrowserContext:
    r = rng or random
    w, h = identity.viewport
    # Jitter the window so repeated attempts do not share an exact size.
    width = w + int((r.random() - 0.5) * 200)
    height = h + int((r.random() - 0.5) * 100)
    opts = identity.context_options()
    opts["viewport"] = {"width": width, "height": height}
    context = await browser.new_context(**opts)
    await context.set_extra_http_headers(
        {
            "Accept-Language": identity.accept_language,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
            "Upgrade-Insecure-Requests": "1",
            "Cache-Control": "max-age=0",
        }
    )
    if stealth:
        try:
            await context.add_init_script(_init_script(identity, width, height - 40))
        except Exception:
            pass
    return context


async def close_quietly(*handles) -> None:
    """Close pages/contexts/browsers in the given order, ignoring failures."""
    for h in handles:
        if h is None:
            continue
        try:
            await h.close()
        except Exception:
            pass


async def random_delay(min_ms: float, max_ms: float, *, rng: Optional[random.Random] = None) -> None:
    r = rng or random
    await asyncio.sleep(r.uniform(min_ms, max_ms) / 1000.0)


async def human_mouse_move(page: Page, from_x: float, from_y: float, to_x: float, to_y: float, *, steps: int = 20, rng: Optional[random.Random] = None) -> None:
    r = rng or random
    dx = (to_x - from_x) / steps
    dy = (to_y - from_y) / steps
    for i in range(steps + 1):
        x = from_x + dx * i + (r.random() - 0.5) * 2
        y = from_y + dy * i + (r.random() - 0.5) * 2
        await page.mouse.move(x, y)
        await random_delay(20, 50, rng=r)


async def human_scroll(page: Page, *, direction: str = "down", distance: float = 500, rng: Optional[random.Random] = None) -> None:
    await page.mouse.move(960, 540)
    await random_delay(100, 300, rng=rng)
    await page.mouse.wheel(0, distance if direction == "down" else -distance)
    await random_delay(500, 1000, rng=rng)


async def human_click(page: Page, selector: str, *, timeout_ms: int = 10_000, rng: Optional[random.Random] = None) -> bool:
    r = rng or random
    try:
        element = page.locator(selector).first
        await element.wait_for(state="visible", timeout=timeout_ms)
        box = await element.bounding_box()
        if not box:
            return False
        tx = box["x"] + box["width"] / 2 + (r.random() - 0.5) * box["width"] * 0.3
        ty = box["y"] + box["height"] / 2 + (r.random() - 0.5) * box["height"] * 0.3
        await human_mouse_move(page, r.random() * 1920, r.random() * 1080, tx, ty, rng=r)
        await random_delay(100, 300, rng=r)
        await page.mouse.move(tx + (r.random() - 0.5) * 5, ty + (r.random() - 0.5) * 5)
        await random_delay(50, 150, rng=r)
        await page.mouse.down()
        await random_delay(50, 150, rng=r)
        await page.mouse.up()
        _dbg(f"human click on {selector}")
        return True
    except Exception as e:
        _dbg(f"human click failed on {selector}: {e}")
        return False


async def simulate_browsing(
    page: Page,
    *,
    intensity: str = "medium",
    min_ms: int = 2000,
    max_ms: int = 5000,
    rng: Optional[random.Random] = None,
) -> None:
    """Mouse paths, scrolls and idle pauses spread over a random 2-5 s window."""
    r = rng or random
    pattern = INTENSITY_PATTERNS.get(intensity, INTENSITY_PATTERNS["medium"])
    total = r.uniform(min_ms, max_ms)
    interval = total / (pattern["movements"] + pattern["scrolls"] + pattern["pauses"])
    _dbg(f"simulating {intensity} browsing for {int(total)}ms")
    try:
        for _ in range(pattern["movements"]):
            await human_mouse_move(page, r.random() * 1920, r.random() * 1080, r.random() * 1920, r.random() * 1080, rng=r)
            await random_delay(interval * 0.3, interval * 0.7, rng=r)
        for _ in range(pattern["scrolls"]):
            await human_scroll(page, direction="down" if r.random() > 0.5 else "up", distance=r.random() * 400 + 100, rng=r)
            await random_delay(interval * 0.5, interval * 1.0, rng=r)
        for _ in range(pattern["pauses"]):
            await random_delay(interval * 0.8, interval * 1.2, rng=r)
    except Exception as e:
        _dbg(f"browsing simulation interrupted: {e}")
