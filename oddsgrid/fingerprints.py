"""Browser fingerprint pool used to vary the apparent client identity."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

DEFAULT_POOL_SIZE = 50


@dataclass(frozen=True)
class NetworkIdentity:
    user_agent: str
    accept_language: str
    accept_encoding: str
    platform: str
    sec_ch_ua: Optional[str]
    sec_ch_ua_platform: Optional[str]
    viewport: Tuple[int, int]
    timezone_id: str
    locale: str
    hardware_concurrency: int = 8
    device_memory: int = 8
    high_dpi: bool = False
    languages: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def browser(self) -> str:
        ua = self.user_agent
        if "Firefox/" in ua:
            return "firefox"
        if "Edg/" in ua:
            return "edge"
        if "Chrome/" in ua:
            return "chrome"
        return "safari"

    @property
    def is_chromium(self) -> bool:
        return self.browser == "chrome"

    def context_options(self) -> Dict:
        w, h = self.viewport
        return {
            "user_agent": self.user_agent,
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "viewport": {"width": w, "height": h},
            "device_scale_factor": 2 if self.high_dpi else 1,
        }


# (user agent, platform, sec-ch-ua, sec-ch-ua-platform)
_TEMPLATES: Tuple[Tuple[str, str, Optional[str], Optional[str]], ...] = (
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
        "Win32",
        '"Chromium";v="124", "Google Chrome";v="124", "Not-A.Brand";v="99"',
        '"Windows"',
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
        "MacIntel",
        '"Chromium";v="124", "Google Chrome";v="124", "Not-A.Brand";v="99"',
        '"macOS"',
    ),
    (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
        "Linux x86_64",
        '"Chromium";v="123", "Google Chrome";v="123", "Not-A.Brand";v="99"',
        '"Linux"',
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
        "Win32",
        None,
        None,
    ),
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
        "Win32",
        '"Chromium";v="124", "Microsoft Edge";v="124", "Not-A.Brand";v="99"',
        '"Windows"',
    ),
)

_LANGUAGES = (
    ("en-US", ("en-US", "en")),
    ("en-GB", ("en-GB", "en")),
    ("en-US", ("en-US", "en", "el")),
    ("de-DE", ("de-DE", "de", "en")),
)
_TIMEZONES = ("Europe/Athens", "Europe/Berlin", "Europe/Paris", "America/New_York", "Europe/London")
_SCREENS = ((1920, 1080), (1366, 768), (1536, 864), (1440, 900), (2560, 1440))
_CORES = (4, 8, 12, 16)
_MEMORY = (4, 8, 16)


def _accept_language(langs: Tuple[str, ...]) -> str:
    parts = []
    for i, lang in enumerate(langs):
        if i == 0:
            parts.append(lang)
        else:
            parts.append(f"{lang};q={max(0.1, 1.0 - i * 0.1):.1f}")
    return ",".join(parts)


def generate_identity(rng: random.Random, template_index: Optional[int] = None) -> NetworkIdentity:
    idx = rng.randrange(len(_TEMPLATES)) if template_index is None else template_index % len(_TEMPLATES)
    ua, platform, ch_ua, ch_platform = _TEMPLATES[idx]
    locale, langs = rng.choice(_LANGUAGES)
    tz = "Europe/London" if locale == "en-GB" else rng.choice(_TIMEZONES)
    screen = rng.choice(_SCREENS)
    encoding = "gzip, deflate, br"
    return NetworkIdentity(
        user_agent=ua,
        accept_language=_accept_language(langs),
        accept_encoding=encoding,
        platform=platform,
        sec_ch_ua=ch_ua,
        sec_ch_ua_platform=ch_platform,
        viewport=(screen[0], screen[1] - rng.randint(80, 140)),
        timezone_id=tz,
        locale=locale,
        hardware_concurrency=rng.choice(_CORES),
        device_memory=rng.choice(_MEMORY),
        high_dpi=screen[0] >= 2560,
        languages=langs,
    )


class FingerprintPool:
    """Fixed pool of identities generated once at construction."""

    def __init__(self, size: int = DEFAULT_POOL_SIZE, *, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        size = max(1, int(size))
        self._items: List[NetworkIdentity] = [generate_identity(self._rng, i) for i in range(size)]
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._items)

    def random(self) -> NetworkIdentity:
        return self._rng.choice(self._items)

    def next(self) -> NetworkIdentity:
        ident = self._items[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._items)
        return ident

    def stats(self) -> Dict[str, int]:
        by_browser: Dict[str, int] = {}
        for ident in self._items:
            by_browser[ident.browser] = by_browser.get(ident.browser, 0) + 1
        return {"total": len(self._items), **by_browser}
