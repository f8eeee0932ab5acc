from __future__ import annotations

import html
import json
import os
import time
import traceback
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional
from urllib import parse as _urlparse
from urllib import request as _urlrequest
from urllib.error import HTTPError

from .logging_utils import _dbg, _env_int, _log_warn
from .sofascore_client.base import ClientError, ErrorKind

TG_API_BASE = "https://api.telegram.org"
TG_TEXT_LIMIT = 3800


@dataclass(frozen=True)
class TelegramConfig:
    token: str
    chat_id: str


class SendWindow:
    """Sliding one-minute window of send times; blocks at most 5s when full."""

    def __init__(self, max_per_minute: int, *, clock: Callable[[], float] = time.time, sleep: Callable[[float], None] = time.sleep):
        self.max_per_minute = int(max_per_minute)
        self._clock = clock
        self._sleep = sleep
        self._sent: Deque[float] = deque()

    def _expire(self, now: float) -> None:
        while self._sent and now - self._sent[0] > 60.0:
            self._sent.popleft()

    def wait(self) -> None:
        if self.max_per_minute <= 0:
            return
        now = self._clock()
        self._expire(now)
        if len(self._sent) >= self.max_per_minute:
            pause = 60.0 - (now - self._sent[0]) + 0.1
            if pause > 0:
                _dbg(f"telegram: send window full, pausing {min(pause, 5.0):.1f}s")
                self._sleep(min(pause, 5.0))
            now = self._clock()
            self._expire(now)
        self._sent.append(now)


def _http_error_body(e: HTTPError) -> Dict[str, Any]:
    try:
        body = e.read().decode("utf-8", "ignore")
    except Exception:
        return {"ok": False, "description": str(e)}
    try:
        parsed = json.loads(body)
    except ValueError:
        return {"ok": False, "description": body or str(e)}
    return parsed if isinstance(parsed, dict) else {"ok": False, "description": body}


class TelegramClient:
    """sendMessage over urllib. Transport failures come back as {"ok": False, ...}."""

    def __init__(self, token: str, chat_id: str, *, max_per_minute: Optional[int] = None):
        self.token = str(token)
        self.chat_id = str(chat_id)
        rpm = _env_int("ODDSGRID_TG_MAX_RPM", 18) if max_per_minute is None else max_per_minute
        self.window = SendWindow(rpm)

    def _api(self, method: str, payload: Dict[str, str], timeout: int = 20) -> Dict[str, Any]:
        self.window.wait()
        req = _urlrequest.Request(
            f"{TG_API_BASE}/bot{self.token}/{method}",
            data=_urlparse.urlencode(payload).encode("utf-8"),
        )
        try:
            with _urlrequest.urlopen(req, timeout=timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as e:
            return _http_error_body(e)
        except Exception as e:
            return {"ok": False, "description": str(e)}

    def send_text_result(self, text: str, *, parse_mode: str = "HTML") -> Dict[str, Any]:
        body = (text or "")[:TG_TEXT_LIMIT]
        plain = {"chat_id": self.chat_id, "text": body, "disable_web_page_preview": "true"}
        res = self._api("sendMessage", {**plain, "parse_mode": parse_mode})
        if res.get("ok"):
            return res
        # markup rejected: resend as plain text
        return self._api("sendMessage", plain)


def get_telegram_config(*, token: str = "", chat_id: str = "") -> Optional[TelegramConfig]:
    tok = (token or os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
    chat = (chat_id or os.getenv("TELEGRAM_CHAT_ID") or "").strip()
    if tok and chat:
        return TelegramConfig(token=tok, chat_id=chat)
    return None


def error_payload(exc: BaseException) -> Dict[str, Any]:
    """Flatten an exception into a JSON-friendly property map."""
    out: Dict[str, Any] = {"name": type(exc).__name__, "message": str(exc)}
    for key, value in vars(exc).items():
        if key.startswith("_"):
            continue
        if isinstance(value, ErrorKind):
            value = value.value
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = repr(value)
        out[key] = value
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    if tb:
        out["stack"] = "".join(tb)[-1500:]
    return out


def should_notify(exc: BaseException) -> bool:
    """Timeouts and 403 blocks are expected noise and are not forwarded."""
    if isinstance(exc, ClientError) and exc.kind in (ErrorKind.TIMEOUT, ErrorKind.FORBIDDEN):
        return False
    text = str(exc)
    return "ETIMEDOUT" not in text and "403" not in text


def notify_error(payload: Dict[str, Any], *, client: Optional[TelegramClient] = None) -> bool:
    """Send an error payload to Telegram. Never raises; returns whether it was delivered."""
    try:
        if client is None:
            cfg = get_telegram_config()
            if cfg is None:
                _dbg("telegram not configured, error not forwarded")
                return False
            client = TelegramClient(token=cfg.token, chat_id=cfg.chat_id)
        body = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        res = client.send_text_result(f"<b>oddsgrid error</b>\n<pre>{html.escape(body)}</pre>")
        if isinstance(res, dict) and res.get("ok"):
            return True
        _log_warn(f"telegram notify failed: {(res or {}).get('description') if isinstance(res, dict) else res}")
    except Exception as e:
        _log_warn(f"telegram notify failed: {e}")
    return False
