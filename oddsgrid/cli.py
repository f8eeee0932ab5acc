from __future__ import annotations

import argparse
import asyncio
import os
import random
import time
from typing import List, Optional

from .config import build_proxy_pool, discover_config, load_config
from .dates import date_range, today_string
from .errors import ConfigError
from .export import export_rows
from .formatter import OutputRow, filter_rows, format_rows, sort_key
from .logging_utils import _log_step, _log_warn
from .proxy_pool import ProxyPool
from .sofascore_client.base import SUPPORTED_SPORTS, ClientError, ErrorKind, TransportError
from .sofascore_client.events import fetch_for_date
from .sofascore_client.pacing import PacingPolicy
from .sofascore_client.session import RequestClient
from .stubhub import StubHubScraper
from .ticket_extract import TicketScrapeError
from .tg_runtime import TelegramClient, error_payload, get_telegram_config, notify_error, should_notify

PROXY_CHECK_URL = "https://httpbin.org/ip"


async def _scrape_date(
    client: RequestClient,
    sport: str,
    day: str,
    output_params: dict,
    *,
    timeout_s: Optional[float],
) -> List[OutputRow]:
    if not timeout_s:
        records = await fetch_for_date(client, sport, day)
    else:
        deadline = time.monotonic() + timeout_s
        try:
            records = await asyncio.wait_for(fetch_for_date(client, sport, day, deadline=deadline), timeout=timeout_s)
        except asyncio.TimeoutError as e:
            raise ClientError(ErrorKind.TIMEOUT, f"{sport} {day} exceeded {timeout_s:.0f}s") from e
    return filter_rows(format_rows(sport, records), output_params)


async def _report_failure(exc: Exception, *, tg: bool) -> None:
    if not tg or not should_notify(exc):
        return
    await asyncio.to_thread(notify_error, error_payload(exc))


async def cmd_scrape(
    *,
    sport: str,
    from_date: Optional[str],
    to_date: Optional[str],
    config_path: Optional[str],
    out_dir: str,
    date_timeout: Optional[float],
    tg: bool,
) -> int:
    try:
        config = load_config(config_path) if config_path else discover_config(sport)
        start = from_date or config.from_date or today_string()
        end = to_date or config.to_date or start
        days = date_range(start, end)
        pool = build_proxy_pool(config)
    except ConfigError as e:
        raise SystemExit(f"config error: {e}")
    if config.sport != sport:
        _log_warn(f"{config.source} looks like a {config.sport} config, applying it to {sport} anyway")

    print(f"{sport}: {start} .. {end} ({len(days)} days), proxies={len(pool)}")
    rows: List[OutputRow] = []
    async with RequestClient(pool=pool, policy=PacingPolicy.from_env()) as client:
        for i, day in enumerate(days):
            _log_step(f"{sport} {day}: scraping")
            try:
                day_rows = await _scrape_date(client, sport, day, config.output_params, timeout_s=date_timeout)
                rows.extend(day_rows)
                print(f"{day}: {len(day_rows)} rows")
            except Exception as e:
                _log_warn(f"{sport} {day} failed: {e}")
                await _report_failure(e, tg=tg)
            if i < len(days) - 1:
                await asyncio.sleep(random.uniform(2.0, 5.0))
        print(f"proxy pool: {client.pool.stats().as_dict()}")

    rows.sort(key=sort_key)
    written = export_rows(rows, out_dir=out_dir, basename=f"{sport}_{start}_{end}", sheet_name=sport.title())
    if written:
        print("exported: " + ", ".join(written))
    else:
        print("no rows to export")
    return 0


async def cmd_tickets(*, event_id: str, use_proxy: bool, max_retries: int, out_dir: str, headless: bool, tg: bool) -> int:
    scraper = StubHubScraper(
        event_id,
        use_proxy=use_proxy,
        max_retries=max_retries,
        output_dir=out_dir,
        headless=headless,
        pool=build_proxy_pool(),
    )
    started = time.monotonic()
    try:
        result = await scraper.scrape_event()
    except TicketScrapeError as e:
        print(f"tickets: failed: {e}")
        await _report_failure(e, tg=tg)
        return 2
    except Exception as e:
        print(f"tickets: failed unexpectedly: {type(e).__name__}: {e}")
        await _report_failure(e, tg=tg)
        return 2
    finally:
        await scraper.cleanup()
    took = time.monotonic() - started
    print(f"tickets: {result.ticket_count} listings in {took:.1f}s (attempts={result.attempts}, direct={result.direct})")
    print(f"tickets: saved {result.file_path}")
    return 0


async def validate_proxies(pool: ProxyPool, *, transport=None) -> int:
    """Probe every endpoint once; returns how many answered."""
    if transport is None:
        from .sofascore_client.transport import PlaywrightTransport

        transport = PlaywrightTransport()
    ok = 0
    try:
        for ep in pool.endpoints:
            t0 = time.monotonic()
            try:
                resp = await transport.fetch("GET", PROXY_CHECK_URL, headers={}, proxy=ep, timeout_ms=15_000)
            except TransportError as e:
                pool.mark_failed(ep, e.kind.value)
                print(f"  {ep}: {e.kind.value}")
                continue
            latency_ms = (time.monotonic() - t0) * 1000.0
            if resp.status == 200:
                ok += 1
                pool.mark_successful(ep, latency_ms)
                print(f"  {ep}: ok {latency_ms:.0f}ms")
            else:
                pool.mark_failed(ep, f"HTTP {resp.status}")
                print(f"  {ep}: HTTP {resp.status}")
    finally:
        await transport.close()
    return ok


async def cmd_proxy_stats(*, config_path: Optional[str], validate: bool) -> int:
    try:
        pool = build_proxy_pool(load_config(config_path) if config_path else None)
    except ConfigError as e:
        raise SystemExit(f"config error: {e}")
    if not len(pool):
        print("proxy pool is empty (direct connection)")
        return 0
    if validate:
        ok = await validate_proxies(pool)
        print(f"validated: {ok}/{len(pool)} working")
    print(f"proxy pool: {pool.stats().as_dict()}")
    best = pool.best()
    if best is not None:
        print(f"best: {best}")
    return 0


async def cmd_tg_test(*, tg_token: str, tg_chat: str) -> int:
    cfg = get_telegram_config(token=tg_token, chat_id=tg_chat)
    if not cfg:
        raise SystemExit("TG test: missing token/chat_id (set TELEGRAM_BOT_TOKEN + TELEGRAM_CHAT_ID or pass --tg-token/--tg-chat)")
    client = TelegramClient(token=cfg.token, chat_id=cfg.chat_id)
    res = await asyncio.to_thread(client.send_text_result, "<b>oddsgrid</b>: TG test ping")
    if isinstance(res, dict) and res.get("ok") and isinstance(res.get("result"), dict):
        print(f"TG test: sent mid={res['result'].get('message_id')}")
        return 0
    desc = (res or {}).get("description") if isinstance(res, dict) else None
    print(f"TG test: failed: {desc or res}")
    return 2


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="oddsgrid")
    parser.add_argument("--headed", action="store_true", help="Run with visible browser window")
    parser.add_argument("--quiet", action="store_true", help="Disable [progress] logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_scrape = sub.add_parser("scrape", help="Scrape Sofascore odds/stats for a date range and export xlsx+csv")
    p_scrape.add_argument("--sport", choices=list(SUPPORTED_SPORTS), required=True)
    p_scrape.add_argument("--from", dest="from_date", type=str, default=None, help="First date (yyyy-MM-dd)")
    p_scrape.add_argument("--to", dest="to_date", type=str, default=None, help="Last date (yyyy-MM-dd)")
    p_scrape.add_argument("--config", type=str, default=None, help="Parameter JSON (default: first matching *.json in cwd)")
    p_scrape.add_argument("--out-dir", type=str, default=".")
    p_scrape.add_argument("--date-timeout", type=float, default=None, help="Abort a single date after N seconds")
    p_scrape.add_argument("--no-tg", action="store_true", help="Do not forward errors to Telegram")

    p_tickets = sub.add_parser("tickets", help="Scrape StubHub listings for one event")
    p_tickets.add_argument("--event-id", type=str, required=True)
    p_tickets.add_argument("--no-proxy", action="store_true")
    p_tickets.add_argument("--max-retries", type=int, default=5)
    p_tickets.add_argument("--out-dir", type=str, default="stubhub-data")
    p_tickets.add_argument("--no-tg", action="store_true")

    p_serve = sub.add_parser("serve", help="Run the ticket HTTP API")
    p_serve.add_argument("--host", type=str, default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=int(os.getenv("PORT") or 8888))

    p_proxy = sub.add_parser("proxy-stats", help="Show proxy pool stats")
    p_proxy.add_argument("--config", type=str, default=None)
    p_proxy.add_argument("--validate", action="store_true", help=f"Probe each proxy against {PROXY_CHECK_URL} first")

    p_tg = sub.add_parser("tg-test", help="Send a test message to Telegram")
    p_tg.add_argument("--tg-token", type=str, default="")
    p_tg.add_argument("--tg-chat", type=str, default="")

    args = parser.parse_args(argv)
    headless = not args.headed
    if not args.quiet:
        os.environ.setdefault("ODDSGRID_PROGRESS", "1")

    if args.cmd == "scrape":
        return asyncio.run(
            cmd_scrape(
                sport=args.sport,
                from_date=args.from_date,
                to_date=args.to_date,
                config_path=args.config,
                out_dir=args.out_dir,
                date_timeout=args.date_timeout,
                tg=not args.no_tg,
            )
        )
    if args.cmd == "tickets":
        return asyncio.run(
            cmd_tickets(
                event_id=args.event_id,
                use_proxy=not args.no_proxy,
                max_retries=args.max_retries,
                out_dir=args.out_dir,
                headless=headless,
                tg=not args.no_tg,
            )
        )
    if args.cmd == "serve":
        import uvicorn

        uvicorn.run("oddsgrid.api:app", host=args.host, port=args.port)
        return 0
    if args.cmd == "proxy-stats":
        return asyncio.run(cmd_proxy_stats(config_path=args.config, validate=args.validate))
    if args.cmd == "tg-test":
        return asyncio.run(cmd_tg_test(tg_token=args.tg_token, tg_chat=args.tg_chat))
    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
