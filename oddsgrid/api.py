"""
Ticket scraping HTTP API.

Run with `oddsgrid serve` or `uvicorn oddsgrid.api:app --port 8888`.
"""

from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .config import build_proxy_pool
from .logging_utils import _env_flag, _log_step, _log_warn
from .proxy_pool import ProxyPool
from .stubhub import STUBHUB_EVENT_URL, StubHubScraper
from .tg_runtime import error_payload

DEFAULT_PORT = 8888

app = FastAPI(
    title="oddsgrid ticket API",
    description="Scrape StubHub ticket listings for an event on demand",
    version=__version__,
)

_pool: Optional[ProxyPool] = None


class HealthResponse(BaseModel):
    status: str
    message: str
    timestamp: str


class ScrapeResponse(BaseModel):
    success: bool
    eventId: str
    ticketCount: int
    timeTaken: str
    timestamp: str
    filePath: Optional[str] = None
    data: List[Dict[str, Any]]


class InfoResponse(BaseModel):
    eventId: str
    eventUrl: str
    scrapeUrl: str
    message: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _shared_pool() -> ProxyPool:
    global _pool
    if _pool is None:
        _pool = build_proxy_pool()
    return _pool


def _missing_event_id() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "eventId query parameter is required", "example": "/scrape?eventId=123456789"},
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="OK", message="ticket scraper API is running", timestamp=_now())


@app.get("/scrape", response_model=ScrapeResponse)
async def scrape(eventId: Optional[str] = Query(None)):
    if not eventId or not eventId.strip():
        return _missing_event_id()
    event_id = eventId.strip()
    _log_step(f"api: scrape requested for event {event_id}")
    started = time.monotonic()
    scraper = StubHubScraper(
        event_id,
        pool=_shared_pool(),
        use_proxy=_env_flag("ODDSGRID_TICKETS_PROXY", True),
        output_dir=os.getenv("ODDSGRID_TICKETS_DIR") or "stubhub-data",
    )
    try:
        result = await scraper.scrape_event()
    except Exception as e:
        _log_warn(f"api: scrape failed for event {event_id}: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e),
                "eventId": event_id,
                "timestamp": _now(),
                "details": error_payload(e),
            },
        )
    finally:
        await scraper.cleanup()
    return ScrapeResponse(
        success=True,
        eventId=event_id,
        ticketCount=result.ticket_count,
        timeTaken=f"{time.monotonic() - started:.2f}s",
        timestamp=_now(),
        filePath=result.file_path,
        data=result.data(),
    )


@app.get("/info", response_model=InfoResponse)
def info(eventId: Optional[str] = Query(None)):
    if not eventId or not eventId.strip():
        return _missing_event_id()
    event_id = eventId.strip()
    return InfoResponse(
        eventId=event_id,
        eventUrl=STUBHUB_EVENT_URL.format(event_id=event_id),
        scrapeUrl=f"/scrape?eventId={event_id}",
        message="call scrapeUrl to fetch current listings",
    )
