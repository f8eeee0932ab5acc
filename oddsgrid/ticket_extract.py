"""Locate the embedded ticket-listing JSON in a rendered page-source table."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple

from playwright.async_api import Page

from .errors import OddsgridError
from .logging_utils import _dbg, _log_step

PRICE_MARKER = "rawPrice"

# The listing payload usually sits near the end of the source view; the
# window below is only a hint, every row is still scanned when it misses.
WINDOW_START = 225
WINDOW_END = 250
WINDOW_TAIL = 25


class TicketScrapeError(OddsgridError):
    pass


class ExtractionNotFound(TicketScrapeError):
    pass


@dataclass(frozen=True)
class TicketRow:
    raw_price: Any
    section: Optional[str] = None
    row: Optional[str] = None
    seat: Optional[str] = None
    quantity: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "TicketRow":
        quantity = item.get("quantity")
        if quantity is None:
            quantity = item.get("availableTickets")
        try:
            quantity = int(quantity) if quantity is not None else None
        except (TypeError, ValueError):
            quantity = None

        def _text(*keys: str) -> Optional[str]:
            for k in keys:
                v = item.get(k)
                if v not in (None, ""):
                    return str(v)
            return None

        return cls(
            raw_price=item.get(PRICE_MARKER),
            section=_text("section", "sectionName"),
            row=_text("row", "rowName"),
            seat=_text("seat", "seatFrom"),
            quantity=quantity,
            data=dict(item),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)


def scan_window(count: int) -> Tuple[int, int]:
    start = min(WINDOW_START, max(0, count - WINDOW_TAIL))
    end = min(WINDOW_END, count)
    return start, end


def scan_order(count: int) -> Iterator[int]:
    """Window rows first, then every remaining row from the top."""
    start, end = scan_window(count)
    yield from range(start, end)
    for i in range(count):
        if not start <= i < end:
            yield i


def parse_ticket_payload(text: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    if not text or PRICE_MARKER not in text:
        return None
    try:
        doc = json.loads(text.strip())
    except ValueError:
        return None
    grid = doc.get("grid") if isinstance(doc, dict) else None
    items = grid.get("items") if isinstance(grid, dict) else None
    if not isinstance(items, list):
        return None
    priced = [it for it in items if isinstance(it, dict) and PRICE_MARKER in it]
    return priced or None


async def locate_ticket_items(count: int, read_text: Callable[[int], Awaitable[Optional[str]]]) -> Tuple[int, List[Dict[str, Any]]]:
    """
    Scan `count` rows through `read_text(index)` and return
    (row index, listing items) for the first row holding a valid payload.
    """
    if count <= 0:
        raise ExtractionNotFound("no rows found in the source table")
    start, end = scan_window(count)
    _dbg(f"ticket scan: {count} rows, window {start}..{end}")
    for i in scan_order(count):
        try:
            text = await read_text(i)
        except Exception as e:
            _dbg(f"ticket scan: row {i} unreadable: {e}")
            continue
        items = parse_ticket_payload(text)
        if items:
            _log_step(f"ticket payload found in row {i} ({len(items)} listings)")
            return i, items
    raise ExtractionNotFound(f"unable to find {PRICE_MARKER} data in {count} rows")


async def extract_ticket_rows(page: Page) -> List[TicketRow]:
    tbodies = page.locator("tbody")
    if await tbodies.count() == 0:
        raise ExtractionNotFound("no tbody elements found on the page")
    rows = tbodies.first.locator("tr")
    count = await rows.count()

    async def _read(i: int) -> Optional[str]:
        return await rows.nth(i).text_content()

    _idx, items = await locate_ticket_items(count, _read)
    return [TicketRow.from_item(it) for it in items]
