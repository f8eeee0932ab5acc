"""Per-date event aggregation: which endpoints to call and how to join them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional

from ..dates import date_time_strings, target_timezone
from ..logging_utils import _dbg, _log_step, _log_warn
from . import endpoints
from .base import SUPPORTED_SPORTS, ClientError, ErrorKind
from .session import RequestClient


@dataclass
class EventJoinedRecord:
    event: Dict[str, Any]
    markets: Optional[Dict[str, Any]] = None
    winning_odds: Optional[Dict[str, Any]] = None
    pregame_form: Optional[Dict[str, Any]] = None
    votes: Optional[Dict[str, Any]] = None
    standings: Optional[Dict[str, Any]] = None
    incidents: Optional[Dict[str, Any]] = None

    @property
    def event_id(self) -> Optional[int]:
        try:
            return int(self.event.get("id"))
        except Exception:
            return None

    @property
    def status(self) -> str:
        return str(((self.event.get("status") or {}).get("type")) or "").strip().lower()


async def _optional(aw: Awaitable[Any]) -> Any:
    """A 404 means the resource does not exist for this event: leave the field empty."""
    try:
        return await aw
    except ClientError as e:
        if e.kind == ErrorKind.NOT_FOUND:
            _dbg(f"not found: {e.url}")
            return None
        raise


async def _settle(*aws: Awaitable[Any]) -> List[Any]:
    """Run sibling fetches together; after all settle, re-raise the first failure."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for r in results:
        if isinstance(r, BaseException):
            raise r
    return list(results)


def events_on_date(events: List[Dict[str, Any]], date: str) -> List[Dict[str, Any]]:
    tz = target_timezone()
    out = []
    for ev in events or []:
        ts = ev.get("startTimestamp")
        if ts is None:
            continue
        try:
            day, _time = date_time_strings(int(ts), tz)
        except Exception:
            continue
        if day == date:
            out.append(ev)
    return out


async def fetch_scheduled_events(
    client: RequestClient, sport: str, date: str, *, deadline: Optional[float] = None
) -> List[Dict[str, Any]]:
    payload = await _optional(client.get_json(endpoints.scheduled_events_url(sport, date), deadline=deadline))
    events = (payload or {}).get("events") or []
    return [e for e in events if isinstance(e, dict)]


async def _fetch_standings(
    client: RequestClient, tournament_id: Optional[int], season_id: Optional[int], deadline: Optional[float]
) -> Optional[Dict[str, Any]]:
    if not tournament_id or not season_id:
        return None
    total, home, away = await _settle(
        *(
            _optional(client.get_json(endpoints.standings_url(tournament_id, season_id, kind), deadline=deadline))
            for kind in endpoints.STANDINGS_TYPES
        )
    )
    if total is None:
        return None
    return {"total": total, "home": home, "away": away}


async def _football_record(client: RequestClient, event: Dict[str, Any], deadline: Optional[float]) -> EventJoinedRecord:
    event_id = int(event["id"])
    tournament_id = (event.get("tournament") or {}).get("id")

    specific = await _optional(client.get_json(endpoints.event_url(event_id), deadline=deadline))
    season_id = (((specific or {}).get("event") or {}).get("season") or {}).get("id")

    winning_odds, form, votes, markets, standings, incidents = await _settle(
        _optional(client.get_json(endpoints.winning_odds_url(event_id), deadline=deadline)),
        _optional(client.get_json(endpoints.pregame_form_url(event_id), deadline=deadline)),
        _optional(client.get_json(endpoints.votes_url(event_id), deadline=deadline)),
        _optional(client.get_json(endpoints.markets_url(event_id), deadline=deadline)),
        _fetch_standings(client, tournament_id, season_id, deadline),
        _optional(client.get_json(endpoints.incidents_url(event_id), deadline=deadline)),
    )
    return EventJoinedRecord(
        event=event,
        markets=markets,
        winning_odds=winning_odds,
        pregame_form=form,
        votes=votes,
        standings=standings,
        incidents=incidents,
    )


async def _basketball_record(client: RequestClient, event: Dict[str, Any], deadline: Optional[float]) -> EventJoinedRecord:
    event_id = int(event["id"])
    markets, form = await _settle(
        _optional(client.get_json(endpoints.markets_url(event_id), deadline=deadline)),
        _optional(client.get_json(endpoints.pregame_form_url(event_id), deadline=deadline)),
    )
    return EventJoinedRecord(event=event, markets=markets, pregame_form=form)


async def fetch_for_date(
    client: RequestClient, sport: str, date: str, *, deadline: Optional[float] = None
) -> List[EventJoinedRecord]:
    """
    Fetch every event of `sport` that starts on `date` (target timezone) and
    join its sub-resources. A failing event is logged and left out; the rest
    of the date still completes.
    """
    if sport not in SUPPORTED_SPORTS:
        raise ValueError(f"Sport {sport} is not supported!")

    scheduled = await fetch_scheduled_events(client, sport, date, deadline=deadline)
    events = events_on_date(scheduled, date)
    _log_step(f"{sport} {date}: {len(events)}/{len(scheduled)} scheduled events on date")

    build = _football_record if sport == "football" else _basketball_record
    results = await asyncio.gather(*(build(client, ev, deadline) for ev in events), return_exceptions=True)

    records: List[EventJoinedRecord] = []
    for ev, res in zip(events, results):
        if isinstance(res, BaseException) and not isinstance(res, Exception):
            raise res
        if isinstance(res, Exception):
            _log_warn(f"event {ev.get('id')} skipped: {res}")
            if isinstance(res, ClientError) and res.kind == ErrorKind.FORBIDDEN:
                _log_warn(f"proxy pool stats: {client.pool.stats().as_dict()}")
            continue
        records.append(res)
    _log_step(f"{sport} {date}: joined {len(records)} events")
    return records
