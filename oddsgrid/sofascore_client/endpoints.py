"""Sofascore API URL builders."""

from __future__ import annotations

from .base import SOFASCORE_API_BASE

STANDINGS_TYPES = ("total", "home", "away")


def scheduled_events_url(sport: str, date: str) -> str:
    return f"{SOFASCORE_API_BASE}/sport/{sport}/scheduled-events/{date}"


def event_url(event_id: int) -> str:
    return f"{SOFASCORE_API_BASE}/event/{int(event_id)}"


def markets_url(event_id: int) -> str:
    return f"{SOFASCORE_API_BASE}/event/{int(event_id)}/odds/1/all"


def winning_odds_url(event_id: int) -> str:
    return f"{SOFASCORE_API_BASE}/event/{int(event_id)}/provider/1/winning-odds"


def pregame_form_url(event_id: int) -> str:
    return f"{SOFASCORE_API_BASE}/event/{int(event_id)}/pregame-form"


def votes_url(event_id: int) -> str:
    return f"{SOFASCORE_API_BASE}/event/{int(event_id)}/votes"


def incidents_url(event_id: int) -> str:
    return f"{SOFASCORE_API_BASE}/event/{int(event_id)}/incidents"


def standings_url(tournament_id: int, season_id: int, kind: str = "total") -> str:
    if kind not in STANDINGS_TYPES:
        raise ValueError(f"unknown standings type: {kind}")
    return f"{SOFASCORE_API_BASE}/tournament/{int(tournament_id)}/season/{int(season_id)}/standings/{kind}"
