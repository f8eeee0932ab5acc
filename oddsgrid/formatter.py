"""Turn joined event records into flat per-sport output rows, then filter and sort them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .dates import date_time_strings, target_timezone
from .logging_utils import _dbg, _log_step, _log_warn
from .odds import (
    fractional_to_decimal,
    fractional_to_football_decimal,
    full_time_fractions,
    home_handicap,
    round_half_up,
)
from .sofascore_client.events import EventJoinedRecord

SKIPPED_STATUSES = ("postponed", "canceled", "abandoned")
UNRESTRICTED_RANGE = (-1, 999)

_LEADING_INT_RE = re.compile(r"\s*(\d+)")


@dataclass(frozen=True)
class FootballRow:
    date: str
    time: str
    league: str
    round: int
    home: str
    away: str
    home_full_time_odd: Optional[float] = None
    away_full_time_odd: Optional[float] = None
    home_handicap: Optional[float] = None
    home_handicap_odd: Optional[float] = None
    home_form_wins: int = 0
    away_form_wins: int = 0
    home_expected_win_pct: Optional[float] = None
    home_actual_win_pct: Optional[float] = None
    away_expected_win_pct: Optional[float] = None
    away_actual_win_pct: Optional[float] = None
    home_vote_pct: Optional[float] = None
    away_vote_pct: Optional[float] = None
    result: Optional[str] = None
    home_played: Optional[int] = None
    home_points: Optional[int] = None
    away_played: Optional[int] = None
    away_points: Optional[int] = None
    home_played_at_home: Optional[int] = None
    home_points_at_home: Optional[int] = None
    away_played_away: Optional[int] = None
    away_points_away: Optional[int] = None

    sport = "football"

    @property
    def teams(self) -> Tuple[str, str]:
        return self.home, self.away

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "time": self.time,
            "league": self.league,
            "round": self.round,
            "home": self.home,
            "away": self.away,
            "homeFullTimeOdd": self.home_full_time_odd,
            "awayFullTimeOdd": self.away_full_time_odd,
            "homeHandicap": self.home_handicap,
            "homeHandicapOdd": self.home_handicap_odd,
            "homePregameFormLast5": self.home_form_wins,
            "awayPregameFormLast5": self.away_form_wins,
            "homeExpectedWinningPercentage": self.home_expected_win_pct,
            "homeActualWinningPercentage": self.home_actual_win_pct,
            "awayExpectedWinningPercentage": self.away_expected_win_pct,
            "awayActualWinningPercentage": self.away_actual_win_pct,
            "homeVoteWinPercentage": self.home_vote_pct,
            "awayVoteWinPercentage": self.away_vote_pct,
            "result": self.result,
            "homeTeamPlayedGames": self.home_played,
            "homeTeamPoints": self.home_points,
            "awayTeamPlayedGames": self.away_played,
            "awayTeamPoints": self.away_points,
            "HT_Played@H": self.home_played_at_home,
            "HT_Points@H": self.home_points_at_home,
            "AT_Played@A": self.away_played_away,
            "AT_Points@A": self.away_points_away,
        }


@dataclass(frozen=True)
class BasketballRow:
    date: str
    time: str
    league: str
    game: str
    home_odd: Optional[float] = None
    away_odd: Optional[float] = None
    home_form_wins: int = 0
    home_wins: int = 0
    home_loses: int = 0
    away_form_wins: int = 0
    away_wins: int = 0
    away_loses: int = 0
    result: Optional[str] = None

    sport = "basketball"

    @property
    def teams(self) -> Tuple[str, str]:
        home, _sep, away = self.game.partition(" - ")
        return home, away

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "time": self.time,
            "league": self.league,
            "game": self.game,
            "homeOdd": self.home_odd,
            "awayOdd": self.away_odd,
            "homePregameFormLast5": self.home_form_wins,
            "homeWins": self.home_wins,
            "homeLoses": self.home_loses,
            "awayPregameFormLast5": self.away_form_wins,
            "awayWins": self.away_wins,
            "awayLoses": self.away_loses,
            "result": self.result,
        }


OutputRow = Union[FootballRow, BasketballRow]


def sort_key(row: OutputRow) -> str:
    home, away = row.teams
    return f"{row.date}:{row.time}:{home}:{away}"


def _form_wins(side: Optional[Dict[str, Any]]) -> int:
    form = (side or {}).get("form")
    if not isinstance(form, list):
        return 0
    return sum(1 for f in form if f == "W")


def _record_split(side: Optional[Dict[str, Any]]) -> Tuple[int, int]:
    """Parse a "W-L" record string such as "31-12"."""
    value = (side or {}).get("value")
    if not isinstance(value, str):
        return 0, 0
    parts = value.split("-")
    if len(parts) < 2:
        return 0, 0

    def _int(s: str) -> int:
        m = _LEADING_INT_RE.match(s)
        return int(m.group(1)) if m else 0

    return _int(parts[0]), _int(parts[1])


def _result(event: Dict[str, Any]) -> Optional[str]:
    status = ((event.get("status") or {}).get("type")) or ""
    if status != "finished":
        return None
    h = (event.get("homeScore") or {}).get("current")
    a = (event.get("awayScore") or {}).get("current")
    if h is None or a is None:
        return None
    return f"{h}-{a}"


def _league(event: Dict[str, Any]) -> str:
    tournament = event.get("tournament") or {}
    category = (tournament.get("category") or {}).get("name")
    name = tournament.get("name")
    if category and name:
        return f"{category} {name}"
    return name or "Unknown League"


def _standing_row(payload: Optional[Dict[str, Any]], team_id: Any) -> Dict[str, Any]:
    groups = (payload or {}).get("standings")
    if not isinstance(groups, list) or not groups:
        return {}
    rows = (groups[0] or {}).get("rows")
    if not isinstance(rows, list):
        return {}
    for r in rows:
        if isinstance(r, dict) and (r.get("team") or {}).get("id") == team_id:
            return r
    return {}


def _vote_pcts(votes: Optional[Dict[str, Any]]) -> Tuple[Optional[float], Optional[float]]:
    v = (votes or {}).get("vote") or {}
    try:
        v1 = float(v.get("vote1") or 0)
        v2 = float(v.get("vote2") or 0)
        vx = float(v.get("voteX") or 0)
    except (TypeError, ValueError):
        return None, None
    total = v1 + v2 + vx
    if total <= 0:
        return None, None
    return round_half_up(v1 / total * 100, 1), round_half_up(v2 / total * 100, 1)


def _num(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _round_number(event: Dict[str, Any]) -> int:
    try:
        return int((event.get("roundInfo") or {}).get("round") or 0)
    except (TypeError, ValueError):
        return 0


def football_row(record: EventJoinedRecord, tz=None) -> FootballRow:
    event = record.event
    date, time = date_time_strings(int(event["startTimestamp"]), tz)
    home_team = event.get("homeTeam") or {}
    away_team = event.get("awayTeam") or {}

    home_frac, away_frac = full_time_fractions(record.markets)
    handicap, handicap_odd = home_handicap(record.markets, home_team)

    form = record.pregame_form or {}
    wo = record.winning_odds or {}
    home_wo = wo.get("home") or {}
    away_wo = wo.get("away") or {}
    home_vote, away_vote = _vote_pcts(record.votes)

    standings = record.standings or {}
    overall_home = _standing_row(standings.get("total"), home_team.get("id"))
    overall_away = _standing_row(standings.get("total"), away_team.get("id"))
    home_at_home = _standing_row(standings.get("home"), home_team.get("id"))
    away_away = _standing_row(standings.get("away"), away_team.get("id"))

    return FootballRow(
        date=date,
        time=time,
        league=_league(event),
        round=_round_number(event),
        home=home_team.get("shortName") or home_team.get("name") or "",
        away=away_team.get("shortName") or away_team.get("name") or "",
        home_full_time_odd=fractional_to_football_decimal(home_frac),
        away_full_time_odd=fractional_to_football_decimal(away_frac),
        home_handicap=handicap,
        home_handicap_odd=handicap_odd,
        home_form_wins=_form_wins(form.get("homeTeam")),
        away_form_wins=_form_wins(form.get("awayTeam")),
        home_expected_win_pct=_num(home_wo.get("expected")),
        home_actual_win_pct=_num(home_wo.get("actual")),
        away_expected_win_pct=_num(away_wo.get("expected")),
        away_actual_win_pct=_num(away_wo.get("actual")),
        home_vote_pct=home_vote,
        away_vote_pct=away_vote,
        result=_result(event),
        home_played=overall_home.get("matches"),
        home_points=overall_home.get("points"),
        away_played=overall_away.get("matches"),
        away_points=overall_away.get("points"),
        home_played_at_home=home_at_home.get("matches"),
        home_points_at_home=home_at_home.get("points"),
        away_played_away=away_away.get("matches"),
        away_points_away=away_away.get("points"),
    )


def _team_name(team: Dict[str, Any], fallback: str) -> str:
    return team.get("shortName") or team.get("name") or team.get("slug") or fallback


def basketball_row(record: EventJoinedRecord, tz=None) -> BasketballRow:
    event = record.event
    date, time = date_time_strings(int(event["startTimestamp"]), tz)
    home = _team_name(event.get("homeTeam") or {}, "Unknown Home")
    away = _team_name(event.get("awayTeam") or {}, "Unknown Away")
    home_frac, away_frac = full_time_fractions(record.markets)
    form = record.pregame_form or {}
    home_wins, home_loses = _record_split(form.get("homeTeam"))
    away_wins, away_loses = _record_split(form.get("awayTeam"))
    return BasketballRow(
        date=date,
        time=time,
        league=_league(event),
        game=f"{home} - {away}",
        home_odd=fractional_to_decimal(home_frac),
        away_odd=fractional_to_decimal(away_frac),
        home_form_wins=_form_wins(form.get("homeTeam")),
        home_wins=home_wins,
        home_loses=home_loses,
        away_form_wins=_form_wins(form.get("awayTeam")),
        away_wins=away_wins,
        away_loses=away_loses,
        result=_result(event),
    )


def format_rows(sport: str, records: Iterable[EventJoinedRecord]) -> List[OutputRow]:
    """Build rows for `sport`, skipping postponed/canceled/abandoned events, sorted by date/time/teams."""
    if sport == "football":
        build = football_row
    elif sport == "basketball":
        build = basketball_row
    else:
        raise ValueError(f"Sport {sport} is not supported!")

    tz = target_timezone()
    rows: List[OutputRow] = []
    for record in records:
        if record.status in SKIPPED_STATUSES:
            _dbg(f"skip event {record.event_id}: {record.status}")
            continue
        try:
            rows.append(build(record, tz))
        except (KeyError, TypeError, ValueError) as e:
            _log_warn(f"{sport} event {record.event_id} not formatted: {e}")
    return sorted(rows, key=sort_key)


def _is_unrestricted_range(spec: Dict[str, Any]) -> bool:
    return (spec.get("from"), spec.get("to")) == UNRESTRICTED_RANGE


def row_passes(row: OutputRow, output_params: Dict[str, Any]) -> bool:
    values = row.as_dict()
    for key, spec in (output_params or {}).items():
        value = values.get(key)
        if isinstance(spec, (list, tuple)):
            if spec and value not in spec:
                return False
        elif isinstance(spec, dict) and "from" in spec and "to" in spec:
            if _is_unrestricted_range(spec):
                continue
            if value is None:
                return False
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if not (spec["from"] <= value <= spec["to"]):
                return False
    return True


def filter_rows(rows: Sequence[OutputRow], output_params: Dict[str, Any]) -> List[OutputRow]:
    kept = [r for r in rows if row_passes(r, output_params)]
    _log_step(f"Filtered {len(rows) - len(kept)}, out of {len(rows)}")
    return kept
