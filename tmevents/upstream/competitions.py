"""
Competition/Winner Locator

Finds the daily cup competition for a calendar date and walks its
round -> match -> result hierarchy to the winning participant.

The date matching is a documented heuristic chain, tried per page in this
order because upstream naming drifts over time:
    1. strict  - daily-cup keyword and "YYYY-MM-DD" in the name
    2. loose   - "cotd" and the bare day number as a space-delimited token
    3. date    - a start-date field falling on the target UTC date
It is not expected to be exact; keep the order when changing it.

Absent data (no competition, round, match or results) yields None.
HTTP failures raise UpstreamError and leave the caller's state untouched.
"""

import math
from typing import Optional

import requests

from tmevents.config import (
    COMPETITION_MAX_PAGES,
    COMPETITION_PAGE_SIZE,
    COTD_KEYWORDS,
    MATCHES_PAGE_SIZE,
    MEET_URL,
    RESULTS_PAGE_SIZE,
)
from tmevents.upstream.auth import TokenCache
from tmevents.upstream.http import expect_json, fetch_with_retry, first_present
from tmevents.utils import date_key, parse_utc_datetime, setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)

START_DATE_FIELDS = ("startDate", "beginDate", "startTime")


def looks_like_cotd(competition) -> bool:
    name = str((competition or {}).get("name") or "").lower()
    return any(keyword in name for keyword in COTD_KEYWORDS)


def competition_id(competition):
    return first_present(competition, "id", "liveId", "uid")


def _starts_on(competition, year: int, month: int, day: int) -> bool:
    for key in START_DATE_FIELDS:
        value = competition.get(key)
        if value is None:
            continue
        started = parse_utc_datetime(value)
        if started is None:
            continue
        return (started.year, started.month, started.day) == (year, month, day)
    return False


def match_competition(competitions: list, year: int, month: int, day: int) -> Optional[dict]:
    """
    Apply the strict -> loose -> start-date heuristic chain to one page.

    Args:
        competitions: One page of competition objects
        year, month, day: Target date

    Returns:
        The first matching competition, or None
    """
    wanted = date_key(year, month, day)
    candidates = [c for c in competitions if isinstance(c, dict) and looks_like_cotd(c)]

    for c in candidates:
        if wanted in str(c.get("name") or ""):
            return c

    day_token = f" {day} "
    for c in candidates:
        name = str(c.get("name") or "")
        if "cotd" in name.lower() and day_token in name:
            return c

    for c in candidates:
        if _starts_on(c, year, month, day):
            return c

    return None


def pick_final_round(rounds: list) -> Optional[dict]:
    """Prefer a round named like "final"; otherwise the highest position."""
    rounds = [r for r in rounds if isinstance(r, dict)]
    if not rounds:
        return None
    for r in rounds:
        if "final" in str(r.get("name") or "").lower():
            return r
    # max() keeps the first of equal positions
    return max(rounds, key=lambda r: as_number(r.get("position")))


def as_number(value) -> float:
    """Numeric value of an int, float or numeric string; anything else is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0
    return 0


def _result_sort_key(result):
    rank = first_present(result, "rank", "position")
    rank = rank if isinstance(rank, (int, float)) and not isinstance(rank, bool) else math.inf
    points = result.get("points")
    points = -points if isinstance(points, (int, float)) and not isinstance(points, bool) else 0
    return (rank, points)


def rank_results(results: list) -> list:
    """Ascending rank (position as fallback, missing last), ties by descending points."""
    return sorted((r for r in results if isinstance(r, dict)), key=_result_sort_key)


class CompetitionLocator:
    """
    Locate daily-cup competitions and their winners on the Meet API.

    Args:
        session: Shared HTTP session
        tokens: TokenCache for the Live audience
        page_size: Competitions per listing page
        max_pages: Upper bound on listing pages scanned per date
    """

    def __init__(self, session: requests.Session, tokens: TokenCache,
                 page_size: int = COMPETITION_PAGE_SIZE, max_pages: int = COMPETITION_MAX_PAGES):
        self.session = session
        self.tokens = tokens
        self.page_size = page_size
        self.max_pages = max_pages

    def _get(self, path: str, what: str, **params):
        r = fetch_with_retry(
            self.session, "GET", f"{MEET_URL}{path}",
            params=params or None,
            headers=self.tokens.nadeo_headers(),
        )
        return expect_json(r, what)

    def list_competitions(self, offset: int = 0, length: int = COMPETITION_PAGE_SIZE):
        return self._get("/api/competitions", "competitions list", offset=offset, length=length)

    def find_competition(self, year: int, month: int, day: int) -> Optional[dict]:
        """Page through the competition list until the heuristic chain matches."""
        for page in range(self.max_pages):
            offset = page * self.page_size
            data = self.list_competitions(offset, self.page_size)

            if isinstance(data, list):
                competitions, total = data, None
            else:
                competitions = first_present(data, "competitions", "items", default=[])
                total = first_present(data, "total")

            if not isinstance(competitions, list) or not competitions:
                break

            match = match_competition(competitions, year, month, day)
            if match:
                logger.debug(f"  -> match: {match.get('name')} id: {competition_id(match)}")
                return match

            if total is None:
                total = offset + len(competitions)
            if offset + len(competitions) >= total:
                break

        return None

    def winner_for_competition(self, comp_id) -> Optional[str]:
        """Final round -> first match -> best-ranked participant."""
        if not comp_id:
            return None

        rounds = self._get(f"/api/competitions/{comp_id}/rounds", "rounds")
        if not isinstance(rounds, list) or not rounds:
            return None

        final_round = pick_final_round(rounds)
        if not final_round or not final_round.get("id"):
            return None

        matches = self._get(
            f"/api/rounds/{final_round['id']}/matches", "matches",
            length=MATCHES_PAGE_SIZE, offset=0,
        )
        listed = matches.get("matches") if isinstance(matches, dict) else matches
        if not isinstance(listed, list) or not listed:
            return None
        match = listed[0]
        if not isinstance(match, dict) or not match.get("id"):
            return None

        results = self._get(
            f"/api/matches/{match['id']}/results", "results",
            length=RESULTS_PAGE_SIZE, offset=0,
        )
        listed = results.get("results") if isinstance(results, dict) else results
        if not isinstance(listed, list) or not listed:
            return None

        ranked = rank_results(listed)
        if not ranked:
            return None
        return ranked[0].get("participant")

    def current_competition_id(self):
        """Id of the cup currently listed as "of the day", or None (HTTP 204)."""
        r = fetch_with_retry(
            self.session, "GET", f"{MEET_URL}/api/cup-of-the-day/current",
            headers=self.tokens.nadeo_headers(),
        )
        if r.status_code == 204:
            return None
        data = expect_json(r, "current cup")
        competition = data.get("competition") if isinstance(data, dict) else None
        return first_present(competition, "id", "liveId")

    def current_winner(self) -> Optional[str]:
        """Winner of the current cup so far, or None before results exist."""
        return self.winner_for_competition(self.current_competition_id())

    def find_winner(self, year: int, month: int, day: int) -> Optional[str]:
        """
        Winner account id for the daily cup on a date, or None if not found.

        Raises:
            UpstreamError: On HTTP failure at any step
        """
        competition = self.find_competition(year, month, day)
        if not competition:
            return None
        return self.winner_for_competition(competition_id(competition))
