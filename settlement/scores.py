import logging
import random
from datetime import datetime
from typing import Optional

import requests

from ledger.config import settings
from ledger.models import League

from .models import MemberScore, ScoreFetchResult, ScoreOrigin

logger = logging.getLogger(__name__)


class ScoreSourceError(Exception):
    pass


class EspnScoreSource:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.ESPN_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.ESPN_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def fetch_team_scores(self, league: League, week: int) -> dict[int, float]:
        """Return ``{espn_team_id: points}`` for one scoring period."""
        league_settings = league.settings
        season = league_settings.espn_season_id or str(datetime.now().year)
        url = f"{self.base_url}/seasons/{season}/segments/0/leagues/{league_settings.espn_league_id}"
        params = [("view", "mTeam"), ("view", "mMatchupScore"), ("scoringPeriodId", week)]
        cookies = None
        if league_settings.espn_s2 and league_settings.espn_swid:
            cookies = {"espn_s2": league_settings.espn_s2, "SWID": league_settings.espn_swid}

        try:
            response = self.session.get(url, params=params, cookies=cookies, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise ScoreSourceError(f"ESPN API timed out after {self.timeout}s")
        except requests.RequestException as e:
            raise ScoreSourceError(f"ESPN API request failed: {e}")

        if response.status_code == 401:
            raise ScoreSourceError("ESPN API authentication failed. Check your cookies for private leagues.")
        if response.status_code == 404:
            raise ScoreSourceError("ESPN league not found. Check your League ID and Season.")
        if response.status_code != 200:
            raise ScoreSourceError(f"ESPN API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise ScoreSourceError("ESPN API returned invalid JSON")

        try:
            return self._parse_schedule(data, week)
        except (AttributeError, TypeError, ValueError) as e:
            raise ScoreSourceError(f"ESPN API returned an unexpected payload: {e}")

    def _parse_schedule(self, data: dict, week: int) -> dict[int, float]:
        team_scores = {}
        for matchup in data.get("schedule") or []:
            if matchup.get("matchupPeriodId") != week:
                continue
            for side in ("home", "away"):
                team = matchup.get(side)
                if team and "teamId" in team:
                    team_scores[int(team["teamId"])] = float(team.get("totalPoints") or 0)
        return team_scores

    def fetch(self, league: League, week: int) -> ScoreFetchResult:
        team_scores = self.fetch_team_scores(league, week)
        scores = []
        warnings = []
        for member in league.members:
            label = member.team_name or member.user_id
            if member.external_team_id is None:
                warnings.append(f"Unmapped team: {label} has no ESPN team id")
                continue
            points = team_scores.get(member.external_team_id)
            if points is None:
                warnings.append(f"No ESPN score for {label} (team {member.external_team_id}) in week {week}")
                continue
            scores.append(MemberScore(member_id=member.user_id, score=round(points, 2), source=ScoreOrigin.REAL))
        return ScoreFetchResult(scores=scores, origin=ScoreOrigin.REAL, warnings=warnings)


class MockScoreSource:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def fetch(self, league: League, week: int) -> ScoreFetchResult:
        scores = [
            MemberScore(
                member_id=member.user_id,
                score=round(settings.MOCK_SCORE_MIN + self.rng.random() * settings.MOCK_SCORE_SPREAD, 2),
                source=ScoreOrigin.MOCK,
            )
            for member in league.members
        ]
        return ScoreFetchResult(scores=scores, origin=ScoreOrigin.MOCK)


class ScoreProvider:
    """Pick the league's real score source and fall back to mock scores."""

    def __init__(self, espn: Optional[EspnScoreSource] = None, mock: Optional[MockScoreSource] = None):
        self.espn = espn or EspnScoreSource()
        self.mock = mock or MockScoreSource()

    def fetch(self, league: League, week: int) -> ScoreFetchResult:
        if not league.settings.espn_league_id:
            return self.mock.fetch(league, week)
        try:
            return self.espn.fetch(league, week)
        except ScoreSourceError as e:
            logger.warning("[ESPN] Error fetching scores: %s, falling back to mock data", e)
            result = self.mock.fetch(league, week)
            result.warnings.insert(0, f"ESPN unavailable ({e}); using mock scores")
            return result
