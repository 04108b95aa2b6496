"""
Unit Tests for Score Sources

Tests cover:
1. ESPN matchup parsing and team mapping
2. ESPN error handling
3. Mock score generation
4. Provider fallback from ESPN to mock scores
"""

import random
from datetime import datetime, timezone

import pytest
import requests

from ledger.models import League, LeagueMember, LeagueSettings
from settlement.models import ScoreOrigin
from settlement.scores import EspnScoreSource, MockScoreSource, ScoreProvider, ScoreSourceError


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if self.payload is None:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, cookies=None, timeout=None):
        self.calls.append({"url": url, "params": params, "cookies": cookies, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def make_league(espn_league_id="123456", **settings):
    now = datetime.now(timezone.utc)
    return League(
        id=7,
        name="ESPN League",
        commissioner_id="commish",
        members=[
            LeagueMember(user_id="commish", team_name="Commish Crushers", external_team_id=1, joined_at=now),
            LeagueMember(user_id="alice", team_name="Alice's Aces", external_team_id=2, joined_at=now),
            LeagueMember(user_id="bob", team_name="Bob's Bombers", joined_at=now),
        ],
        settings=LeagueSettings(espn_league_id=espn_league_id, espn_season_id="2024", **settings),
        created_at=now,
    )


SCHEDULE = {
    "schedule": [
        {"matchupPeriodId": 3, "home": {"teamId": 1, "totalPoints": 112.36}, "away": {"teamId": 2, "totalPoints": 98.1}},
        {"matchupPeriodId": 3, "home": {"teamId": 5, "totalPoints": 130.0}, "away": {"teamId": 6, "totalPoints": 77.7}},
        {"matchupPeriodId": 4, "home": {"teamId": 1, "totalPoints": 150.0}, "away": {"teamId": 2, "totalPoints": 60.0}},
    ]
}


class TestEspnScoreSource:
    """Tests for the ESPN fantasy API client."""

    def test_parses_requested_week_only(self):
        session = FakeSession(FakeResponse(payload=SCHEDULE))
        source = EspnScoreSource(base_url="https://espn.test/ffl/", timeout=5, session=session)

        team_scores = source.fetch_team_scores(make_league(), 3)

        assert team_scores == {1: 112.36, 2: 98.1, 5: 130.0, 6: 77.7}
        call = session.calls[0]
        assert call["url"] == "https://espn.test/ffl/seasons/2024/segments/0/leagues/123456"
        assert ("scoringPeriodId", 3) in call["params"]
        assert call["timeout"] == 5
        assert call["cookies"] is None

    def test_private_league_sends_cookies(self):
        session = FakeSession(FakeResponse(payload=SCHEDULE))
        source = EspnScoreSource(session=session)

        source.fetch_team_scores(make_league(espn_s2="s2-cookie", espn_swid="{SWID}"), 3)

        assert session.calls[0]["cookies"] == {"espn_s2": "s2-cookie", "SWID": "{SWID}"}

    def test_fetch_maps_members_and_warns_on_unmapped(self):
        source = EspnScoreSource(session=FakeSession(FakeResponse(payload=SCHEDULE)))

        result = source.fetch(make_league(), 3)

        assert result.origin == ScoreOrigin.REAL
        assert {s.member_id: s.score for s in result.scores} == {"commish": 112.36, "alice": 98.1}
        assert result.warnings == ["Unmapped team: Bob's Bombers has no ESPN team id"]

    def test_fetch_warns_when_team_has_no_score(self):
        payload = {"schedule": [{"matchupPeriodId": 3, "home": {"teamId": 1, "totalPoints": 101.0}}]}
        source = EspnScoreSource(session=FakeSession(FakeResponse(payload=payload)))

        result = source.fetch(make_league(), 3)

        assert [s.member_id for s in result.scores] == ["commish"]
        assert any("No ESPN score for Alice's Aces" in w for w in result.warnings)

    @pytest.mark.parametrize("status_code, message", [
        (401, "authentication failed"),
        (404, "league not found"),
        (500, "ESPN API error: 500"),
    ])
    def test_http_errors(self, status_code, message):
        source = EspnScoreSource(session=FakeSession(FakeResponse(status_code=status_code)))

        with pytest.raises(ScoreSourceError, match=message):
            source.fetch_team_scores(make_league(), 3)

    def test_invalid_json(self):
        source = EspnScoreSource(session=FakeSession(FakeResponse(payload=None)))

        with pytest.raises(ScoreSourceError, match="invalid JSON"):
            source.fetch_team_scores(make_league(), 3)

    @pytest.mark.parametrize("payload", [
        ["not", "an", "object"],
        {"schedule": [{"matchupPeriodId": 3, "home": {"teamId": "abc", "totalPoints": 90.0}}]},
        {"schedule": [{"matchupPeriodId": 3, "home": {"teamId": 1, "totalPoints": "lots"}}]},
    ])
    def test_unexpected_payload(self, payload):
        source = EspnScoreSource(session=FakeSession(FakeResponse(payload=payload)))

        with pytest.raises(ScoreSourceError, match="unexpected payload"):
            source.fetch_team_scores(make_league(), 3)

    def test_timeout(self):
        source = EspnScoreSource(session=FakeSession(error=requests.exceptions.Timeout()))

        with pytest.raises(ScoreSourceError, match="timed out"):
            source.fetch_team_scores(make_league(), 3)


class TestMockScoreSource:
    """Tests for generated scores."""

    def test_scores_every_member_in_range(self):
        result = MockScoreSource(random.Random(42)).fetch(make_league(), 3)

        assert result.origin == ScoreOrigin.MOCK
        assert len(result.scores) == 3
        for score in result.scores:
            assert score.source == ScoreOrigin.MOCK
            assert 80.0 <= score.score <= 180.0

    def test_seeded_rng_is_repeatable(self):
        first = MockScoreSource(random.Random(7)).fetch(make_league(), 1)
        second = MockScoreSource(random.Random(7)).fetch(make_league(), 1)

        assert [s.score for s in first.scores] == [s.score for s in second.scores]


class TestScoreProvider:
    """Tests for choosing and falling back between sources."""

    def test_league_without_espn_uses_mock(self):
        session = FakeSession(FakeResponse(payload=SCHEDULE))
        provider = ScoreProvider(EspnScoreSource(session=session), MockScoreSource(random.Random(1)))

        result = provider.fetch(make_league(espn_league_id=None), 3)

        assert result.origin == ScoreOrigin.MOCK
        assert session.calls == []

    def test_espn_league_uses_real_scores(self):
        provider = ScoreProvider(EspnScoreSource(session=FakeSession(FakeResponse(payload=SCHEDULE))))

        result = provider.fetch(make_league(), 3)

        assert result.origin == ScoreOrigin.REAL

    def test_auth_failure_falls_back_to_mock(self):
        provider = ScoreProvider(
            EspnScoreSource(session=FakeSession(FakeResponse(status_code=401))),
            MockScoreSource(random.Random(3)),
        )

        result = provider.fetch(make_league(), 3)

        assert result.origin == ScoreOrigin.MOCK
        assert len(result.scores) == 3
        assert result.warnings[0].startswith("ESPN unavailable")

    def test_malformed_payload_falls_back_to_mock(self):
        provider = ScoreProvider(
            EspnScoreSource(session=FakeSession(FakeResponse(payload=["unexpected"]))),
            MockScoreSource(random.Random(3)),
        )

        result = provider.fetch(make_league(), 3)

        assert result.origin == ScoreOrigin.MOCK
        assert result.warnings[0].startswith("ESPN unavailable")

    def test_network_error_falls_back_to_mock(self):
        provider = ScoreProvider(
            EspnScoreSource(session=FakeSession(error=requests.exceptions.ConnectionError("refused"))),
            MockScoreSource(random.Random(3)),
        )

        result = provider.fetch(make_league(), 3)

        assert result.origin == ScoreOrigin.MOCK
        assert "refused" in result.warnings[0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
