import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .errors import AccessDeniedError, LeagueNotFoundError
from .models import (
    AddMemberRequest,
    CreateLeagueRequest,
    League,
    UpdateLeagueSettingsRequest,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

# Optional ESPN link fields; an explicit null unlinks the league
CLEARABLE_SETTINGS = ("espn_league_id", "espn_season_id", "espn_s2", "espn_swid")


class LeagueDirectory:
    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def create_league(self, commissioner_id: str, request: CreateLeagueRequest) -> League:
        now = datetime.now(timezone.utc)
        league_id = self.storage.next_league_id()
        league_data = {
            "id": league_id,
            "name": request.name,
            "commissioner_id": commissioner_id,
            "members": [{
                "user_id": commissioner_id,
                "team_name": request.team_name,
                "external_team_id": None,
                "joined_at": now,
            }],
            "settings": request.settings.model_dump(),
            "total_dues": Decimal("0.00"),
            "created_at": now,
        }
        with self.storage.registry_lock:
            self.storage.leagues[league_id] = league_data
        logger.info("League %s (%s) created by %s", league_id, request.name, commissioner_id)
        return League(**league_data)

    def get_league(self, league_id: int) -> League:
        league_data = self.storage.leagues.get(league_id)
        if not league_data:
            raise LeagueNotFoundError(f"League {league_id} not found")
        return League(**league_data)

    def require_commissioner(self, league_id: int, user_id: str) -> League:
        league = self.get_league(league_id)
        if not league.is_commissioner(user_id):
            raise AccessDeniedError(f"Only the commissioner of league {league_id} can do this")
        return league

    def add_member(self, actor_id: str, league_id: int, request: AddMemberRequest) -> League:
        self.require_commissioner(league_id, actor_id)
        with self.storage.registry_lock:
            league_data = self.storage.leagues[league_id]
            members = [m for m in league_data["members"] if m["user_id"] != request.user_id]
            members.append({
                "user_id": request.user_id,
                "team_name": request.team_name,
                "external_team_id": request.external_team_id,
                "joined_at": datetime.now(timezone.utc),
            })
            league_data["members"] = members
        return self.get_league(league_id)

    def update_settings(self, actor_id: str, league_id: int, request: UpdateLeagueSettingsRequest) -> League:
        self.require_commissioner(league_id, actor_id)
        with self.storage.registry_lock:
            league_data = self.storage.leagues[league_id]
            changes = {
                key: value
                for key, value in request.model_dump(exclude_unset=True).items()
                if value is not None or key in CLEARABLE_SETTINGS
            }
            league_data["settings"] = {**league_data["settings"], **changes}
        logger.info("League %s settings updated by %s: %s", league_id, actor_id, sorted(changes))
        return self.get_league(league_id)

    def record_score_sync(self, league_id: int) -> None:
        with self.storage.registry_lock:
            league_data = self.storage.leagues.get(league_id)
            if not league_data:
                raise LeagueNotFoundError(f"League {league_id} not found")
            league_data["settings"] = {
                **league_data["settings"],
                "last_score_sync": datetime.now(timezone.utc),
            }

    def add_dues(self, league_id: int, amount: Decimal) -> None:
        with self.storage.registry_lock:
            league_data = self.storage.leagues.get(league_id)
            if not league_data:
                raise LeagueNotFoundError(f"League {league_id} not found")
            league_data["total_dues"] = league_data["total_dues"] + amount
