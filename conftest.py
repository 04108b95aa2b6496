"""
Pytest fixtures shared by the ledger and settlement tests.
Every fixture builds on one fresh InMemoryStorage per test.
"""

from decimal import Decimal

import pytest

from ledger.leagues import LeagueDirectory
from ledger.models import AddMemberRequest, CreateLeagueRequest, LeagueSettings, SourceType
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage
from ledger.withdrawals import WithdrawalManager

COMMISSIONER_ID = "commish-001"
MEMBER_ID = "member-001"


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def ledger(storage):
    return LedgerService(storage)


@pytest.fixture
def leagues(storage):
    return LeagueDirectory(storage)


@pytest.fixture
def withdrawals(ledger):
    return WithdrawalManager(ledger)


@pytest.fixture
def league(leagues):
    created = leagues.create_league(
        COMMISSIONER_ID,
        CreateLeagueRequest(name="Sunday Degenerates", settings=LeagueSettings()),
    )
    return leagues.add_member(COMMISSIONER_ID, created.id, AddMemberRequest(user_id=MEMBER_ID, team_name="Gridiron Gang"))


@pytest.fixture
def funded_wallet(ledger, league):
    """A member wallet holding 100.00 available."""
    wallet = ledger.get_or_create_wallet(league.id, MEMBER_ID)
    ledger.credit_available(wallet.id, Decimal("100.00"), SourceType.LEAGUE_PAYOUT, "Season payout")
    return wallet.id
