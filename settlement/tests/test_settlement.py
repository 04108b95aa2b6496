"""
Unit Tests for Weekly Settlement and Commissioner Payouts

Tests cover:
1. High scorer prize credits
2. Low scorer payment requests
3. Tie-breaking
4. Warnings for bad or missing scores
5. Settling a week at most once
6. Commissioner-issued payouts
7. Score sync through a provider
"""

import pytest
from decimal import Decimal

from ledger.errors import AccessDeniedError, InvalidAmountError, MemberNotFoundError
from ledger.models import (
    AddMemberRequest,
    BalanceBucket,
    CreateLeagueRequest,
    IssuePayoutRequest,
    LeagueSettings,
    PayoutReason,
    PayoutType,
    SourceType,
    UpdateLeagueSettingsRequest,
)
from settlement.models import MemberScore, ScoreFetchResult, ScoreOrigin
from settlement.payments import PaymentCollector
from settlement.trigger import SettlementTrigger, pick_high_scorer, pick_low_scorer


COMMISSIONER_ID = "commish-001"


class FakeScoreProvider:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def fetch(self, league, week):
        self.calls.append((league.id, week))
        return self.result


@pytest.fixture
def payments():
    return PaymentCollector()


@pytest.fixture
def weekly_league(leagues):
    league = leagues.create_league(
        COMMISSIONER_ID,
        CreateLeagueRequest(
            name="Tuesday Waiver Wire",
            team_name="Commish Crushers",
            settings=LeagueSettings(
                weekly_high_score_prize=Decimal("20.00"),
                weekly_low_score_fee=Decimal("10.00"),
                weekly_low_score_fee_enabled=True,
            ),
        ),
    )
    for user_id, team in (("A", "Alpha"), ("B", "Bravo"), ("C", "Charlie")):
        leagues.add_member(COMMISSIONER_ID, league.id, AddMemberRequest(user_id=user_id, team_name=team))
    return leagues.get_league(league.id)


@pytest.fixture
def trigger(ledger, leagues, payments):
    return SettlementTrigger(ledger, leagues, payments, score_provider=FakeScoreProvider(None))


def make_scores(**scores):
    return [MemberScore(member_id=member_id, score=score) for member_id, score in scores.items()]


def wallet_balance(ledger, league_id, user_id):
    return ledger.get_or_create_wallet(league_id, user_id).available_balance


class TestScorerSelection:
    """Tests for choosing the high and low scorer."""

    def test_plain_extremes(self):
        scores = {"A": Decimal("120"), "B": Decimal("95"), "C": Decimal("150")}

        assert pick_high_scorer(scores) == "C"
        assert pick_low_scorer(scores) == "B"

    def test_ties_go_to_lowest_member_id(self):
        scores = {"m3": Decimal("110"), "m1": Decimal("110"), "m2": Decimal("80"), "m0": Decimal("80")}

        assert pick_high_scorer(scores) == "m1"
        assert pick_low_scorer(scores) == "m0"


class TestSettleWeek:
    """Tests for the weekly settlement run."""

    def test_high_scorer_gets_exactly_the_prize(self, ledger, storage, trigger, weekly_league):
        result = trigger.settle_week(weekly_league.id, 1, make_scores(A=120, B=95, C=150))

        assert result.high_scorer == "C"
        assert len(result.credits_issued) == 1
        credit = result.credits_issued[0]
        assert credit.user_id == "C"
        assert credit.amount == Decimal("20.00")
        assert credit.source_type == SourceType.WEEKLY_HIGH_SCORE_PRIZE.value

        entries = ledger.get_transactions(credit.wallet_id).entries
        assert len(entries) == 1
        assert entries[0].source_type == SourceType.WEEKLY_HIGH_SCORE_PRIZE
        assert wallet_balance(ledger, weekly_league.id, "C") == Decimal("20.00")
        assert wallet_balance(ledger, weekly_league.id, "A") == Decimal("0.00")
        assert storage.payouts[credit.payout_id]["reason"] == PayoutReason.WEEKLY_HIGH_SCORE

    def test_low_scorer_gets_payment_request_not_debit(self, ledger, payments, trigger, weekly_league):
        result = trigger.settle_week(weekly_league.id, 1, make_scores(A=120, B=95, C=150))

        assert result.low_scorer == "B"
        assert len(result.payments_requested) == 1
        request = result.payments_requested[0]
        assert request.user_id == "B"
        assert request.amount == Decimal("10.00")
        assert request.payment_token.startswith(f"lps_{weekly_league.id}_1_")
        assert payments.get_by_token(request.payment_token).id == request.id

        # The low scorer's wallet is untouched
        wallet = ledger.get_or_create_wallet(weekly_league.id, "B")
        assert ledger.get_transactions(wallet.id).total_count == 0

    def test_fee_disabled_skips_payment_request(self, leagues, trigger, weekly_league):
        leagues.update_settings(
            COMMISSIONER_ID, weekly_league.id,
            UpdateLeagueSettingsRequest(weekly_low_score_fee_enabled=False),
        )

        result = trigger.settle_week(weekly_league.id, 1, make_scores(A=120, B=95, C=150))

        assert result.payments_requested == []
        assert len(result.credits_issued) == 1

    def test_zero_prize_credits_nothing(self, leagues, trigger, weekly_league):
        leagues.update_settings(
            COMMISSIONER_ID, weekly_league.id,
            UpdateLeagueSettingsRequest(weekly_high_score_prize=Decimal("0")),
        )

        result = trigger.settle_week(weekly_league.id, 1, make_scores(A=120, B=95, C=150))

        assert result.high_scorer == "C"
        assert result.credits_issued == []

    def test_tied_high_score_credits_one_member(self, ledger, trigger, weekly_league):
        result = trigger.settle_week(weekly_league.id, 2, make_scores(C=140, A=140, B=90))

        assert [c.user_id for c in result.credits_issued] == ["A"]
        assert wallet_balance(ledger, weekly_league.id, "C") == Decimal("0.00")

    def test_scores_are_recorded(self, trigger, weekly_league):
        trigger.settle_week(weekly_league.id, 3, make_scores(A="101.456", B=95, C=150))

        stored = trigger.get_weekly_scores(weekly_league.id, 3)

        assert [s.user_id for s in stored] == ["C", "A", "B"]
        assert stored[1].score == Decimal("101.46")
        assert all(s.source == ScoreOrigin.REAL for s in stored)


class TestSettlementWarnings:
    """Tests that problems become warnings instead of failures."""

    def test_unmapped_invalid_and_missing_scores(self, ledger, trigger, weekly_league):
        scores = [
            MemberScore(member_id="A", score=120),
            MemberScore(member_id="B", score="not-a-number"),
            MemberScore(member_id="stranger", score=200),
        ]

        result = trigger.settle_week(weekly_league.id, 1, scores)

        assert result.high_scorer == "A"
        assert result.low_scorer == "A"
        assert any("stranger" in w for w in result.warnings)
        assert any("Invalid score for B" in w for w in result.warnings)
        assert any("Charlie" in w for w in result.warnings)
        assert result.scores_recorded == 1
        assert wallet_balance(ledger, weekly_league.id, "A") == Decimal("20.00")

    def test_null_score_is_invalid(self, trigger, weekly_league):
        result = trigger.settle_week(weekly_league.id, 1, [MemberScore(member_id="A", score=None)])

        assert result.credits_issued == []
        assert result.high_scorer is None
        assert any("No valid scores" in w for w in result.warnings)

    def test_duplicate_score_keeps_first(self, trigger, weekly_league):
        scores = make_scores(A=100, B=90) + [MemberScore(member_id="A", score=500)]

        result = trigger.settle_week(weekly_league.id, 1, scores)

        assert result.high_scorer == "A"
        assert any("Duplicate score for A" in w for w in result.warnings)
        assert trigger.get_weekly_scores(weekly_league.id, 1)[0].score == Decimal("100.00")

    def test_resettling_a_week_issues_nothing(self, ledger, trigger, weekly_league):
        trigger.settle_week(weekly_league.id, 1, make_scores(A=120, B=95, C=150))

        again = trigger.settle_week(weekly_league.id, 1, make_scores(A=200, B=95, C=150))

        assert again.credits_issued == []
        assert again.payments_requested == []
        assert any("already settled" in w for w in again.warnings)
        assert wallet_balance(ledger, weekly_league.id, "C") == Decimal("20.00")
        assert wallet_balance(ledger, weekly_league.id, "A") == Decimal("0.00")

    def test_week_without_valid_scores_can_settle_later(self, ledger, trigger, weekly_league):
        empty = trigger.settle_week(weekly_league.id, 3, [MemberScore(member_id="A", score="n/a")])

        result = trigger.settle_week(weekly_league.id, 3, make_scores(A=120, B=95, C=150))

        assert any("No valid scores" in w for w in empty.warnings)
        assert not any("already settled" in w for w in result.warnings)
        assert [c.user_id for c in result.credits_issued] == ["C"]
        assert len(result.payments_requested) == 1
        assert wallet_balance(ledger, weekly_league.id, "C") == Decimal("20.00")

    def test_other_weeks_settle_independently(self, ledger, trigger, weekly_league):
        trigger.settle_week(weekly_league.id, 1, make_scores(A=120, B=95, C=150))
        trigger.settle_week(weekly_league.id, 2, make_scores(A=130, B=95, C=110))

        assert wallet_balance(ledger, weekly_league.id, "C") == Decimal("20.00")
        assert wallet_balance(ledger, weekly_league.id, "A") == Decimal("20.00")

    def test_bad_prize_amount_still_requests_fee(self, storage, ledger, trigger, weekly_league):
        storage.leagues[weekly_league.id]["settings"]["weekly_high_score_prize"] = Decimal("20.005")

        result = trigger.settle_week(weekly_league.id, 1, make_scores(A=120, B=95, C=150))

        assert result.credits_issued == []
        assert any("Could not credit weekly prize to C" in w for w in result.warnings)
        assert len(result.payments_requested) == 1
        assert wallet_balance(ledger, weekly_league.id, "C") == Decimal("0.00")


class TestIssuePayout:
    """Tests for commissioner-issued payouts."""

    def test_finalized_payout_credits_available(self, storage, trigger, weekly_league):
        response = trigger.issue_payout(COMMISSIONER_ID, IssuePayoutRequest(
            league_id=weekly_league.id, user_id="A", amount=Decimal("75.00"),
            reason=PayoutReason.CHAMPIONSHIP,
        ))

        assert response.wallet.available_balance == Decimal("75.00")
        assert response.ledger_entry.source_type == SourceType.LEAGUE_PAYOUT
        assert response.ledger_entry.description == "Championship Prize - Week N/A"
        assert response.fee_charged == Decimal("0.00")
        assert response.estimated_arrival == "3-5 business days"
        assert storage.platform_fees == {}

    def test_unfinalized_payout_credits_pending(self, trigger, weekly_league):
        response = trigger.issue_payout(COMMISSIONER_ID, IssuePayoutRequest(
            league_id=weekly_league.id, user_id="B", amount=Decimal("40.00"),
            reason=PayoutReason.WEEKLY_HIGH_SCORE, week=4, finalized=False,
        ))

        assert response.ledger_entry.bucket == BalanceBucket.PENDING
        assert response.ledger_entry.source_type == SourceType.WEEKLY_HIGH_SCORE_PRIZE
        assert response.wallet.pending_balance == Decimal("40.00")
        assert response.wallet.available_balance == Decimal("0.00")

    def test_instant_payout_records_platform_fee(self, storage, trigger, weekly_league):
        response = trigger.issue_payout(COMMISSIONER_ID, IssuePayoutRequest(
            league_id=weekly_league.id, user_id="C", amount=Decimal("100.00"),
            payout_type=PayoutType.INSTANT,
        ))

        assert response.fee_charged == Decimal("2.50")
        assert response.estimated_arrival == "Immediate"
        # The member is credited the amount net of the fee
        assert response.wallet.available_balance == Decimal("97.50")
        assert response.ledger_entry.amount == Decimal("97.50")
        assert response.payout.amount == Decimal("97.50")
        fees = list(storage.platform_fees.values())
        assert len(fees) == 1
        assert fees[0]["source_id"] == response.payout.id
        assert response.wallet.available_balance + fees[0]["amount"] == Decimal("100.00")

    def test_standard_payout_books_no_fee(self, storage, trigger, weekly_league):
        response = trigger.issue_payout(COMMISSIONER_ID, IssuePayoutRequest(
            league_id=weekly_league.id, user_id="C", amount=Decimal("100.00"),
        ))

        assert response.wallet.available_balance == Decimal("100.00")
        assert response.payout.amount == Decimal("100.00")
        assert storage.platform_fees == {}

    def test_only_commissioner_can_issue(self, trigger, weekly_league):
        with pytest.raises(AccessDeniedError):
            trigger.issue_payout("A", IssuePayoutRequest(
                league_id=weekly_league.id, user_id="A", amount=Decimal("10.00"),
            ))

    def test_recipient_must_be_member(self, trigger, weekly_league):
        with pytest.raises(MemberNotFoundError):
            trigger.issue_payout(COMMISSIONER_ID, IssuePayoutRequest(
                league_id=weekly_league.id, user_id="stranger", amount=Decimal("10.00"),
            ))

    def test_invalid_amount(self, ledger, trigger, weekly_league):
        with pytest.raises(InvalidAmountError):
            trigger.issue_payout(COMMISSIONER_ID, IssuePayoutRequest(
                league_id=weekly_league.id, user_id="A", amount=Decimal("0"),
            ))


class TestSyncScores:
    """Tests for pulling scores from a provider and settling them."""

    def test_sync_settles_fetched_scores(self, ledger, leagues, trigger, weekly_league):
        trigger.score_provider = FakeScoreProvider(ScoreFetchResult(
            scores=[
                MemberScore(member_id="A", score=88.2, source=ScoreOrigin.MOCK),
                MemberScore(member_id="B", score=131.7, source=ScoreOrigin.MOCK),
                MemberScore(member_id="C", score=102.0, source=ScoreOrigin.MOCK),
                MemberScore(member_id=COMMISSIONER_ID, score=99.9, source=ScoreOrigin.MOCK),
            ],
            origin=ScoreOrigin.MOCK,
            warnings=["ESPN unavailable (timeout); using mock scores"],
        ))

        result = trigger.sync_scores(weekly_league.id, 5)

        assert trigger.score_provider.calls == [(weekly_league.id, 5)]
        assert result.source == ScoreOrigin.MOCK
        assert result.scores_updated == 4
        assert result.settlement.high_scorer == "B"
        assert result.settlement.low_scorer == "A"
        assert result.settlement.warnings[0].startswith("ESPN unavailable")
        assert wallet_balance(ledger, weekly_league.id, "B") == Decimal("20.00")
        assert leagues.get_league(weekly_league.id).settings.last_score_sync is not None
        assert all(s.source == ScoreOrigin.MOCK for s in trigger.get_weekly_scores(weekly_league.id, 5))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
