"""
Turns league events into ledger credits.

Weekly settlement: the highest scorer gets the league's weekly prize on the
available balance; the lowest scorer gets a fee payment request, never a
ledger debit. When several members share the extreme score, the lowest member
id wins. Each member is credited in its own wallet unit of work, so one bad
member never rolls back another, and problems come back as warnings.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import uuid4

from ledger.balances import round2, validate_amount
from ledger.errors import LedgerServiceError, MemberNotFoundError
from ledger.leagues import LeagueDirectory
from ledger.models import (
    BalanceBucket,
    EntryType,
    FeeType,
    IssuePayoutRequest,
    League,
    LedgerEntry,
    Payout,
    PayoutReason,
    PayoutResponse,
    PayoutType,
    SourceType,
)
from ledger.service import LedgerService
from ledger.withdrawals import compute_fee, estimated_arrival

from .models import (
    CreditIssued,
    MemberScore,
    SettlementResult,
    SyncResult,
    WeeklyScore,
)
from .payments import PaymentCollector
from .scores import ScoreProvider

logger = logging.getLogger(__name__)

REASON_LABELS = {
    PayoutReason.WEEKLY_HIGH_SCORE: "Weekly High Score",
    PayoutReason.CHAMPIONSHIP: "Championship Prize",
    PayoutReason.REFUND: "Refund",
    PayoutReason.OTHER: "Payout",
}

REASON_SOURCE_TYPES = {
    PayoutReason.WEEKLY_HIGH_SCORE: SourceType.WEEKLY_HIGH_SCORE_PRIZE,
    PayoutReason.CHAMPIONSHIP: SourceType.LEAGUE_PAYOUT,
    PayoutReason.REFUND: SourceType.MANUAL_ADJUSTMENT,
    PayoutReason.OTHER: SourceType.LEAGUE_PAYOUT,
}


def pick_high_scorer(scores: dict[str, Decimal]) -> str:
    return min(scores.items(), key=lambda item: (-item[1], item[0]))[0]


def pick_low_scorer(scores: dict[str, Decimal]) -> str:
    return min(scores.items(), key=lambda item: (item[1], item[0]))[0]


class SettlementTrigger:
    def __init__(
        self,
        ledger: LedgerService,
        leagues: LeagueDirectory,
        payments: PaymentCollector,
        score_provider: Optional[ScoreProvider] = None,
    ):
        self.ledger = ledger
        self.leagues = leagues
        self.payments = payments
        self.score_provider = score_provider or ScoreProvider()
        self.storage = ledger.storage

    def settle_week(self, league_id: int, week: int, scores: list[MemberScore]) -> SettlementResult:
        league = self.leagues.get_league(league_id)
        result = SettlementResult(league_id=league_id, week=week)

        if (league_id, week) in self.storage.settled_weeks:
            result.warnings.append(f"Week {week} already settled; nothing issued")
            return result

        valid = self._collect_scores(league, scores, result.warnings)
        if not valid:
            result.warnings.append(f"No valid scores for week {week}; nothing issued")
            return result

        # Only a run with usable scores claims the week
        with self.storage.registry_lock:
            if (league_id, week) in self.storage.settled_weeks:
                result.warnings.append(f"Week {week} already settled; nothing issued")
                return result
            self.storage.settled_weeks[(league_id, week)] = {"settled_at": datetime.now(timezone.utc)}

        result.scores_recorded = self._record_scores(league_id, week, valid, scores)

        result.high_scorer = pick_high_scorer(valid)
        result.low_scorer = pick_low_scorer(valid)

        prize = league.settings.weekly_high_score_prize
        if prize > 0:
            try:
                result.credits_issued.append(self._credit_prize(league, week, result.high_scorer, prize))
            except LedgerServiceError as e:
                logger.error("Week %s prize for %s in league %s failed: %s", week, result.high_scorer, league_id, e)
                result.warnings.append(f"Could not credit weekly prize to {result.high_scorer}: {e}")

        fee = league.settings.weekly_low_score_fee
        if league.settings.weekly_low_score_fee_enabled and fee > 0:
            try:
                result.payments_requested.append(
                    self.payments.request_payment(league_id, result.low_scorer, week, round2(fee))
                )
            except LedgerServiceError as e:
                logger.error("Week %s fee request for %s in league %s failed: %s", week, result.low_scorer, league_id, e)
                result.warnings.append(f"Could not request low-score fee from {result.low_scorer}: {e}")

        logger.info(
            "Settled league %s week %s: HPS=%s LPS=%s credits=%d payments=%d warnings=%d",
            league_id, week, result.high_scorer, result.low_scorer,
            len(result.credits_issued), len(result.payments_requested), len(result.warnings),
        )
        return result

    def sync_scores(self, league_id: int, week: int) -> SyncResult:
        league = self.leagues.get_league(league_id)
        fetched = self.score_provider.fetch(league, week)
        settlement = self.settle_week(league_id, week, fetched.scores)
        settlement.warnings[:0] = fetched.warnings
        self.leagues.record_score_sync(league_id)
        return SyncResult(
            league_id=league_id,
            week=week,
            source=fetched.origin,
            scores_updated=settlement.scores_recorded,
            settlement=settlement,
        )

    def get_weekly_scores(self, league_id: int, week: int) -> list[WeeklyScore]:
        self.leagues.get_league(league_id)
        stored = list(self.storage.weekly_scores.get((league_id, week), {}).values())
        scores = [WeeklyScore(**s) for s in stored]
        scores.sort(key=lambda s: (-s.score, s.user_id))
        return scores

    def issue_payout(self, actor_id: str, request: IssuePayoutRequest) -> PayoutResponse:
        league = self.leagues.require_commissioner(request.league_id, actor_id)
        if not league.has_member(request.user_id):
            raise MemberNotFoundError(f"User {request.user_id} is not a member of league {league.id}")
        amount = validate_amount(request.amount)
        fee_amount, net_amount = compute_fee(amount, request.payout_type)
        source_type = REASON_SOURCE_TYPES[request.reason]
        bucket = BalanceBucket.AVAILABLE if request.finalized else BalanceBucket.PENDING
        description = f"{REASON_LABELS[request.reason]} - Week {request.week or 'N/A'}"

        wallet = self.ledger.get_or_create_wallet(league.id, request.user_id)
        payout_id = uuid4()
        now = datetime.now(timezone.utc)
        with self.ledger.atomic(wallet.id) as unit:
            entry = unit.record(EntryType.CREDIT, net_amount, source_type, description, bucket, payout_id)
            payout_data = {
                "id": payout_id,
                "league_id": league.id,
                "user_id": request.user_id,
                "amount": net_amount,
                "reason": request.reason,
                "week": request.week,
                "payout_type": request.payout_type,
                "fee_amount": fee_amount,
                "status": "approved",
                "entry_id": entry["id"],
                "created_by": actor_id,
                "created_at": now,
            }
            unit.stage(self.storage.payouts, payout_id, payout_data)
            if fee_amount > 0:
                fee_id = uuid4()
                unit.stage(self.storage.platform_fees, fee_id, {
                    "id": fee_id,
                    "source_id": payout_id,
                    "league_id": league.id,
                    "amount": fee_amount,
                    "fee_type": FeeType.INSTANT_PAYOUT,
                    "created_at": now,
                })

        logger.info(
            "Payout %s issued by %s: %s to %s in league %s (%s, fee %s)",
            payout_id, actor_id, net_amount, request.user_id, league.id, bucket.value, fee_amount,
        )
        return PayoutResponse(
            payout=Payout(**payout_data),
            wallet=unit.committed,
            ledger_entry=LedgerEntry(**entry),
            fee_charged=fee_amount,
            estimated_arrival=estimated_arrival(request.payout_type),
        )

    def _collect_scores(self, league: League, scores: list[MemberScore], warnings: list[str]) -> dict[str, Decimal]:
        valid: dict[str, Decimal] = {}
        for entry in scores:
            if not league.has_member(entry.member_id):
                warnings.append(f"Unmapped member {entry.member_id}: not in league {league.id}")
                continue
            if entry.member_id in valid:
                warnings.append(f"Duplicate score for {entry.member_id}; keeping the first")
                continue
            score = self._parse_score(entry.score)
            if score is None:
                warnings.append(f"Invalid score for {entry.member_id}: {entry.score!r}")
                continue
            valid[entry.member_id] = score

        for member in league.members:
            if member.user_id not in valid and not any(s.member_id == member.user_id for s in scores):
                warnings.append(f"No score reported for {member.team_name or member.user_id}")
        return valid

    def _parse_score(self, raw) -> Optional[Decimal]:
        if raw is None or isinstance(raw, bool):
            return None
        try:
            score = Decimal(str(raw))
        except (InvalidOperation, ValueError):
            return None
        if not score.is_finite():
            return None
        return round2(score)

    def _record_scores(self, league_id: int, week: int, valid: dict[str, Decimal],
                       scores: list[MemberScore]) -> int:
        sources = {}
        for s in scores:
            sources.setdefault(s.member_id, s.source)
        recorded = 0
        now = datetime.now(timezone.utc)
        with self.storage.registry_lock:
            week_scores = self.storage.weekly_scores.setdefault((league_id, week), {})
            for member_id, score in valid.items():
                if member_id in week_scores:
                    continue
                week_scores[member_id] = {
                    "league_id": league_id,
                    "user_id": member_id,
                    "week": week,
                    "score": score,
                    "source": sources[member_id],
                    "created_at": now,
                }
                recorded += 1
        return recorded

    def _credit_prize(self, league: League, week: int, member_id: str, prize: Decimal) -> CreditIssued:
        wallet = self.ledger.get_or_create_wallet(league.id, member_id)
        payout_id = uuid4()
        with self.ledger.atomic(wallet.id) as unit:
            entry = unit.record(
                EntryType.CREDIT,
                prize,
                SourceType.WEEKLY_HIGH_SCORE_PRIZE,
                f"Week {week} High Point Scorer Prize",
                source_id=payout_id,
            )
            unit.stage(self.storage.payouts, payout_id, {
                "id": payout_id,
                "league_id": league.id,
                "user_id": member_id,
                "amount": entry["amount"],
                "reason": PayoutReason.WEEKLY_HIGH_SCORE,
                "week": week,
                "payout_type": PayoutType.STANDARD,
                "fee_amount": Decimal("0.00"),
                "status": "approved",
                "entry_id": entry["id"],
                "created_by": None,
                "created_at": datetime.now(timezone.utc),
            })
        logger.info("Week %s HPS prize %s credited to %s (wallet %s)", week, prize, member_id, wallet.id)
        return CreditIssued(
            user_id=member_id,
            wallet_id=wallet.id,
            amount=entry["amount"],
            source_type=SourceType.WEEKLY_HIGH_SCORE_PRIZE.value,
            payout_id=payout_id,
            entry_id=entry["id"],
        )
