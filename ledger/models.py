from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class EntryType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class SourceType(str, Enum):
    LEAGUE_PAYOUT = "league-payout"
    WEEKLY_HIGH_SCORE_PRIZE = "weekly-high-score-prize"
    WITHDRAWAL = "withdrawal"
    FEE = "fee"
    MANUAL_ADJUSTMENT = "manual-adjustment"


class BalanceBucket(str, Enum):
    AVAILABLE = "AVAILABLE"
    PENDING = "PENDING"


class PayoutType(str, Enum):
    STANDARD = "standard"
    INSTANT = "instant"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutReason(str, Enum):
    WEEKLY_HIGH_SCORE = "weekly_high_score"
    CHAMPIONSHIP = "championship"
    REFUND = "refund"
    OTHER = "other"


class FeeType(str, Enum):
    INSTANT_PAYOUT = "instant_payout"
    INSTANT_WITHDRAWAL = "instant_withdrawal"


TERMINAL_STATUSES = (WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED)


class Wallet(BaseModel):
    id: UUID
    league_id: int
    user_id: str
    available_balance: Decimal
    pending_balance: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WalletSummary(Wallet):
    league_name: str


class LedgerEntry(BaseModel):
    id: UUID
    wallet_id: UUID
    sequence: int
    entry_type: EntryType
    amount: Decimal
    source_type: SourceType
    bucket: BalanceBucket = BalanceBucket.AVAILABLE
    source_id: Optional[UUID] = None
    description: str
    balance_after: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WalletDetail(WalletSummary):
    transactions: list[LedgerEntry]


class WithdrawalRequest(BaseModel):
    id: UUID
    wallet_id: UUID
    league_id: int
    user_id: str
    amount: Decimal
    payout_type: PayoutType
    fee_amount: Decimal
    net_amount: Decimal
    status: WithdrawalStatus
    estimated_arrival: str
    requested_at: datetime
    processed_at: Optional[datetime] = None
    transfer_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    debit_entry_id: Optional[UUID] = None
    reversal_entry_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_process(self) -> bool:
        return self.status == WithdrawalStatus.PENDING

    def can_complete(self) -> bool:
        return self.status == WithdrawalStatus.PROCESSING

    def can_fail(self) -> bool:
        return self.status in (WithdrawalStatus.PENDING, WithdrawalStatus.PROCESSING)


class Payout(BaseModel):
    id: UUID
    league_id: int
    user_id: str
    amount: Decimal
    reason: PayoutReason
    week: Optional[int] = None
    payout_type: PayoutType = PayoutType.STANDARD
    fee_amount: Decimal = Decimal("0.00")
    status: str = "approved"
    entry_id: Optional[UUID] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlatformFee(BaseModel):
    id: UUID
    source_id: UUID
    league_id: int
    amount: Decimal
    fee_type: FeeType
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateWithdrawalRequest(BaseModel):
    amount: Decimal
    payout_type: PayoutType = PayoutType.STANDARD

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 100.00, "payout_type": "instant"}
    })


class ResolveWithdrawalRequest(BaseModel):
    status: WithdrawalStatus = Field(..., description="processing, completed or failed")
    transfer_reference: Optional[str] = None
    failure_reason: Optional[str] = None


class WithdrawalResponse(BaseModel):
    withdrawal: WithdrawalRequest
    ledger_entry: Optional[LedgerEntry] = None
    changed: bool = True
    message: str


class IssuePayoutRequest(BaseModel):
    league_id: int
    user_id: str
    amount: Decimal
    reason: PayoutReason = PayoutReason.OTHER
    week: Optional[int] = None
    payout_type: PayoutType = PayoutType.STANDARD
    finalized: bool = Field(default=True, description="False credits the pending balance")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "league_id": 1,
            "user_id": "member-123",
            "amount": 250.00,
            "reason": "championship",
            "payout_type": "standard"
        }
    })


class PayoutResponse(BaseModel):
    payout: Payout
    wallet: Wallet
    ledger_entry: LedgerEntry
    fee_charged: Decimal
    estimated_arrival: str
    wallet_credited: bool = True


class PromotePendingRequest(BaseModel):
    amount: Optional[Decimal] = None


class TransactionHistoryResponse(BaseModel):
    wallet_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    available_balance: Decimal


class TreasuryResponse(BaseModel):
    league_id: int
    league_name: str
    total_available: Decimal
    total_pending: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal
    total_platform_fees: Decimal
    member_wallets: list[Wallet]


class LeagueSettings(BaseModel):
    weekly_high_score_prize: Decimal = Field(default=Decimal("0.00"), ge=0)
    weekly_low_score_fee: Decimal = Field(default=Decimal("0.00"), ge=0)
    weekly_low_score_fee_enabled: bool = False
    espn_league_id: Optional[str] = None
    espn_season_id: Optional[str] = None
    espn_s2: Optional[str] = None
    espn_swid: Optional[str] = None
    last_score_sync: Optional[datetime] = None


class LeagueMember(BaseModel):
    user_id: str
    team_name: Optional[str] = None
    external_team_id: Optional[int] = None
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class League(BaseModel):
    id: int
    name: str
    commissioner_id: str
    members: list[LeagueMember] = Field(default_factory=list)
    settings: LeagueSettings = Field(default_factory=LeagueSettings)
    total_dues: Decimal = Decimal("0.00")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_commissioner(self, user_id: str) -> bool:
        return self.commissioner_id == user_id

    def has_member(self, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self.members)


class CreateLeagueRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    settings: LeagueSettings = Field(default_factory=LeagueSettings)
    team_name: Optional[str] = None


class AddMemberRequest(BaseModel):
    user_id: str
    team_name: Optional[str] = None
    external_team_id: Optional[int] = None


class UpdateLeagueSettingsRequest(BaseModel):
    weekly_high_score_prize: Optional[Decimal] = Field(default=None, ge=0)
    weekly_low_score_fee: Optional[Decimal] = Field(default=None, ge=0)
    weekly_low_score_fee_enabled: Optional[bool] = None
    espn_league_id: Optional[str] = None
    espn_season_id: Optional[str] = None
    espn_s2: Optional[str] = None
    espn_swid: Optional[str] = None


class PromotePendingResponse(BaseModel):
    wallet: Wallet
    ledger_entry: LedgerEntry
    message: str
