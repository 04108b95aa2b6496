from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class ScoreOrigin(str, Enum):
    REAL = "real"
    MOCK = "mock"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class MemberScore(BaseModel):
    member_id: str
    score: Any = None
    source: ScoreOrigin = ScoreOrigin.REAL


class WeeklyScore(BaseModel):
    league_id: int
    user_id: str
    week: int
    score: Decimal
    source: ScoreOrigin
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentRequest(BaseModel):
    id: UUID
    league_id: int
    user_id: str
    week: int
    amount: Decimal
    reason: str = "lowest_score_fee"
    payment_token: str
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CreditIssued(BaseModel):
    user_id: str
    wallet_id: UUID
    amount: Decimal
    source_type: str
    payout_id: UUID
    entry_id: UUID


class SettlementResult(BaseModel):
    league_id: int
    week: int
    credits_issued: list[CreditIssued] = Field(default_factory=list)
    payments_requested: list[PaymentRequest] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    scores_recorded: int = 0
    high_scorer: Optional[str] = None
    low_scorer: Optional[str] = None


class ScoreFetchResult(BaseModel):
    scores: list[MemberScore] = Field(default_factory=list)
    origin: ScoreOrigin
    warnings: list[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    league_id: int
    week: int
    source: ScoreOrigin
    scores_updated: int
    settlement: SettlementResult


class SettleWeekRequest(BaseModel):
    scores: list[MemberScore]

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "scores": [
                {"member_id": "member-a", "score": 120.5, "source": "real"},
                {"member_id": "member-b", "score": 95.0, "source": "real"}
            ]
        }
    })


class SyncScoresRequest(BaseModel):
    week: int = Field(..., ge=1, le=25)
