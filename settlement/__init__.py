"""
Weekly Settlement for League Wallets

Provides score ingestion (ESPN with a mock fallback), lowest-scorer fee
payment requests, and the settlement trigger that turns weekly scores and
commissioner payouts into ledger credits.
"""

from .models import (
    MemberScore,
    PaymentRequest,
    ScoreOrigin,
    SettlementResult,
)
from .payments import PaymentCollector, PaymentNotFoundError
from .scores import EspnScoreSource, MockScoreSource, ScoreProvider
from .trigger import SettlementTrigger

__all__ = [
    "MemberScore",
    "PaymentRequest",
    "ScoreOrigin",
    "SettlementResult",
    "PaymentCollector",
    "PaymentNotFoundError",
    "EspnScoreSource",
    "MockScoreSource",
    "ScoreProvider",
    "SettlementTrigger",
]
