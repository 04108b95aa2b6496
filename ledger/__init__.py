"""
Wallet Ledger for League Dues and Payouts

This module provides:
- Per-member, per-league wallets backed by immutable ledger entries
- Available / pending / earned / withdrawn balance rules
- Withdrawal lifecycle: pending → processing → completed / failed (reversed)
- Standard and instant payout tiers with instant fees
- Per-wallet locking so concurrent requests serialize
"""

from .models import (
    EntryType,
    SourceType,
    BalanceBucket,
    PayoutType,
    WithdrawalStatus,
    Wallet,
    LedgerEntry,
    WithdrawalRequest,
)
from .service import LedgerService
from .withdrawals import WithdrawalManager

__all__ = [
    "EntryType",
    "SourceType",
    "BalanceBucket",
    "PayoutType",
    "WithdrawalStatus",
    "Wallet",
    "LedgerEntry",
    "WithdrawalRequest",
    "LedgerService",
    "WithdrawalManager",
]
