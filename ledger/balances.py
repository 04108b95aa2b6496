"""
Balance rules for wallet mutations.

Every credit or debit is applied to an immutable Balances snapshot before
anything is written, so a rejected entry never leaves a partial write behind.
The four wallet totals always satisfy:

    total_earnings == available + pending + total_withdrawn
"""

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import (
    InsufficientFundsError,
    InvalidAmountError,
    LedgerIntegrityError,
    LedgerServiceError,
)
from .models import BalanceBucket, EntryType, SourceType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_amount(amount) -> Decimal:
    if isinstance(amount, bool):
        raise InvalidAmountError(f"Malformed amount: {amount!r}")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"Malformed amount: {amount!r}")
    if not value.is_finite():
        raise InvalidAmountError(f"Malformed amount: {amount!r}")
    if value <= 0:
        raise InvalidAmountError(f"Amount must be > 0, got {value}")
    if value != value.quantize(CENT, rounding=ROUND_HALF_UP):
        raise InvalidAmountError(f"Amount {value} has more than two decimal places")
    return round2(value)


@dataclass(frozen=True)
class Balances:
    available: Decimal = ZERO
    pending: Decimal = ZERO
    earnings: Decimal = ZERO
    withdrawn: Decimal = ZERO

    @classmethod
    def from_wallet(cls, wallet: dict) -> "Balances":
        return cls(
            available=wallet["available_balance"],
            pending=wallet["pending_balance"],
            earnings=wallet["total_earnings"],
            withdrawn=wallet["total_withdrawn"],
        )

    def as_wallet_fields(self) -> dict:
        return {
            "available_balance": self.available,
            "pending_balance": self.pending,
            "total_earnings": self.earnings,
            "total_withdrawn": self.withdrawn,
        }

    def is_consistent(self) -> bool:
        if min(self.available, self.pending, self.earnings, self.withdrawn) < 0:
            return False
        return self.earnings == self.available + self.pending + self.withdrawn

    def checked(self) -> "Balances":
        if not self.is_consistent():
            raise LedgerIntegrityError(f"Wallet balances out of balance: {self}")
        return self


def apply_entry(
    balances: Balances,
    entry_type: EntryType,
    amount: Decimal,
    source_type: SourceType,
    bucket: BalanceBucket = BalanceBucket.AVAILABLE,
) -> Balances:
    """Return the balances after one ledger entry, or raise without side effects.

    Withdrawal debits move money from available into total_withdrawn and their
    reversal credits move it back. Every other credit is new earnings; every
    other debit (fees, manual adjustments) takes earnings back out of the
    available balance.
    """
    amount = validate_amount(amount)

    if bucket == BalanceBucket.PENDING:
        if entry_type == EntryType.DEBIT:
            raise LedgerServiceError("Pending balance can only be reduced by promotion")
        if source_type == SourceType.WITHDRAWAL:
            raise LedgerServiceError("Withdrawal entries always target the available balance")
        return replace(
            balances,
            pending=balances.pending + amount,
            earnings=balances.earnings + amount,
        ).checked()

    if entry_type == EntryType.CREDIT:
        if source_type == SourceType.WITHDRAWAL:
            if amount > balances.withdrawn:
                raise InvalidAmountError(
                    f"Reversal of {amount} exceeds total withdrawn {balances.withdrawn}"
                )
            return replace(
                balances,
                available=balances.available + amount,
                withdrawn=balances.withdrawn - amount,
            ).checked()
        return replace(
            balances,
            available=balances.available + amount,
            earnings=balances.earnings + amount,
        ).checked()

    if amount > balances.available:
        raise InsufficientFundsError(
            f"Insufficient funds: requested {amount}, available {balances.available}"
        )
    if source_type == SourceType.WITHDRAWAL:
        return replace(
            balances,
            available=balances.available - amount,
            withdrawn=balances.withdrawn + amount,
        ).checked()
    return replace(
        balances,
        available=balances.available - amount,
        earnings=balances.earnings - amount,
    ).checked()


def promote(balances: Balances, amount: Decimal) -> Balances:
    amount = validate_amount(amount)
    if amount > balances.pending:
        raise InvalidAmountError(
            f"Cannot promote {amount}, pending balance is {balances.pending}"
        )
    return replace(
        balances,
        pending=balances.pending - amount,
        available=balances.available + amount,
    ).checked()


def replay(entries: list[dict]) -> Balances:
    """Rebuild available and pending balances from entries in sequence order.

    Only the two spendable buckets are reconstructed; the earnings and
    withdrawn totals are left at zero.
    """
    available = ZERO
    pending = ZERO
    for entry in sorted(entries, key=lambda e: e["sequence"]):
        signed = entry["amount"] if entry["entry_type"] == EntryType.CREDIT else -entry["amount"]
        if entry["bucket"] == BalanceBucket.PENDING:
            pending += signed
        else:
            available += signed
    return Balances(available=available, pending=pending)
