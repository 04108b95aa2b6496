"""
Withdrawal requests and their settlement state machine.

A withdrawal holds the full gross amount on the wallet as soon as it is
requested. The transfer processor later reports the outcome through
``resolve``:

    pending -> processing -> completed
    pending | processing -> failed   (gross amount credited back, once)
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .balances import ZERO, round2, validate_amount
from .config import settings
from .errors import (
    AccessDeniedError,
    AlreadyResolvedError,
    InvalidStateTransitionError,
    RequestNotFoundError,
)
from .models import (
    EntryType,
    FeeType,
    LedgerEntry,
    PayoutType,
    SourceType,
    WithdrawalRequest,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .service import LedgerService

logger = logging.getLogger(__name__)


def compute_fee(amount: Decimal, payout_type: PayoutType) -> tuple[Decimal, Decimal]:
    """Return ``(fee_amount, net_amount)`` for a gross amount."""
    amount = round2(amount)
    if payout_type == PayoutType.INSTANT:
        fee = round2(amount * settings.INSTANT_FEE_PERCENT / Decimal(100))
    else:
        fee = ZERO
    return fee, amount - fee


def estimated_arrival(payout_type: PayoutType) -> str:
    if payout_type == PayoutType.INSTANT:
        return settings.INSTANT_ARRIVAL
    return settings.STANDARD_ARRIVAL


class WithdrawalManager:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage

    def create_withdrawal(
        self,
        member_id: str,
        wallet_id: UUID,
        amount: Decimal,
        payout_type: PayoutType = PayoutType.STANDARD,
    ) -> WithdrawalResponse:
        amount = validate_amount(amount)
        wallet = self.ledger.get_wallet(wallet_id)
        if wallet.user_id != member_id:
            raise AccessDeniedError(f"Wallet {wallet_id} does not belong to {member_id}")

        fee_amount, net_amount = compute_fee(amount, payout_type)
        request_id = uuid4()
        label = "Instant" if payout_type == PayoutType.INSTANT else "Standard"

        with self.ledger.atomic(wallet_id) as unit:
            entry = unit.record(
                EntryType.DEBIT,
                amount,
                SourceType.WITHDRAWAL,
                f"Withdrawal request - {label}",
                source_id=request_id,
            )
            request_data = {
                "id": request_id,
                "wallet_id": wallet_id,
                "league_id": wallet.league_id,
                "user_id": member_id,
                "amount": amount,
                "payout_type": payout_type,
                "fee_amount": fee_amount,
                "net_amount": net_amount,
                "status": WithdrawalStatus.PENDING,
                "estimated_arrival": estimated_arrival(payout_type),
                "requested_at": datetime.now(timezone.utc),
                "processed_at": None,
                "transfer_reference": None,
                "failure_reason": None,
                "debit_entry_id": entry["id"],
                "reversal_entry_id": None,
            }
            unit.stage(self.storage.withdrawals, request_id, request_data)

        logger.info(
            "Withdrawal %s created: wallet=%s amount=%s fee=%s net=%s type=%s",
            request_id, wallet_id, amount, fee_amount, net_amount, payout_type.value,
        )
        return WithdrawalResponse(
            withdrawal=WithdrawalRequest(**request_data),
            ledger_entry=LedgerEntry(**entry),
            message="Withdrawal requested",
        )

    def resolve(
        self,
        request_id: UUID,
        status: WithdrawalStatus,
        transfer_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> WithdrawalResponse:
        if status == WithdrawalStatus.PROCESSING:
            return self.mark_processing(request_id, transfer_reference)
        if status == WithdrawalStatus.COMPLETED:
            return self.complete(request_id, transfer_reference)
        if status == WithdrawalStatus.FAILED:
            return self.fail(request_id, failure_reason)
        raise InvalidStateTransitionError(f"Cannot resolve a withdrawal to {status.value}")

    def mark_processing(self, request_id: UUID, transfer_reference: Optional[str] = None) -> WithdrawalResponse:
        wallet_id = self._wallet_for(request_id)
        with self.ledger.atomic(wallet_id) as unit:
            request = self._load(request_id)
            if request.status == WithdrawalStatus.PROCESSING:
                return self._unchanged(request)
            if not request.can_process():
                raise InvalidStateTransitionError(
                    f"Cannot move withdrawal from {request.status.value} to processing"
                )
            updated = self._updated(request, status=WithdrawalStatus.PROCESSING,
                                    transfer_reference=transfer_reference or request.transfer_reference)
            unit.stage(self.storage.withdrawals, request_id, updated)

        logger.info("Withdrawal %s is processing", request_id)
        return WithdrawalResponse(withdrawal=WithdrawalRequest(**updated), message="Withdrawal processing")

    def complete(self, request_id: UUID, transfer_reference: Optional[str] = None) -> WithdrawalResponse:
        wallet_id = self._wallet_for(request_id)
        with self.ledger.atomic(wallet_id) as unit:
            request = self._load(request_id)
            if request.status == WithdrawalStatus.COMPLETED:
                return self._unchanged(request)
            if request.status == WithdrawalStatus.FAILED:
                raise AlreadyResolvedError(f"Withdrawal {request_id} already failed")
            if not request.can_complete():
                raise InvalidStateTransitionError(
                    f"Cannot complete withdrawal in {request.status.value} state"
                )
            now = datetime.now(timezone.utc)
            updated = self._updated(
                request,
                status=WithdrawalStatus.COMPLETED,
                processed_at=now,
                transfer_reference=transfer_reference or request.transfer_reference,
            )
            unit.stage(self.storage.withdrawals, request_id, updated)
            if request.fee_amount > 0:
                fee_id = uuid4()
                unit.stage(self.storage.platform_fees, fee_id, {
                    "id": fee_id,
                    "source_id": request_id,
                    "league_id": request.league_id,
                    "amount": request.fee_amount,
                    "fee_type": FeeType.INSTANT_WITHDRAWAL,
                    "created_at": now,
                })

        logger.info("Withdrawal %s completed (ref=%s)", request_id, updated["transfer_reference"])
        return WithdrawalResponse(withdrawal=WithdrawalRequest(**updated), message="Withdrawal completed")

    def fail(self, request_id: UUID, failure_reason: Optional[str] = None) -> WithdrawalResponse:
        wallet_id = self._wallet_for(request_id)
        with self.ledger.atomic(wallet_id) as unit:
            request = self._load(request_id)
            if request.status == WithdrawalStatus.FAILED:
                return self._unchanged(request)
            if request.status == WithdrawalStatus.COMPLETED:
                raise AlreadyResolvedError(f"Withdrawal {request_id} already completed")
            if not request.can_fail():
                raise InvalidStateTransitionError(
                    f"Cannot fail withdrawal in {request.status.value} state"
                )
            entry = unit.record(
                EntryType.CREDIT,
                request.amount,
                SourceType.WITHDRAWAL,
                f"Withdrawal reversal: {failure_reason or 'transfer failed'}",
                source_id=request_id,
            )
            updated = self._updated(
                request,
                status=WithdrawalStatus.FAILED,
                processed_at=datetime.now(timezone.utc),
                failure_reason=failure_reason,
                reversal_entry_id=entry["id"],
            )
            unit.stage(self.storage.withdrawals, request_id, updated)

        logger.warning(
            "Withdrawal %s failed (%s); %s credited back to wallet %s",
            request_id, failure_reason, request.amount, wallet_id,
        )
        return WithdrawalResponse(
            withdrawal=WithdrawalRequest(**updated),
            ledger_entry=LedgerEntry(**entry),
            message="Withdrawal failed and reversed",
        )

    def get_withdrawal(self, request_id: UUID) -> WithdrawalRequest:
        return self._load(request_id)

    def get_user_withdrawals(self, member_id: str) -> list[WithdrawalRequest]:
        withdrawals = [
            WithdrawalRequest(**w) for w in list(self.storage.withdrawals.values())
            if w["user_id"] == member_id
        ]
        withdrawals.sort(key=lambda w: w.requested_at, reverse=True)
        return withdrawals

    def _wallet_for(self, request_id: UUID) -> UUID:
        return self._load(request_id).wallet_id

    def _load(self, request_id: UUID) -> WithdrawalRequest:
        request_data = self.storage.withdrawals.get(request_id)
        if not request_data:
            raise RequestNotFoundError(f"Withdrawal {request_id} not found")
        return WithdrawalRequest(**request_data)

    def _updated(self, request: WithdrawalRequest, **changes) -> dict:
        return {**request.model_dump(), **changes}

    def _unchanged(self, request: WithdrawalRequest) -> WithdrawalResponse:
        logger.info("Withdrawal %s already %s; ignoring repeat notification", request.id, request.status.value)
        return WithdrawalResponse(
            withdrawal=request,
            changed=False,
            message=f"Withdrawal already {request.status.value}",
        )
