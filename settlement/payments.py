import logging
import secrets
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from ledger.errors import LedgerServiceError

from .models import PaymentRequest, PaymentStatus

logger = logging.getLogger(__name__)


class PaymentNotFoundError(LedgerServiceError):
    pass


class PaymentCollector:
    """Outstanding dues owed by members, collected by the payment processor.

    Lowest-scorer fees land here instead of on the ledger: the member has not
    paid yet, so there is nothing to debit.
    """

    def __init__(self, on_paid: Optional[Callable[[PaymentRequest], None]] = None):
        self.requests: dict[UUID, dict] = {}
        self.token_index: dict[str, UUID] = {}
        self.on_paid = on_paid
        self._lock = threading.Lock()

    def request_payment(self, league_id: int, user_id: str, week: int, amount: Decimal,
                        reason: str = "lowest_score_fee") -> PaymentRequest:
        request_id = uuid4()
        token = f"lps_{league_id}_{week}_{secrets.token_urlsafe(12)}"
        request_data = {
            "id": request_id,
            "league_id": league_id,
            "user_id": user_id,
            "week": week,
            "amount": amount,
            "reason": reason,
            "payment_token": token,
            "status": PaymentStatus.PENDING,
            "created_at": datetime.now(timezone.utc),
            "paid_at": None,
        }
        with self._lock:
            self.requests[request_id] = request_data
            self.token_index[token] = request_id
        logger.info("[LPS] Payment request created for user %s - Week %s - $%s", user_id, week, amount)
        return PaymentRequest(**request_data)

    def get_by_token(self, token: str) -> PaymentRequest:
        request_id = self.token_index.get(token)
        if request_id is None:
            raise PaymentNotFoundError("Payment request not found")
        return PaymentRequest(**self.requests[request_id])

    def mark_paid(self, token: str) -> tuple[PaymentRequest, bool]:
        """Mark a request paid. Returns the request and whether it changed."""
        with self._lock:
            request_id = self.token_index.get(token)
            if request_id is None:
                raise PaymentNotFoundError("Payment request not found")
            request_data = self.requests[request_id]
            if request_data["status"] == PaymentStatus.PAID:
                return PaymentRequest(**request_data), False
            request_data["status"] = PaymentStatus.PAID
            request_data["paid_at"] = datetime.now(timezone.utc)
            paid = PaymentRequest(**request_data)

        logger.info("[LPS] Payment %s received from user %s", paid.id, paid.user_id)
        if self.on_paid:
            self.on_paid(paid)
        return paid, True

    def list_for_league(self, league_id: int, week: Optional[int] = None) -> list[PaymentRequest]:
        requests = [
            PaymentRequest(**r) for r in list(self.requests.values())
            if r["league_id"] == league_id and (week is None or r["week"] == week)
        ]
        requests.sort(key=lambda r: r.created_at)
        return requests
