import logging
import secrets
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Path, status
from fastapi.middleware.cors import CORSMiddleware

from settlement.models import SettleWeekRequest, SettlementResult, SyncResult, SyncScoresRequest
from settlement.payments import PaymentCollector, PaymentNotFoundError
from settlement.scores import ScoreProvider
from settlement.trigger import SettlementTrigger

from .config import settings
from .errors import (
    AccessDeniedError,
    AlreadyResolvedError,
    LeagueNotFoundError,
    LedgerIntegrityError,
    LedgerServiceError,
    MemberNotFoundError,
    RequestNotFoundError,
    WalletNotFoundError,
)
from .leagues import LeagueDirectory
from .models import (
    AddMemberRequest,
    CreateLeagueRequest,
    CreateWithdrawalRequest,
    IssuePayoutRequest,
    League,
    PayoutResponse,
    PromotePendingRequest,
    PromotePendingResponse,
    ResolveWithdrawalRequest,
    TransactionHistoryResponse,
    TreasuryResponse,
    UpdateLeagueSettingsRequest,
    WalletDetail,
    WalletSummary,
    WithdrawalRequest,
    WithdrawalResponse,
)
from .service import LedgerService
from .storage import InMemoryStorage
from .withdrawals import WithdrawalManager

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="League Dues Ledger API",
    description="Member wallets, withdrawals and weekly payouts for fantasy leagues",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service: LedgerService
league_directory: LeagueDirectory
withdrawal_manager: WithdrawalManager
payment_collector: PaymentCollector
settlement_trigger: SettlementTrigger


def configure_services(storage: Optional[InMemoryStorage] = None,
                       score_provider: Optional[ScoreProvider] = None) -> None:
    """(Re)build the service graph around one storage instance."""
    global ledger_service, league_directory, withdrawal_manager, payment_collector, settlement_trigger
    storage = storage or InMemoryStorage()
    ledger_service = LedgerService(storage)
    league_directory = LeagueDirectory(storage)
    withdrawal_manager = WithdrawalManager(ledger_service)
    payment_collector = PaymentCollector(
        on_paid=lambda payment: league_directory.add_dues(payment.league_id, payment.amount)
    )
    settlement_trigger = SettlementTrigger(ledger_service, league_directory, payment_collector, score_provider)


configure_services()


def get_current_member(x_member_id: Optional[str] = Header(default=None)) -> str:
    # Set by the identity-provider proxy in front of the API
    if not x_member_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return x_member_id


def require_processor(x_processor_token: Optional[str] = Header(default=None)) -> None:
    if settings.PROCESSOR_TOKEN and not secrets.compare_digest(
        x_processor_token or "", settings.PROCESSOR_TOKEN
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid processor token")


def _http_error(e: LedgerServiceError) -> HTTPException:
    if isinstance(e, AccessDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, (WalletNotFoundError, RequestNotFoundError, LeagueNotFoundError,
                      MemberNotFoundError, PaymentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, AlreadyResolvedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, LedgerIntegrityError):
        logger.error("Ledger integrity failure: %s", e)
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Ledger integrity failure")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _owned_wallet(wallet_id: UUID, member_id: str):
    wallet = ledger_service.get_wallet(wallet_id)
    if wallet.user_id != member_id:
        raise AccessDeniedError("Access denied")
    return wallet


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "league-dues-ledger"}


@app.get("/wallets/me", response_model=list[WalletSummary], tags=["Wallets"])
def get_my_wallets(member_id: str = Depends(get_current_member)) -> list[WalletSummary]:
    return ledger_service.get_user_wallets(member_id)


@app.get("/leagues/{league_id}/wallet", response_model=WalletDetail, tags=["Wallets"])
def get_league_wallet(league_id: int, member_id: str = Depends(get_current_member)) -> WalletDetail:
    try:
        league = league_directory.get_league(league_id)
        if not league.has_member(member_id):
            raise AccessDeniedError(f"Not a member of league {league_id}")
        wallet = ledger_service.get_or_create_wallet(league_id, member_id)
        history = ledger_service.get_transactions(wallet.id)
    except LedgerServiceError as e:
        raise _http_error(e)
    return WalletDetail(**wallet.model_dump(), league_name=league.name, transactions=history.entries)


@app.get("/wallets/{wallet_id}/transactions", response_model=TransactionHistoryResponse, tags=["Wallets"])
def get_wallet_transactions(
    wallet_id: UUID,
    limit: int = 50,
    offset: int = 0,
    member_id: str = Depends(get_current_member),
) -> TransactionHistoryResponse:
    try:
        _owned_wallet(wallet_id, member_id)
        return ledger_service.get_transactions(wallet_id, limit, offset)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/wallets/{wallet_id}/withdraw", response_model=WithdrawalResponse,
          status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def withdraw(
    wallet_id: UUID,
    request: CreateWithdrawalRequest,
    member_id: str = Depends(get_current_member),
) -> WithdrawalResponse:
    try:
        return withdrawal_manager.create_withdrawal(member_id, wallet_id, request.amount, request.payout_type)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/withdrawals/me", response_model=list[WithdrawalRequest], tags=["Withdrawals"])
def get_my_withdrawals(member_id: str = Depends(get_current_member)) -> list[WithdrawalRequest]:
    return withdrawal_manager.get_user_withdrawals(member_id)


@app.post("/withdrawals/{request_id}/resolve", response_model=WithdrawalResponse,
          dependencies=[Depends(require_processor)], tags=["Withdrawals"])
def resolve_withdrawal(request_id: UUID, request: ResolveWithdrawalRequest) -> WithdrawalResponse:
    try:
        return withdrawal_manager.resolve(
            request_id, request.status, request.transfer_reference, request.failure_reason
        )
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED, tags=["Payouts"])
def issue_payout(request: IssuePayoutRequest, member_id: str = Depends(get_current_member)) -> PayoutResponse:
    try:
        return settlement_trigger.issue_payout(member_id, request)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/wallets/{wallet_id}/promote", response_model=PromotePendingResponse, tags=["Payouts"])
def promote_pending(
    wallet_id: UUID,
    request: PromotePendingRequest,
    member_id: str = Depends(get_current_member),
) -> PromotePendingResponse:
    try:
        wallet = ledger_service.get_wallet(wallet_id)
        league_directory.require_commissioner(wallet.league_id, member_id)
        wallet, entry = ledger_service.promote_pending(wallet_id, request.amount)
    except LedgerServiceError as e:
        raise _http_error(e)
    return PromotePendingResponse(wallet=wallet, ledger_entry=entry, message="Pending balance released")


@app.get("/leagues/{league_id}/treasury", response_model=TreasuryResponse, tags=["Leagues"])
def get_treasury(league_id: int, member_id: str = Depends(get_current_member)) -> TreasuryResponse:
    try:
        league = league_directory.require_commissioner(league_id, member_id)
    except LedgerServiceError as e:
        raise _http_error(e)
    wallets = ledger_service.get_league_wallets(league_id)
    fees = [f["amount"] for f in list(ledger_service.storage.platform_fees.values()) if f["league_id"] == league_id]
    return TreasuryResponse(
        league_id=league_id,
        league_name=league.name,
        total_available=sum((w.available_balance for w in wallets), Decimal("0.00")),
        total_pending=sum((w.pending_balance for w in wallets), Decimal("0.00")),
        total_earnings=sum((w.total_earnings for w in wallets), Decimal("0.00")),
        total_withdrawn=sum((w.total_withdrawn for w in wallets), Decimal("0.00")),
        total_platform_fees=sum(fees, Decimal("0.00")),
        member_wallets=wallets,
    )


@app.post("/leagues", response_model=League, status_code=status.HTTP_201_CREATED, tags=["Leagues"])
def create_league(request: CreateLeagueRequest, member_id: str = Depends(get_current_member)) -> League:
    return league_directory.create_league(member_id, request)


@app.get("/leagues/{league_id}", response_model=League, tags=["Leagues"])
def get_league(league_id: int, member_id: str = Depends(get_current_member)) -> League:
    try:
        league = league_directory.get_league(league_id)
    except LedgerServiceError as e:
        raise _http_error(e)
    if not league.has_member(member_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return league


@app.post("/leagues/{league_id}/members", response_model=League, tags=["Leagues"])
def add_member(league_id: int, request: AddMemberRequest, member_id: str = Depends(get_current_member)) -> League:
    try:
        return league_directory.add_member(member_id, league_id, request)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.patch("/leagues/{league_id}/settings", response_model=League, tags=["Leagues"])
def update_settings(
    league_id: int,
    request: UpdateLeagueSettingsRequest,
    member_id: str = Depends(get_current_member),
) -> League:
    try:
        return league_directory.update_settings(member_id, league_id, request)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/leagues/{league_id}/sync-scores", response_model=SyncResult, tags=["Scores"])
def sync_scores(league_id: int, request: SyncScoresRequest, member_id: str = Depends(get_current_member)) -> SyncResult:
    try:
        league_directory.require_commissioner(league_id, member_id)
        return settlement_trigger.sync_scores(league_id, request.week)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.post("/leagues/{league_id}/weeks/{week}/settle", response_model=SettlementResult, tags=["Scores"])
def settle_week(
    league_id: int,
    request: SettleWeekRequest,
    week: int = Path(..., ge=1, le=25),
    member_id: str = Depends(get_current_member),
) -> SettlementResult:
    try:
        league_directory.require_commissioner(league_id, member_id)
        return settlement_trigger.settle_week(league_id, week, request.scores)
    except LedgerServiceError as e:
        raise _http_error(e)


@app.get("/leagues/{league_id}/scores/{week}", tags=["Scores"])
def get_weekly_scores(
    league_id: int,
    week: int = Path(..., ge=1, le=25),
    member_id: str = Depends(get_current_member),
):
    try:
        league = league_directory.get_league(league_id)
        if not league.has_member(member_id):
            raise AccessDeniedError(f"Not a member of league {league_id}")
        scores = settlement_trigger.get_weekly_scores(league_id, week)
    except LedgerServiceError as e:
        raise _http_error(e)
    return {
        "scores": scores,
        "highest_scorer": scores[0] if scores else None,
        "lowest_scorer": min(scores, key=lambda s: (s.score, s.user_id)) if scores else None,
        "weekly_low_score_fee_enabled": league.settings.weekly_low_score_fee_enabled,
        "weekly_low_score_fee": league.settings.weekly_low_score_fee,
    }


@app.get("/lps-payment/{token}", tags=["Payments"])
def get_lps_payment(token: str):
    try:
        payment = payment_collector.get_by_token(token)
        league = league_directory.get_league(payment.league_id)
    except LedgerServiceError as e:
        raise _http_error(e)
    return {
        "id": payment.id,
        "league_id": payment.league_id,
        "league_name": league.name,
        "week": payment.week,
        "amount": payment.amount,
        "status": payment.status,
    }


@app.post("/lps-payment/{token}/pay", dependencies=[Depends(require_processor)], tags=["Payments"])
def pay_lps_payment(token: str):
    try:
        payment, changed = payment_collector.mark_paid(token)
    except LedgerServiceError as e:
        raise _http_error(e)
    if not changed:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This payment has already been completed")
    return {"success": True, "payment": payment}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
