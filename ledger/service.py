import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .balances import Balances, ZERO, apply_entry, promote, replay, validate_amount
from .errors import (
    InvalidAmountError,
    LedgerIntegrityError,
    WalletNotFoundError,
)
from .models import (
    BalanceBucket,
    EntryType,
    LedgerEntry,
    SourceType,
    TransactionHistoryResponse,
    Wallet,
    WalletSummary,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class WalletUnitOfWork:
    """Staged changes to one locked wallet.

    Entries and extra records are validated and staged in memory; nothing
    reaches storage until ``commit`` writes the wallet, its entries and the
    staged records together.
    """

    def __init__(self, storage: InMemoryStorage, wallet_data: dict):
        self._storage = storage
        self._wallet_data = wallet_data
        self.balances = Balances.from_wallet(wallet_data)
        self._entries: list[dict] = []
        self._records: list[tuple[dict, object, dict]] = []
        self.committed: Optional[Wallet] = None

    @property
    def wallet_id(self) -> UUID:
        return self._wallet_data["id"]

    @property
    def wallet(self) -> Wallet:
        return Wallet(**{**self._wallet_data, **self.balances.as_wallet_fields()})

    def record(
        self,
        entry_type: EntryType,
        amount: Decimal,
        source_type: SourceType,
        description: str,
        bucket: BalanceBucket = BalanceBucket.AVAILABLE,
        source_id: Optional[UUID] = None,
    ) -> dict:
        self.balances = apply_entry(self.balances, entry_type, amount, source_type, bucket)
        return self._stage_entry(entry_type, amount, source_type, description, bucket, source_id)

    def promote(self, amount: Decimal, description: str) -> dict:
        self.balances = promote(self.balances, amount)
        self._stage_entry(
            EntryType.DEBIT, amount, SourceType.LEAGUE_PAYOUT,
            description, BalanceBucket.PENDING, None,
        )
        return self._stage_entry(
            EntryType.CREDIT, amount, SourceType.LEAGUE_PAYOUT,
            description, BalanceBucket.AVAILABLE, None,
        )

    def stage(self, collection: dict, key, data: dict) -> None:
        self._records.append((collection, key, data))

    def commit(self) -> Wallet:
        if not self._entries and not self._records:
            self.committed = Wallet(**self._wallet_data)
            return self.committed
        now = datetime.now(timezone.utc)
        self._wallet_data.update(self.balances.as_wallet_fields())
        self._wallet_data["updated_at"] = now
        for entry in self._entries:
            self._storage.ledger_entries[entry["id"]] = entry
        for collection, key, data in self._records:
            collection[key] = data
        self.committed = Wallet(**self._wallet_data)
        return self.committed

    def _stage_entry(self, entry_type, amount, source_type, description, bucket, source_id) -> dict:
        entry = {
            "id": uuid4(),
            "wallet_id": self.wallet_id,
            "sequence": self._storage.next_sequence(),
            "entry_type": entry_type,
            "amount": validate_amount(amount),
            "source_type": source_type,
            "bucket": bucket,
            "source_id": source_id,
            "description": description,
            "balance_after": self.balances.available,
            "created_at": datetime.now(timezone.utc),
        }
        self._entries.append(entry)
        return entry


class LedgerService:
    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    @contextmanager
    def atomic(self, wallet_id: UUID):
        """Lock a wallet and yield a unit of work that commits on clean exit."""
        with self.storage.wallet_lock(wallet_id):
            wallet_data = self.storage.wallets.get(wallet_id)
            if not wallet_data:
                raise WalletNotFoundError(f"Wallet {wallet_id} not found")
            unit = WalletUnitOfWork(self.storage, wallet_data)
            yield unit
            unit.commit()

    def record_transaction(
        self,
        wallet_id: UUID,
        entry_type: EntryType,
        amount: Decimal,
        source_type: SourceType,
        description: str,
        bucket: BalanceBucket = BalanceBucket.AVAILABLE,
        source_id: Optional[UUID] = None,
    ) -> Wallet:
        wallet, _ = self._record(wallet_id, entry_type, amount, source_type, description, bucket, source_id)
        return wallet

    def credit_available(
        self,
        wallet_id: UUID,
        amount: Decimal,
        source_type: SourceType,
        description: str,
        source_id: Optional[UUID] = None,
    ) -> tuple[Wallet, LedgerEntry]:
        return self._record(
            wallet_id, EntryType.CREDIT, amount, source_type, description,
            BalanceBucket.AVAILABLE, source_id,
        )

    def credit_pending(
        self,
        wallet_id: UUID,
        amount: Decimal,
        source_type: SourceType,
        description: str,
        source_id: Optional[UUID] = None,
    ) -> tuple[Wallet, LedgerEntry]:
        return self._record(
            wallet_id, EntryType.CREDIT, amount, source_type, description,
            BalanceBucket.PENDING, source_id,
        )

    def debit(
        self,
        wallet_id: UUID,
        amount: Decimal,
        source_type: SourceType,
        description: str,
        source_id: Optional[UUID] = None,
    ) -> tuple[Wallet, LedgerEntry]:
        return self._record(
            wallet_id, EntryType.DEBIT, amount, source_type, description,
            BalanceBucket.AVAILABLE, source_id,
        )

    def promote_pending(self, wallet_id: UUID, amount: Optional[Decimal] = None) -> tuple[Wallet, LedgerEntry]:
        with self.atomic(wallet_id) as unit:
            to_promote = unit.balances.pending if amount is None else amount
            if amount is None and to_promote <= 0:
                raise InvalidAmountError(f"Wallet {wallet_id} has no pending balance to promote")
            entry = unit.promote(to_promote, "Pending earnings released")
        logger.info("Promoted %s pending to available on wallet %s", entry["amount"], wallet_id)
        return unit.committed, LedgerEntry(**entry)

    def get_or_create_wallet(self, league_id: int, user_id: str) -> Wallet:
        with self.storage.registry_lock:
            wallet_id = self.storage.wallet_index.get((league_id, user_id))
            if wallet_id is None:
                now = datetime.now(timezone.utc)
                wallet_id = uuid4()
                self.storage.wallets[wallet_id] = {
                    "id": wallet_id,
                    "league_id": league_id,
                    "user_id": user_id,
                    "available_balance": ZERO,
                    "pending_balance": ZERO,
                    "total_earnings": ZERO,
                    "total_withdrawn": ZERO,
                    "created_at": now,
                    "updated_at": now,
                }
                self.storage.wallet_index[(league_id, user_id)] = wallet_id
                logger.info("Created wallet %s for user %s in league %s", wallet_id, user_id, league_id)
            return Wallet(**self.storage.wallets[wallet_id])

    def get_wallet(self, wallet_id: UUID) -> Wallet:
        wallet_data = self.storage.wallets.get(wallet_id)
        if not wallet_data:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found")
        return Wallet(**wallet_data)

    def get_user_wallets(self, user_id: str) -> list[WalletSummary]:
        summaries = []
        for wallet_data in list(self.storage.wallets.values()):
            if wallet_data["user_id"] != user_id:
                continue
            league = self.storage.leagues.get(wallet_data["league_id"])
            summaries.append(WalletSummary(
                **wallet_data,
                league_name=league["name"] if league else "Unknown League",
            ))
        summaries.sort(key=lambda w: w.created_at)
        return summaries

    def get_league_wallets(self, league_id: int) -> list[Wallet]:
        wallets = [
            Wallet(**w) for w in list(self.storage.wallets.values())
            if w["league_id"] == league_id
        ]
        wallets.sort(key=lambda w: w.created_at)
        return wallets

    def get_transactions(self, wallet_id: UUID, limit: int = 50, offset: int = 0) -> TransactionHistoryResponse:
        wallet = self.get_wallet(wallet_id)
        entries = [LedgerEntry(**e) for e in self.storage.entries_for_wallet(wallet_id)]
        entries.reverse()
        return TransactionHistoryResponse(
            wallet_id=wallet_id,
            entries=entries[offset:offset + limit],
            total_count=len(entries),
            available_balance=wallet.available_balance,
        )

    def replay_balances(self, wallet_id: UUID) -> Balances:
        self.get_wallet(wallet_id)
        return replay(self.storage.entries_for_wallet(wallet_id))

    def verify_wallet(self, wallet_id: UUID) -> Wallet:
        with self.storage.wallet_lock(wallet_id):
            wallet = self.get_wallet(wallet_id)
            balances = Balances.from_wallet(wallet.model_dump())
            if not balances.is_consistent():
                raise LedgerIntegrityError(f"Wallet {wallet_id} totals do not add up: {balances}")
            replayed = replay(self.storage.entries_for_wallet(wallet_id))
            if replayed.available != wallet.available_balance or replayed.pending != wallet.pending_balance:
                raise LedgerIntegrityError(
                    f"Wallet {wallet_id} replay mismatch: ledger gives "
                    f"{replayed.available}/{replayed.pending}, wallet holds "
                    f"{wallet.available_balance}/{wallet.pending_balance}"
                )
            return wallet

    def _record(self, wallet_id, entry_type, amount, source_type, description, bucket, source_id):
        with self.atomic(wallet_id) as unit:
            entry = unit.record(entry_type, amount, source_type, description, bucket, source_id)
        logger.info(
            "Recorded %s %s (%s, %s) on wallet %s",
            entry_type.value, entry["amount"], source_type.value, bucket.value, wallet_id,
        )
        return unit.committed, LedgerEntry(**entry)
