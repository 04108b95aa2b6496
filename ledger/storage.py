import itertools
import threading
from contextlib import contextmanager
from uuid import UUID


class InMemoryStorage:
    """Process-local store for wallets, ledger entries and withdrawal state.

    Records are plain dicts keyed by id. Each wallet has its own lock; every
    write to a wallet, its entries or its withdrawal requests happens while
    that lock is held.
    """

    def __init__(self):
        self.leagues: dict[int, dict] = {}
        self.wallets: dict[UUID, dict] = {}
        self.wallet_index: dict[tuple[int, str], UUID] = {}
        self.ledger_entries: dict[UUID, dict] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self.payouts: dict[UUID, dict] = {}
        self.platform_fees: dict[UUID, dict] = {}
        self.weekly_scores: dict[tuple[int, int], dict[str, dict]] = {}
        self.settled_weeks: dict[tuple[int, int], dict] = {}

        self.registry_lock = threading.RLock()
        self._wallet_locks: dict[UUID, threading.Lock] = {}
        self._sequence = itertools.count(1)
        self._league_ids = itertools.count(1)

    def next_sequence(self) -> int:
        with self.registry_lock:
            return next(self._sequence)

    def next_league_id(self) -> int:
        with self.registry_lock:
            return next(self._league_ids)

    @contextmanager
    def wallet_lock(self, wallet_id: UUID):
        with self.registry_lock:
            lock = self._wallet_locks.setdefault(wallet_id, threading.Lock())
        with lock:
            yield

    def entries_for_wallet(self, wallet_id: UUID) -> list[dict]:
        entries = [e for e in list(self.ledger_entries.values()) if e["wallet_id"] == wallet_id]
        entries.sort(key=lambda e: e["sequence"])
        return entries
