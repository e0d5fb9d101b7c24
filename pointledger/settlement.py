"""
Settlement Coordinator

One user action is settled as one atomic unit of work:

    validated -> applying -> committed
                          -> rolled_back

Every balance change, ledger append, status transition, pool append and record
write is staged on the Settlement and applied in one step at commit. Locks for
all involved accounts are taken (in a fixed order) before anything is read, so
the balance a decision is based on is the balance the write lands on.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, Optional
from uuid import UUID

from .accounts import AccountStore
from .config import PlatformConfig
from .errors import (
    AccountNotFoundError,
    SettlementStateError,
    StateConflict,
)
from .ledger import LedgerWriter
from .models import EntryKind, EntryStatus
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementState(str, Enum):
    VALIDATED = "validated"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Settlement:
    def __init__(
        self,
        storage: InMemoryStorage,
        config: PlatformConfig,
        action: str,
        account_ids,
        now: datetime,
    ):
        self.storage = storage
        self.config = config
        self.action = action
        self.account_ids = tuple(sorted(set(account_ids), key=str))
        self.now = now
        self.state = SettlementState.VALIDATED

        self._accounts: dict[UUID, dict] = {}
        self._new_accounts: dict[UUID, dict] = {}
        self._entries: dict[UUID, dict] = {}
        self._entry_updates: dict[UUID, dict] = {}
        self._reserve: list[dict] = []
        self._earnings: list[dict] = []
        self._rows: dict[tuple[str, object], dict] = {}
        self._appended_rows: list[tuple[str, dict]] = []

        self.accounts = AccountStore(storage, config, self)
        self.ledger = LedgerWriter(storage, self)

    # ------------------------------------------------------------------
    #   Staging primitives
    # ------------------------------------------------------------------
    def account(self, account_id: UUID) -> dict:
        self._require(SettlementState.APPLYING)
        if account_id in self._new_accounts:
            return self._new_accounts[account_id]
        if account_id not in self.account_ids:
            raise SettlementStateError(
                f"Account {account_id} is not locked by settlement '{self.action}'"
            )
        if account_id not in self._accounts:
            stored = self.storage.accounts.get(account_id)
            if stored is None:
                raise AccountNotFoundError(f"Account {account_id} not found")
            self._accounts[account_id] = dict(stored)
        return self._accounts[account_id]

    def create_account(self, record: dict) -> dict:
        self._require(SettlementState.APPLYING)
        self._new_accounts[record["id"]] = record
        return record

    def entry(self, entry_id: UUID) -> Optional[dict]:
        if entry_id in self._entries:
            return self._entries[entry_id]
        if entry_id not in self._entry_updates:
            stored = self.storage.ledger_entries.get(entry_id)
            if stored is None:
                return None
            self._entry_updates[entry_id] = dict(stored)
        return self._entry_updates[entry_id]

    def stage_entry(self, record: dict) -> None:
        self._require(SettlementState.APPLYING)
        self._entries[record["id"]] = record

    def stage_pool(self, pool: str, record: dict) -> None:
        self._require(SettlementState.APPLYING)
        (self._reserve if pool == "reserve" else self._earnings).append(record)

    def row(self, table: str, key) -> Optional[dict]:
        """Working copy of a keyed record (deposits, withdrawals, referrals...)."""
        staged = self._rows.get((table, key))
        if staged is not None:
            return staged
        stored = getattr(self.storage, table).get(key)
        if stored is None:
            return None
        self._rows[(table, key)] = dict(stored)
        return self._rows[(table, key)]

    def put_row(self, table: str, key, record: dict) -> None:
        self._require(SettlementState.APPLYING)
        self._rows[(table, key)] = record

    def append_row(self, table: str, record: dict) -> None:
        self._require(SettlementState.APPLYING)
        self._appended_rows.append((table, record))

    # ------------------------------------------------------------------
    #   Composite operations: balance change and ledger record together
    # ------------------------------------------------------------------
    def post(
        self,
        account_id: UUID,
        kind: EntryKind,
        amount: int,
        detail: str,
        reference: Optional[str] = None,
    ) -> UUID:
        """Apply ``amount`` to the balance and record a completed entry for it."""
        self.accounts.adjust_balance(account_id, amount)
        return self.ledger.append(
            account_id, kind, amount, detail,
            status=EntryStatus.COMPLETED, reference=reference,
        )

    def complete(self, entry_id: UUID) -> dict:
        """Mark a pending entry completed and apply its amount to the balance."""
        entry = self.ledger.mark_completed(entry_id)
        self.accounts.adjust_balance(entry["account_id"], entry["amount"])
        return entry

    def fail(self, entry_id: UUID) -> dict:
        return self.ledger.mark_failed(entry_id)

    # ------------------------------------------------------------------
    #   Lifecycle
    # ------------------------------------------------------------------
    def _require(self, state: SettlementState) -> None:
        if self.state != state:
            raise SettlementStateError(
                f"Settlement '{self.action}' is {self.state.value}, expected {state.value}"
            )

    def begin(self) -> None:
        self._require(SettlementState.VALIDATED)
        self.state = SettlementState.APPLYING

    def commit(self) -> None:
        if self.state == SettlementState.COMMITTED:
            raise SettlementStateError(f"Settlement '{self.action}' already committed")
        self._require(SettlementState.APPLYING)

        with self.storage.pool_lock, self.storage.commit_lock:
            for account_id, record in self._new_accounts.items():
                self.storage.accounts[account_id] = record
                self.storage.phone_index[record["phone"]] = account_id
                self.storage.referral_code_index[record["referral_code"]] = account_id
            self.storage.accounts.update(self._accounts)
            for entry_id, record in self._entries.items():
                self.storage.ledger_entries[entry_id] = record
            self.storage.ledger_entries.update(self._entry_updates)
            self.storage.reserve_pool.extend(self._reserve)
            self.storage.earnings_pool.extend(self._earnings)
            for (table, key), record in self._rows.items():
                getattr(self.storage, table)[key] = record
            for table, record in self._appended_rows:
                getattr(self.storage, table).append(record)

        self.state = SettlementState.COMMITTED
        logger.info(
            "settlement %s committed accounts=%s entries=%d updates=%d pool_entries=%d",
            self.action,
            ",".join(str(a) for a in self.account_ids + tuple(self._new_accounts)),
            len(self._entries),
            len(self._entry_updates),
            len(self._reserve) + len(self._earnings),
        )

    def rollback(self) -> None:
        if self.state == SettlementState.COMMITTED:
            raise SettlementStateError(f"Settlement '{self.action}' already committed")
        self._accounts.clear()
        self._new_accounts.clear()
        self._entries.clear()
        self._entry_updates.clear()
        self._reserve.clear()
        self._earnings.clear()
        self._rows.clear()
        self._appended_rows.clear()
        self.state = SettlementState.ROLLED_BACK


class SettlementCoordinator:
    def __init__(
        self,
        storage: InMemoryStorage,
        config: PlatformConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.config = config
        self.clock = clock or utcnow

    @contextmanager
    def settle(self, action: str, *account_ids: UUID, pools: bool = False) -> Iterator[Settlement]:
        """Run the body as one settlement over the given accounts.

        Leaving the block normally commits; any exception rolls every staged
        change back and propagates unchanged.
        """
        settlement = Settlement(self.storage, self.config, action, account_ids, self.clock())
        locks = [self.storage.account_lock(a) for a in settlement.account_ids]
        for lock in locks:
            lock.acquire()
        if pools:
            self.storage.pool_lock.acquire()
        try:
            settlement.begin()
            try:
                yield settlement
                settlement.commit()
            except BaseException as exc:
                if settlement.state != SettlementState.COMMITTED:
                    settlement.rollback()
                if isinstance(exc, StateConflict):
                    logger.error("settlement %s rolled back on state conflict: %s", action, exc)
                else:
                    logger.debug("settlement %s rolled back: %r", action, exc)
                raise
        finally:
            if pools:
                self.storage.pool_lock.release()
            for lock in reversed(locks):
                lock.release()
