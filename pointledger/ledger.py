import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from .errors import InvalidStateTransitionError, SettlementStateError
from .models import (
    EntryKind,
    EntryStatus,
    HistoryItem,
    LedgerEntry,
    PoolEntry,
    PoolSource,
)
from .storage import InMemoryStorage

if TYPE_CHECKING:
    from .settlement import Settlement

logger = logging.getLogger(__name__)


class LedgerWriter:
    """Append-only ledger of point movements plus the reserve and earnings pools."""

    def __init__(self, storage: InMemoryStorage, settlement: Optional["Settlement"] = None):
        self.storage = storage
        self.settlement = settlement

    def _require_settlement(self) -> "Settlement":
        if self.settlement is None:
            raise SettlementStateError("Ledger writes require an open settlement")
        return self.settlement

    # ------------------------------------------------------------------
    #   Writes
    # ------------------------------------------------------------------
    def append(
        self,
        account_id: UUID,
        kind: EntryKind,
        amount: int,
        detail: str,
        status: EntryStatus = EntryStatus.COMPLETED,
        reference: Optional[str] = None,
    ) -> UUID:
        settlement = self._require_settlement()
        entry_id = uuid4()
        settlement.stage_entry({
            "id": entry_id,
            "account_id": account_id,
            "kind": kind,
            "amount": amount,
            "status": status,
            "detail": detail,
            "reference": reference,
            "created_at": settlement.now,
            "seq": self.storage.next_seq(),
        })
        logger.info(
            "ledger %s account=%s amount=%s status=%s ref=%s",
            kind.value, account_id, amount, status.value, reference,
        )
        return entry_id

    def _transition(self, entry_id: UUID, target: EntryStatus) -> dict:
        settlement = self._require_settlement()
        entry = settlement.entry(entry_id)
        if entry is None:
            raise InvalidStateTransitionError(f"Ledger entry {entry_id} not found")
        if entry["status"] != EntryStatus.PENDING:
            logger.error(
                "ledger entry %s cannot move from %s to %s",
                entry_id, entry["status"].value, target.value,
            )
            raise InvalidStateTransitionError(
                f"Cannot mark entry {entry_id} {target.value}: it is already {entry['status'].value}"
            )
        entry["status"] = target
        return entry

    def mark_completed(self, entry_id: UUID) -> dict:
        return self._transition(entry_id, EntryStatus.COMPLETED)

    def mark_failed(self, entry_id: UUID) -> dict:
        return self._transition(entry_id, EntryStatus.FAILED)

    def _pool_entry(self, amount, source, account_id, game_id) -> dict:
        return {
            "id": uuid4(),
            "amount": amount,
            "source": source,
            "account_id": account_id,
            "game_id": game_id,
            "created_at": self._require_settlement().now,
        }

    def append_reserve(
        self,
        amount: int,
        source: PoolSource,
        account_id: Optional[UUID] = None,
        game_id: Optional[str] = None,
    ) -> None:
        self._require_settlement().stage_pool(
            "reserve", self._pool_entry(amount, source, account_id, game_id)
        )

    def append_earnings(
        self,
        amount: int,
        source: PoolSource,
        account_id: Optional[UUID] = None,
        game_id: Optional[str] = None,
    ) -> None:
        self._require_settlement().stage_pool(
            "earnings", self._pool_entry(amount, source, account_id, game_id)
        )

    # ------------------------------------------------------------------
    #   Reads (committed state)
    # ------------------------------------------------------------------
    def get_entry(self, entry_id: UUID) -> Optional[LedgerEntry]:
        data = self.storage.ledger_entries.get(entry_id)
        return LedgerEntry(**data) if data else None

    def entries_for(self, account_id: UUID) -> list[LedgerEntry]:
        entries = [
            LedgerEntry(**e) for e in list(self.storage.ledger_entries.values())
            if e["account_id"] == account_id
        ]
        entries.sort(key=lambda e: (e.created_at, e.seq), reverse=True)
        return entries

    def reserve_total(self) -> int:
        return sum(e["amount"] for e in list(self.storage.reserve_pool))

    def earnings_total(self) -> int:
        return sum(e["amount"] for e in list(self.storage.earnings_pool))

    def reserve_entries(self) -> list[PoolEntry]:
        return [PoolEntry(**e) for e in list(self.storage.reserve_pool)]

    def earnings_entries(self) -> list[PoolEntry]:
        return [PoolEntry(**e) for e in list(self.storage.earnings_pool)]

    def history(self, account_id: UUID) -> list[HistoryItem]:
        """Ledger entries, deposits, withdrawals and wheel spins, newest first."""
        deposits = {
            str(d["id"]): d for d in list(self.storage.deposits.values())
            if d["account_id"] == account_id
        }
        withdrawals = {
            str(w["id"]): w for w in list(self.storage.withdrawals.values())
            if w["account_id"] == account_id
        }

        rows: list[tuple[datetime, int, HistoryItem]] = []
        for entry in self.entries_for(account_id):
            title = entry.detail
            if entry.kind == EntryKind.DEPOSIT and entry.reference in deposits:
                d = deposits[entry.reference]
                title = f"Deposit {d['method']} ({d['phone_number']})"
            elif entry.kind == EntryKind.WITHDRAWAL and entry.reference in withdrawals:
                w = withdrawals[entry.reference]
                title = f"Withdrawal {w['method']} ({w['phone_number']})"
            rows.append((entry.created_at, entry.seq, HistoryItem(
                date=entry.created_at,
                kind=entry.kind.value,
                title=title,
                points=entry.amount,
                status=entry.status,
                reference=entry.reference,
            )))

        for spin in list(self.storage.wheel_spins):
            if spin["account_id"] != account_id or spin["entry_id"] is not None:
                continue
            rows.append((spin["created_at"], spin["seq"], HistoryItem(
                date=spin["created_at"],
                kind="wheel_spin",
                title="Wheel spin",
                points=0,
                status=EntryStatus.COMPLETED,
            )))

        rows.sort(key=lambda r: (r[0], r[1]), reverse=True)
        return [item for _, _, item in rows]

    def completed_total(self, account_id: UUID) -> int:
        """Sum of the account's completed entries; always equals its balance."""
        return sum(
            e["amount"] for e in list(self.storage.ledger_entries.values())
            if e["account_id"] == account_id
            and e["status"] == EntryStatus.COMPLETED
        )
