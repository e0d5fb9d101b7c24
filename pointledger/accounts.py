from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from .config import PlatformConfig
from .errors import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    NoAttemptsLeftError,
    SettlementStateError,
    ValidationError,
)
from .storage import InMemoryStorage

if TYPE_CHECKING:
    from .settlement import Settlement


class AccountStore:
    """Point balances, held points and wheel state per account.

    Reads outside a settlement see committed state. Every write goes through
    the settlement the store is bound to, so it only becomes visible when that
    settlement commits.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        config: PlatformConfig,
        settlement: Optional["Settlement"] = None,
    ):
        self.storage = storage
        self.config = config
        self.settlement = settlement

    def _record(self, account_id: UUID) -> dict:
        if self.settlement is not None:
            return self.settlement.account(account_id)
        record = self.storage.accounts.get(account_id)
        if record is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return record

    def _writable(self, account_id: UUID) -> dict:
        if self.settlement is None:
            raise SettlementStateError("Account writes require an open settlement")
        return self.settlement.account(account_id)

    def get(self, account_id: UUID) -> dict:
        return self._record(account_id)

    def get_balance(self, account_id: UUID) -> int:
        return self._record(account_id)["points"]

    def available(self, account_id: UUID) -> int:
        record = self._record(account_id)
        return record["points"] - record["held_points"]

    def adjust_balance(self, account_id: UUID, delta: int) -> int:
        """Add ``delta`` points; debits may not dip into held points."""
        record = self._writable(account_id)
        new_balance = record["points"] + delta
        if new_balance < 0 or (delta < 0 and new_balance < record["held_points"]):
            raise InsufficientFundsError(record["points"] - record["held_points"], -delta)
        record["points"] = new_balance
        return new_balance

    def hold(self, account_id: UUID, points: int) -> int:
        if points <= 0:
            raise ValidationError("Held points must be positive")
        record = self._writable(account_id)
        available = record["points"] - record["held_points"]
        if available < points:
            raise InsufficientFundsError(available, points)
        record["held_points"] += points
        return record["held_points"]

    def release_hold(self, account_id: UUID, points: int) -> int:
        record = self._writable(account_id)
        if points > record["held_points"]:
            raise InvalidStateTransitionError(
                f"Cannot release {points} held points, only {record['held_points']} held"
            )
        record["held_points"] -= points
        return record["held_points"]

    def record_deposit(self, account_id: UUID, money: Decimal) -> Decimal:
        record = self._writable(account_id)
        record["total_deposited"] = record["total_deposited"] + money
        return record["total_deposited"]

    def reset_daily_spin_if_needed(self, account_id: UUID, now: datetime) -> int:
        """Restore the daily allowance when ``now`` falls on a new calendar day."""
        record = self._writable(account_id)
        last_spin = record["last_wheel_spin"]
        if last_spin is None or _calendar_day(last_spin, now) != now.date():
            record["wheel_attempts_left"] = self.config.wheel_attempts_per_day
        return record["wheel_attempts_left"]

    def consume_spin(self, account_id: UUID, now: datetime) -> int:
        attempts = self.reset_daily_spin_if_needed(account_id, now)
        if attempts <= 0:
            raise NoAttemptsLeftError("No wheel attempts left today")
        record = self._writable(account_id)
        record["wheel_attempts_left"] = attempts - 1
        record["last_wheel_spin"] = now
        return record["wheel_attempts_left"]


def _calendar_day(moment: datetime, reference: datetime):
    if moment.tzinfo is not None and reference.tzinfo is not None:
        moment = moment.astimezone(reference.tzinfo)
    return moment.date()
