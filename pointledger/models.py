from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, model_validator


class EntryKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    GAME_WIN = "game_win"
    GAME_LOSS = "game_loss"
    REFERRAL_BONUS = "referral_bonus"
    ADMIN_WITHDRAWAL = "admin_withdrawal"
    TASK_REWARD = "task_reward"
    WHEEL_PRIZE = "wheel_prize"
    SIGNUP_BONUS = "signup_bonus"


class EntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PoolSource(str, Enum):
    GAME_LOSS = "game_loss"
    GAME_WIN = "game_win"
    DEPOSIT_FEE = "deposit_fee"
    WITHDRAWAL_FEE = "withdrawal_fee"
    ADMIN_WITHDRAWAL = "admin_withdrawal"


class OutcomeKind(str, Enum):
    WIN = "win"
    LOSS = "loss"


class ContinuousOdds(BaseModel):
    kind: Literal["continuous"] = "continuous"
    low: Decimal = Field(..., ge=0)
    high: Decimal = Field(..., gt=0)

    @model_validator(mode="after")
    def _check_range(self) -> "ContinuousOdds":
        if self.low > self.high:
            raise ValueError("low must not exceed high")
        return self


class DiscreteOdds(BaseModel):
    kind: Literal["discrete"] = "discrete"
    multipliers: list[Decimal] = Field(..., min_length=1)


class ThresholdOdds(BaseModel):
    kind: Literal["threshold"] = "threshold"
    threshold: Decimal = Field(..., ge=0, le=100)
    multiplier: Decimal = Field(..., gt=1)


OddsTable = Annotated[
    Union[ContinuousOdds, DiscreteOdds, ThresholdOdds],
    Field(discriminator="kind"),
]


class Game(BaseModel):
    id: str
    name: str
    min_bet: int = Field(..., gt=0)
    is_active: bool = True
    odds: OddsTable

    model_config = ConfigDict(from_attributes=True)


class Task(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    points: int
    type: str
    icon: Optional[str] = None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class AccountSummary(BaseModel):
    id: UUID
    username: str
    phone: str
    email: Optional[str] = None
    verified: bool
    points: int
    held_points: int
    total_deposited: Decimal
    wheel_multiplier: Decimal
    last_wheel_spin: Optional[datetime] = None
    wheel_attempts_left: int
    referral_code: str
    is_admin: bool
    profile_picture: Optional[str] = None
    created_at: datetime


class LedgerEntry(BaseModel):
    id: UUID
    account_id: UUID
    kind: EntryKind
    amount: int
    status: EntryStatus
    detail: str
    reference: Optional[str] = None
    created_at: datetime
    seq: int

    model_config = ConfigDict(from_attributes=True)


class PoolEntry(BaseModel):
    id: UUID
    amount: int
    source: PoolSource
    account_id: Optional[UUID] = None
    game_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Referral(BaseModel):
    referrer_id: UUID
    referee_id: UUID
    referee_username: str
    bonus_given: bool = False
    created_at: datetime
    credited_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DepositRecord(BaseModel):
    id: UUID
    account_id: UUID
    amount: Decimal
    points: int
    fee: int = 0
    phone_number: str
    method: str
    status: EntryStatus
    entry_id: UUID
    gateway_reference: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WithdrawalRecord(BaseModel):
    id: UUID
    account_id: UUID
    points: int
    money_amount: Decimal
    fee: int = 0
    phone_number: str
    method: str
    status: EntryStatus
    entry_id: UUID
    gateway_reference: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class HistoryItem(BaseModel):
    date: datetime
    kind: str
    title: str
    points: int
    status: EntryStatus
    reference: Optional[str] = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    email: Optional[str] = None
    referral_code: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "username": "amina",
            "phone": "+243810000000",
            "password": "s3cret",
            "referral_code": "K7Q2M9XA"
        }
    })


class VerifyAccountRequest(BaseModel):
    phone: str
    code: str


class ResendCodeRequest(BaseModel):
    phone: str


class LoginRequest(BaseModel):
    phone: str
    password: str


class CompleteTaskRequest(BaseModel):
    account_id: UUID
    task_id: int


class SpinWheelRequest(BaseModel):
    account_id: UUID


class DepositRequest(BaseModel):
    account_id: UUID
    amount: Decimal = Field(..., gt=0)
    phone_number: str = Field(..., min_length=1)
    method: str = Field(..., min_length=1)


class WithdrawRequest(BaseModel):
    account_id: UUID
    amount: int = Field(..., gt=0, description="Points to withdraw")
    phone_number: str = Field(..., min_length=1)
    method: str = Field(..., min_length=1)


class PlayGameRequest(BaseModel):
    account_id: UUID
    game_id: str
    bet_amount: int = Field(..., gt=0)


class AdminWithdrawRequest(BaseModel):
    account_id: UUID


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class RegisterResponse(BaseModel):
    account: AccountSummary
    referral_code: str
    verification_sent: bool


class TaskResponse(BaseModel):
    task_points: int
    new_balance: int


class SpinResponse(BaseModel):
    prize_delta: int
    attempts_left: int
    new_balance: int
    message: str


class DepositResponse(BaseModel):
    deposit_id: UUID
    points_added: int
    new_balance: int
    status: EntryStatus


class WithdrawResponse(BaseModel):
    withdrawal_id: UUID
    money_amount: Decimal
    points: int
    status: EntryStatus
    new_balance: int


class PlayResponse(BaseModel):
    outcome_kind: OutcomeKind
    multiplier: Decimal
    win_amount: int
    net: int
    new_balance: int


class AdminWithdrawResponse(BaseModel):
    total_withdrawn: int


class HistoryResponse(BaseModel):
    account_id: UUID
    items: list[HistoryItem]
    total_count: int
    current_balance: int
