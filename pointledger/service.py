import logging
import re
import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Callable, Optional
from uuid import UUID, uuid4

from .accounts import AccountStore
from .collaborators import (
    CodeSender,
    FileStore,
    LocalFileStore,
    LoggingCodeSender,
    PasswordHasher,
    PaymentGateway,
    PBKDF2PasswordHasher,
    SimulatedPaymentGateway,
)
from .config import PlatformConfig
from .errors import (
    AccountNotFoundError,
    AccountNotVerifiedError,
    BelowMinimumDepositError,
    BelowMinimumWithdrawError,
    CodeDeliveryError,
    DepositNotFoundError,
    DuplicatePhoneError,
    ExternalDependencyError,
    ForbiddenError,
    GameNotFoundError,
    InvalidCredentialsError,
    InvalidStateTransitionError,
    InvalidVerificationCodeError,
    NoEarningsAvailableError,
    PaymentGatewayError,
    TaskNotFoundError,
    ValidationError,
    WithdrawalNotFoundError,
)
from .ledger import LedgerWriter
from .models import (
    AccountSummary,
    AdminWithdrawRequest,
    AdminWithdrawResponse,
    CompleteTaskRequest,
    DepositRecord,
    DepositRequest,
    DepositResponse,
    EntryKind,
    EntryStatus,
    Game,
    HistoryResponse,
    LoginRequest,
    OutcomeKind,
    PlayGameRequest,
    PlayResponse,
    PoolSource,
    RegisterRequest,
    RegisterResponse,
    ResendCodeRequest,
    SpinResponse,
    Task,
    TaskResponse,
    VerifyAccountRequest,
    WithdrawalRecord,
    WithdrawRequest,
    WithdrawResponse,
)
from .referrals import ReferralResolver
from .settlement import SettlementCoordinator, utcnow
from .storage import InMemoryStorage
from .wager import CENT, WagerEngine, floor_points, wheel_multiplier

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


class PlatformService:
    """Action surface of the points platform.

    Validates each inbound action, asks the wager engine for outcomes and runs
    the matching settlement. Collaborator calls (gateway, code delivery, file
    store) happen between settlements, never while an account is locked.
    """

    def __init__(
        self,
        config: Optional[PlatformConfig] = None,
        storage: Optional[InMemoryStorage] = None,
        *,
        gateway: Optional[PaymentGateway] = None,
        code_sender: Optional[CodeSender] = None,
        hasher: Optional[PasswordHasher] = None,
        file_store: Optional[FileStore] = None,
        rng=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or PlatformConfig()
        self.storage = storage or InMemoryStorage()
        self.clock = clock or utcnow
        self.coordinator = SettlementCoordinator(self.storage, self.config, self.clock)
        self.accounts = AccountStore(self.storage, self.config)
        self.ledger = LedgerWriter(self.storage)
        self.wager = WagerEngine(self.config, rng)
        self.referrals = ReferralResolver(self.storage, self.coordinator, self.config)
        self.gateway = gateway or SimulatedPaymentGateway()
        self.code_sender = code_sender or LoggingCodeSender()
        self.hasher = hasher or PBKDF2PasswordHasher()
        self.file_store = file_store or LocalFileStore(self.config.upload_dir)

    # ------------------------------------------------------------------
    #   Accounts
    # ------------------------------------------------------------------
    def register(self, request: RegisterRequest) -> RegisterResponse:
        return self._create_account(request, is_admin=False)

    def create_admin(self, request: RegisterRequest) -> RegisterResponse:
        return self._create_account(request, is_admin=True)

    def _create_account(self, request: RegisterRequest, is_admin: bool) -> RegisterResponse:
        username = request.username.strip()
        phone = request.phone.strip()
        email = request.email.strip() if request.email else None
        if not username or not phone:
            raise ValidationError("Username and phone are required")
        if email and not EMAIL_RE.match(email):
            raise ValidationError("Invalid email address")

        password_hash = self.hasher.hash(request.password)

        with self.storage.registry_lock:
            if self.storage.find_account_by_phone(phone):
                raise DuplicatePhoneError(f"Phone {phone} is already registered")
            referrer = None
            if request.referral_code:
                referrer = self.storage.find_account_by_referral_code(request.referral_code)
                if referrer is None:
                    raise ValidationError(f"Unknown referral code '{request.referral_code}'")

            account_id = uuid4()
            with self.coordinator.settle("register", account_id) as s:
                record = s.create_account({
                    "id": account_id,
                    "username": username,
                    "phone": phone,
                    "email": email,
                    "password_hash": password_hash,
                    "verified": is_admin,
                    "points": 0,
                    "held_points": 0,
                    "total_deposited": Decimal("0"),
                    "last_wheel_spin": None,
                    "wheel_attempts_left": self.config.wheel_attempts_per_day,
                    "referral_code": self._new_referral_code(),
                    "is_admin": is_admin,
                    "profile_picture": None,
                    "created_at": s.now,
                })
                if referrer is not None:
                    self.referrals.record(s, referrer["id"], record)
                if self.config.signup_bonus > 0:
                    s.post(account_id, EntryKind.SIGNUP_BONUS, self.config.signup_bonus, "Signup bonus")

        logger.info(
            "account registered id=%s phone=%s referred_by=%s admin=%s",
            account_id, phone, referrer["id"] if referrer else None, is_admin,
        )
        account = self.storage.accounts[account_id]
        sent = True if is_admin else self._issue_code(account)
        return RegisterResponse(
            account=self._summary(account),
            referral_code=account["referral_code"],
            verification_sent=sent,
        )

    def _new_referral_code(self) -> str:
        while True:
            code = "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(8))
            if code not in self.storage.referral_code_index:
                return code

    def _issue_code(self, account: dict) -> bool:
        code = f"{secrets.randbelow(900000) + 100000}"
        self.storage.verification_codes[account["phone"]] = {
            "code": code,
            "expires_at": self.clock() + timedelta(minutes=self.config.verification_code_ttl_minutes),
        }
        destination = account["email"] or account["phone"]
        try:
            sent = self.code_sender.send(destination, code)
        except Exception:
            logger.warning("verification code delivery to %s failed", destination, exc_info=True)
            return False
        if not sent:
            logger.warning("verification code delivery to %s was refused", destination)
        return bool(sent)

    def verify_account(self, request: VerifyAccountRequest) -> AccountSummary:
        account = self.storage.find_account_by_phone(request.phone.strip())
        pending = self.storage.verification_codes.get(request.phone.strip())
        if (
            account is None
            or pending is None
            or pending["expires_at"] <= self.clock()
            or not secrets.compare_digest(pending["code"], request.code.strip())
        ):
            raise InvalidVerificationCodeError("Invalid or expired verification code")

        with self.coordinator.settle("verify_account", account["id"]) as s:
            s.accounts.get(account["id"])["verified"] = True
        self.storage.verification_codes.pop(account["phone"], None)
        return self._summary(self.storage.accounts[account["id"]])

    def resend_code(self, request: ResendCodeRequest) -> None:
        account = self.storage.find_account_by_phone(request.phone.strip())
        if account is None or account["verified"]:
            raise ValidationError("No unverified account found for this phone")
        if not self._issue_code(account):
            raise CodeDeliveryError("Could not deliver the verification code")

    def login(self, request: LoginRequest) -> AccountSummary:
        account = self.storage.find_account_by_phone(request.phone.strip())
        if account is None or not self.hasher.verify(request.password, account["password_hash"]):
            raise InvalidCredentialsError("Invalid phone or password")
        if self.config.require_verification and not account["verified"]:
            raise AccountNotVerifiedError("Account is not verified")
        return self._summary(account)

    def get_account(self, account_id: UUID) -> AccountSummary:
        return self._summary(self.accounts.get(account_id))

    def _summary(self, account: dict) -> AccountSummary:
        return AccountSummary(
            id=account["id"],
            username=account["username"],
            phone=account["phone"],
            email=account["email"],
            verified=account["verified"],
            points=account["points"],
            held_points=account["held_points"],
            total_deposited=account["total_deposited"],
            wheel_multiplier=wheel_multiplier(account["total_deposited"], self.config),
            last_wheel_spin=account["last_wheel_spin"],
            wheel_attempts_left=account["wheel_attempts_left"],
            referral_code=account["referral_code"],
            is_admin=account["is_admin"],
            profile_picture=account["profile_picture"],
            created_at=account["created_at"],
        )

    def update_profile_picture(self, account_id: UUID, data: bytes, filename: str) -> str:
        self.accounts.get(account_id)
        if not data:
            raise ValidationError("Empty upload")
        try:
            path = self.file_store.save(data, account_id, filename)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        except OSError as e:
            raise ExternalDependencyError(f"Could not store profile picture: {e}") from e

        with self.coordinator.settle("profile_picture", account_id) as s:
            s.accounts.get(account_id)["profile_picture"] = path
        return path

    # ------------------------------------------------------------------
    #   Tasks and wheel
    # ------------------------------------------------------------------
    def list_tasks(self) -> list[Task]:
        return [Task(**t) for t in self.storage.tasks.values() if t["is_active"]]

    def list_offer_walls(self) -> dict[str, str]:
        return dict(self.config.offer_walls)

    def complete_task(self, request: CompleteTaskRequest) -> TaskResponse:
        data = self.storage.tasks.get(request.task_id)
        if not data or not data["is_active"]:
            raise TaskNotFoundError(f"Task {request.task_id} not found")
        task = Task(**data)

        with self.coordinator.settle("complete_task", request.account_id) as s:
            s.post(request.account_id, EntryKind.TASK_REWARD, task.points, task.title, reference=str(task.id))
            s.append_row("task_completions", {
                "account_id": request.account_id,
                "task_id": task.id,
                "completed_at": s.now,
            })
            new_balance = s.accounts.get_balance(request.account_id)

        return TaskResponse(task_points=task.points, new_balance=new_balance)

    def spin_wheel(self, account_id: UUID, now: Optional[datetime] = None) -> SpinResponse:
        now = now or self.clock()
        with self.coordinator.settle("spin_wheel", account_id) as s:
            attempts_left = s.accounts.consume_spin(account_id, now)
            multiplier = wheel_multiplier(s.accounts.get(account_id)["total_deposited"], self.config)
            prize = self.wager.spin_wheel(multiplier)
            if prize < 0:
                prize = max(prize, -s.accounts.available(account_id))
            entry_id = None
            if prize != 0:
                entry_id = s.post(account_id, EntryKind.WHEEL_PRIZE, prize, f"Wheel spin x{multiplier}")
            s.append_row("wheel_spins", {
                "account_id": account_id,
                "prize": prize,
                "multiplier": multiplier,
                "entry_id": entry_id,
                "created_at": now,
                "seq": self.storage.next_seq(),
            })
            new_balance = s.accounts.get_balance(account_id)

        if prize > 0:
            message = f"You won {prize} points!"
        elif prize < 0:
            message = f"You lost {-prize} points."
        else:
            message = "No luck this time."
        return SpinResponse(prize_delta=prize, attempts_left=attempts_left, new_balance=new_balance, message=message)

    # ------------------------------------------------------------------
    #   Deposits and withdrawals
    # ------------------------------------------------------------------
    def deposit(self, request: DepositRequest) -> DepositResponse:
        amount = request.amount
        if amount < self.config.min_deposit:
            raise BelowMinimumDepositError(f"Minimum deposit is {self.config.min_deposit}")
        points = floor_points(amount * self.config.points_to_money_ratio)
        if points <= 0:
            raise ValidationError("Deposit amount is too small to buy any points")
        fee = floor_points(Decimal(points) * self.config.deposit_fee_rate)

        deposit_id = uuid4()
        with self.coordinator.settle("deposit_request", request.account_id) as s:
            s.accounts.get(request.account_id)
            entry_id = s.ledger.append(
                request.account_id, EntryKind.DEPOSIT, points - fee,
                f"Deposit {request.method}", status=EntryStatus.PENDING, reference=str(deposit_id),
            )
            s.put_row("deposits", deposit_id, {
                "id": deposit_id,
                "account_id": request.account_id,
                "amount": amount,
                "points": points,
                "fee": fee,
                "phone_number": request.phone_number,
                "method": request.method,
                "status": EntryStatus.PENDING,
                "entry_id": entry_id,
                "gateway_reference": None,
                "created_at": s.now,
                "processed_at": None,
            })
        return self._confirm_deposit(deposit_id)

    def retry_deposit(self, deposit_id: UUID) -> DepositResponse:
        record = self.storage.deposits.get(deposit_id)
        if record is None:
            raise DepositNotFoundError(f"Deposit {deposit_id} not found")
        if record["status"] != EntryStatus.PENDING:
            raise InvalidStateTransitionError(f"Deposit {deposit_id} is already {record['status'].value}")
        return self._confirm_deposit(deposit_id)

    def _confirm_deposit(self, deposit_id: UUID) -> DepositResponse:
        record = self.storage.deposits[deposit_id]
        account_id = record["account_id"]
        try:
            decision = self.gateway.submit(record["amount"], record["phone_number"], f"DEPOSIT_{deposit_id}")
        except Exception as e:
            logger.warning("gateway error on deposit %s, left pending: %s", deposit_id, e)
            raise PaymentGatewayError(f"Payment gateway unavailable, deposit {deposit_id} is pending") from e

        with self.coordinator.settle("deposit_settle", account_id) as s:
            row = s.row("deposits", deposit_id)
            if row["status"] != EntryStatus.PENDING:
                raise InvalidStateTransitionError(f"Deposit {deposit_id} settled twice")
            row["gateway_reference"] = decision.reference
            row["processed_at"] = s.now
            if decision.accepted:
                s.complete(row["entry_id"])
                s.accounts.record_deposit(account_id, row["amount"])
                if row["fee"]:
                    s.ledger.append_earnings(row["fee"], PoolSource.DEPOSIT_FEE, account_id)
                row["status"] = EntryStatus.COMPLETED
            else:
                s.fail(row["entry_id"])
                row["status"] = EntryStatus.FAILED
            new_balance = s.accounts.get_balance(account_id)

        if not decision.accepted:
            logger.warning("deposit %s rejected by gateway: %s", deposit_id, decision.message)
            raise PaymentGatewayError(f"Deposit rejected: {decision.message or 'declined'}")

        self._resolve_referral(account_id)
        return DepositResponse(
            deposit_id=deposit_id,
            points_added=record["points"] - record["fee"],
            new_balance=new_balance,
            status=EntryStatus.COMPLETED,
        )

    def _resolve_referral(self, account_id: UUID) -> None:
        try:
            self.referrals.resolve(account_id)
        except Exception:
            logger.exception("referral resolution failed for account %s", account_id)

    def get_deposit(self, deposit_id: UUID) -> DepositRecord:
        record = self.storage.deposits.get(deposit_id)
        if record is None:
            raise DepositNotFoundError(f"Deposit {deposit_id} not found")
        return DepositRecord(**record)

    def withdraw(self, request: WithdrawRequest) -> WithdrawResponse:
        points = request.amount
        if points < self.config.min_withdraw:
            raise BelowMinimumWithdrawError(f"Minimum withdrawal is {self.config.min_withdraw} points")
        fee = floor_points(Decimal(points) * self.config.withdrawal_fee_rate)
        money = (Decimal(points - fee) / self.config.points_to_money_ratio).quantize(CENT, rounding=ROUND_DOWN)

        withdrawal_id = uuid4()
        with self.coordinator.settle("withdraw_request", request.account_id) as s:
            s.accounts.hold(request.account_id, points)
            entry_id = s.ledger.append(
                request.account_id, EntryKind.WITHDRAWAL, -points,
                f"Withdrawal {request.method}", status=EntryStatus.PENDING, reference=str(withdrawal_id),
            )
            s.put_row("withdrawals", withdrawal_id, {
                "id": withdrawal_id,
                "account_id": request.account_id,
                "points": points,
                "fee": fee,
                "money_amount": money,
                "phone_number": request.phone_number,
                "method": request.method,
                "status": EntryStatus.PENDING,
                "entry_id": entry_id,
                "gateway_reference": None,
                "created_at": s.now,
                "processed_at": None,
            })
        return self._confirm_withdrawal(withdrawal_id)

    def retry_withdrawal(self, withdrawal_id: UUID) -> WithdrawResponse:
        record = self.storage.withdrawals.get(withdrawal_id)
        if record is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        if record["status"] != EntryStatus.PENDING:
            raise InvalidStateTransitionError(f"Withdrawal {withdrawal_id} is already {record['status'].value}")
        return self._confirm_withdrawal(withdrawal_id)

    def _confirm_withdrawal(self, withdrawal_id: UUID) -> WithdrawResponse:
        record = self.storage.withdrawals[withdrawal_id]
        account_id = record["account_id"]
        try:
            decision = self.gateway.submit(record["money_amount"], record["phone_number"], f"WITHDRAW_{withdrawal_id}")
        except Exception as e:
            logger.warning("gateway error on withdrawal %s, points stay held: %s", withdrawal_id, e)
            raise PaymentGatewayError(f"Payment gateway unavailable, withdrawal {withdrawal_id} is pending") from e

        with self.coordinator.settle("withdraw_settle", account_id) as s:
            row = s.row("withdrawals", withdrawal_id)
            if row["status"] != EntryStatus.PENDING:
                raise InvalidStateTransitionError(f"Withdrawal {withdrawal_id} settled twice")
            row["gateway_reference"] = decision.reference
            row["processed_at"] = s.now
            s.accounts.release_hold(account_id, row["points"])
            if decision.accepted:
                s.complete(row["entry_id"])
                if row["fee"]:
                    s.ledger.append_earnings(row["fee"], PoolSource.WITHDRAWAL_FEE, account_id)
                row["status"] = EntryStatus.COMPLETED
            else:
                s.fail(row["entry_id"])
                row["status"] = EntryStatus.FAILED
            new_balance = s.accounts.get_balance(account_id)

        if not decision.accepted:
            logger.warning("withdrawal %s rejected by gateway: %s", withdrawal_id, decision.message)
            raise PaymentGatewayError(f"Withdrawal rejected: {decision.message or 'declined'}")

        return WithdrawResponse(
            withdrawal_id=withdrawal_id,
            money_amount=record["money_amount"],
            points=record["points"],
            status=EntryStatus.COMPLETED,
            new_balance=new_balance,
        )

    def get_withdrawal(self, withdrawal_id: UUID) -> WithdrawalRecord:
        record = self.storage.withdrawals.get(withdrawal_id)
        if record is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return WithdrawalRecord(**record)

    # ------------------------------------------------------------------
    #   Games
    # ------------------------------------------------------------------
    def list_games(self) -> list[Game]:
        return [Game(**g) for g in self.storage.games.values() if g["is_active"]]

    def get_game(self, game_id: str) -> Game:
        data = self.storage.games.get(game_id)
        if not data or not data["is_active"]:
            raise GameNotFoundError(f"Game '{game_id}' not found")
        return Game(**data)

    def play_game(self, request: PlayGameRequest) -> PlayResponse:
        game = self.get_game(request.game_id)
        bet = request.bet_amount

        with self.coordinator.settle("play_game", request.account_id) as s:
            self.wager.validate_bet(game, bet, s.accounts.available(request.account_id))
            outcome = self.wager.resolve(game, bet)
            kind = EntryKind.GAME_WIN if outcome.kind == OutcomeKind.WIN else EntryKind.GAME_LOSS
            s.post(
                request.account_id, kind, outcome.net,
                f"{game.name}: bet {bet} x{outcome.multiplier}", reference=game.id,
            )
            split = self.wager.split(bet, outcome)
            if split.commission:
                s.ledger.append_earnings(split.commission, PoolSource.GAME_LOSS, request.account_id, game.id)
            if split.reserve:
                source = PoolSource.GAME_LOSS if split.reserve > 0 else PoolSource.GAME_WIN
                s.ledger.append_reserve(split.reserve, source, request.account_id, game.id)
            new_balance = s.accounts.get_balance(request.account_id)

        return PlayResponse(
            outcome_kind=outcome.kind,
            multiplier=outcome.multiplier,
            win_amount=outcome.payout,
            net=outcome.net,
            new_balance=new_balance,
        )

    # ------------------------------------------------------------------
    #   Admin and history
    # ------------------------------------------------------------------
    def admin_withdraw_earnings(self, request: AdminWithdrawRequest) -> AdminWithdrawResponse:
        admin_id = request.account_id
        with self.coordinator.settle("admin_withdrawal", admin_id, pools=True) as s:
            if not s.accounts.get(admin_id)["is_admin"]:
                raise ForbiddenError("Only administrators can withdraw earnings")
            total = self.ledger.earnings_total()
            if total <= 0:
                raise NoEarningsAvailableError("No earnings available")
            s.ledger.append_earnings(-total, PoolSource.ADMIN_WITHDRAWAL, admin_id)
            # The points leave the earnings pool, not the admin's balance
            s.post(
                admin_id, EntryKind.ADMIN_WITHDRAWAL, 0,
                f"Earnings withdrawal of {total} points", reference=str(total),
            )

        logger.info("admin %s withdrew %s points of earnings", admin_id, total)
        return AdminWithdrawResponse(total_withdrawn=total)

    def user_history(self, account_id: UUID, limit: int = 50, offset: int = 0) -> HistoryResponse:
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must not be negative")
        balance = self.accounts.get_balance(account_id)
        items = self.ledger.history(account_id)
        return HistoryResponse(
            account_id=account_id,
            items=items[offset:offset + limit],
            total_count=len(items),
            current_balance=balance,
        )
