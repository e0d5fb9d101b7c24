import itertools
import threading
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .models import ContinuousOdds, DiscreteOdds, ThresholdOdds


class InMemoryStorage:
    """Process-local tables for accounts, the ledger and the two pools.

    Rows are plain dicts. Writers go through a settlement, which holds the
    per-account locks handed out by :meth:`account_lock`.
    """

    def __init__(self):
        self.accounts: dict[UUID, dict] = {}
        self.phone_index: dict[str, UUID] = {}
        self.referral_code_index: dict[str, UUID] = {}
        self.ledger_entries: dict[UUID, dict] = {}
        self.reserve_pool: list[dict] = []
        self.earnings_pool: list[dict] = []
        self.referrals: dict[UUID, dict] = {}
        self.games: dict[str, dict] = {}
        self.tasks: dict[int, dict] = {}
        self.task_completions: list[dict] = []
        self.deposits: dict[UUID, dict] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self.wheel_spins: list[dict] = []
        self.verification_codes: dict[str, dict] = {}

        self.registry_lock = threading.Lock()
        self.pool_lock = threading.RLock()
        self.commit_lock = threading.Lock()
        self._locks: dict[UUID, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._seq = itertools.count(1)
        self._seed_data()

    def _seed_data(self):
        tasks = [
            (1, "Watch an ad", "Watch a 30 second video ad", 10, "ad", "fas fa-ad"),
            (2, "Try an app", "Install the app and use it for one minute", 50, "app", "fas fa-mobile-alt"),
            (3, "Visit a website", "Stay on the site for at least 30 seconds", 15, "visit", "fas fa-globe"),
            (4, "Share on Facebook", "Share our link on your profile", 20, "share", "fas fa-share-alt"),
            (5, "Invite a friend", "Refer a friend who signs up and completes a task", 100, "referral", "fas fa-user-friends"),
        ]
        for task_id, title, description, points, task_type, icon in tasks:
            self.tasks[task_id] = {
                "id": task_id, "title": title, "description": description,
                "points": points, "type": task_type, "icon": icon, "is_active": True,
            }

        games = [
            ("crash", "Crash", 10, ContinuousOdds(low=Decimal("0.00"), high=Decimal("2.50"))),
            ("fortune-slots", "Fortune Slots", 5, DiscreteOdds(multipliers=[
                Decimal("0"), Decimal("0"), Decimal("0.5"), Decimal("1"),
                Decimal("1.5"), Decimal("2"), Decimal("3"),
            ])),
            ("dice", "Dice Over 55", 5, ThresholdOdds(threshold=Decimal("55"), multiplier=Decimal("2"))),
        ]
        for game_id, name, min_bet, odds in games:
            self.games[game_id] = {
                "id": game_id, "name": name, "min_bet": min_bet,
                "is_active": True, "odds": odds.model_dump(),
            }

    def next_seq(self) -> int:
        return next(self._seq)

    def account_lock(self, account_id: UUID) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.Lock()
            return lock

    def find_account_by_phone(self, phone: str) -> Optional[dict]:
        account_id = self.phone_index.get(phone)
        return self.accounts.get(account_id) if account_id else None

    def find_account_by_referral_code(self, code: str) -> Optional[dict]:
        account_id = self.referral_code_index.get(code.strip().upper())
        return self.accounts.get(account_id) if account_id else None
