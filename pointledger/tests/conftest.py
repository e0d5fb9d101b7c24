import random
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pointledger.collaborators import LoggingCodeSender, PBKDF2PasswordHasher
from pointledger.config import PlatformConfig
from pointledger.models import DepositRequest, RegisterRequest
from pointledger.service import PlatformService


class FixedRandom(random.Random):
    """Always lands on the same slot / value."""

    def __init__(self, index: int = 0, value: float = 0.0, delay: float = 0.0):
        super().__init__(0)
        self.index = index
        self.value = value
        self.delay = delay

    def randrange(self, n, *args, **kwargs):
        if self.delay:
            time.sleep(self.delay)
        return self.index % n

    def uniform(self, a, b):
        return self.value


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 14, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_service(clock):
    def factory(config=None, **kwargs):
        kwargs.setdefault("hasher", PBKDF2PasswordHasher(iterations=1000))
        kwargs.setdefault("code_sender", LoggingCodeSender())
        kwargs.setdefault("rng", FixedRandom())
        kwargs.setdefault("clock", clock)
        return PlatformService(config or PlatformConfig(), **kwargs)
    return factory


@pytest.fixture
def service(make_service):
    return make_service()


_phones = iter(range(1000, 100000))
_phones_lock = threading.Lock()


def register(service, username="player", referral_code=None, password="pw"):
    with _phones_lock:
        phone = f"+24381{next(_phones)}"
    return service.register(RegisterRequest(
        username=username, phone=phone, password=password, referral_code=referral_code,
    ))


def deposit(service, account_id, amount="1000"):
    return service.deposit(DepositRequest(
        account_id=account_id, amount=Decimal(amount), phone_number="+243810000000", method="airtel",
    ))
