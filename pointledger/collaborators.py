"""
External collaborators consumed by the platform service.

Only the interfaces matter to the ledger; the implementations shipped here are
the simulated ones used in development and tests.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional, Protocol
from uuid import UUID, uuid4

from passlib.hash import pbkdf2_sha256

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayDecision:
    accepted: bool
    reference: Optional[str] = None
    message: str = ""


class PaymentGateway(Protocol):
    def submit(self, amount: Decimal, phone: str, reference: str) -> GatewayDecision:
        ...


class CodeSender(Protocol):
    def send(self, destination: str, code: str) -> bool:
        ...


class PasswordHasher(Protocol):
    def hash(self, plaintext: str) -> str:
        ...

    def verify(self, plaintext: str, stored: str) -> bool:
        ...


class FileStore(Protocol):
    def save(self, data: bytes, account_id: UUID, filename: str) -> str:
        ...


class SimulatedPaymentGateway:
    """Accepts every request, like the demo flow of the mobile-money integration."""

    def submit(self, amount: Decimal, phone: str, reference: str) -> GatewayDecision:
        logger.info("gateway simulated accept amount=%s phone=%s ref=%s", amount, phone, reference)
        return GatewayDecision(accepted=True, reference=f"SIM-{uuid4().hex[:12].upper()}")


class LoggingCodeSender:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def send(self, destination: str, code: str) -> bool:
        self.sent.append((destination, code))
        logger.info("verification code issued to %s", destination)
        return True


class PBKDF2PasswordHasher:
    """PBKDF2-SHA256 through passlib (``$pbkdf2-sha256$rounds$salt$checksum``)."""

    def __init__(self, iterations: int = 29000):
        self.iterations = iterations
        self._handler = pbkdf2_sha256.using(rounds=iterations)

    def hash(self, plaintext: str) -> str:
        return self._handler.hash(plaintext)

    def verify(self, plaintext: str, stored: str) -> bool:
        try:
            return pbkdf2_sha256.verify(plaintext, stored)
        except ValueError:
            logger.warning("stored password hash is not a pbkdf2-sha256 hash")
            return False


class LocalFileStore:
    """Writes profile pictures under ``root/<account_id>/``."""

    allowed_suffixes = (".png", ".jpg", ".jpeg", ".gif", ".webp")

    def __init__(self, root: str):
        self.root = Path(root)

    def save(self, data: bytes, account_id: UUID, filename: str) -> str:
        suffix = Path(filename).suffix.lower()
        if suffix not in self.allowed_suffixes:
            raise ValueError(f"Unsupported image type '{suffix or filename}'")
        stem = re.sub(r"[^A-Za-z0-9_-]", "_", Path(filename).stem)[:40] or "picture"
        target_dir = self.root / str(account_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{stem}-{uuid4().hex[:8]}{suffix}"
        target.write_bytes(data)
        return target.as_posix()
