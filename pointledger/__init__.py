"""
Points Ledger and Wagering Engine

This module provides:
- Account balances with held points and daily wheel state
- An append-only ledger with pending → completed / failed transitions
- Game and wheel resolution with a commission / reserve split
- Atomic settlements with per-account locking
- One-time referral bonuses on a referee's first deposit
"""

from .config import PlatformConfig
from .models import (
    EntryKind,
    EntryStatus,
    PoolSource,
    OutcomeKind,
    LedgerEntry,
    Game,
    Referral,
)
from .service import PlatformService
from .settlement import SettlementCoordinator, SettlementState

__all__ = [
    "PlatformConfig",
    "EntryKind",
    "EntryStatus",
    "PoolSource",
    "OutcomeKind",
    "LedgerEntry",
    "Game",
    "Referral",
    "PlatformService",
    "SettlementCoordinator",
    "SettlementState",
]
