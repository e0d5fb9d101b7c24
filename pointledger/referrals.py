import logging
from typing import Optional
from uuid import UUID

from .config import PlatformConfig
from .models import EntryKind, Referral
from .settlement import Settlement, SettlementCoordinator
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class ReferralResolver:
    """Pays the referrer once, when the referee's first deposit completes."""

    def __init__(
        self,
        storage: InMemoryStorage,
        coordinator: SettlementCoordinator,
        config: PlatformConfig,
    ):
        self.storage = storage
        self.coordinator = coordinator
        self.config = config

    def record(self, settlement: Settlement, referrer_id: UUID, referee: dict) -> None:
        settlement.put_row("referrals", referee["id"], {
            "referrer_id": referrer_id,
            "referee_id": referee["id"],
            "referee_username": referee["username"],
            "bonus_given": False,
            "created_at": settlement.now,
            "credited_at": None,
        })

    def get(self, referee_id: UUID) -> Optional[Referral]:
        data = self.storage.referrals.get(referee_id)
        return Referral(**data) if data else None

    def referrals_by(self, referrer_id: UUID) -> list[Referral]:
        return [
            Referral(**r) for r in list(self.storage.referrals.values())
            if r["referrer_id"] == referrer_id
        ]

    def resolve(self, referee_id: UUID) -> Optional[UUID]:
        """Credit the pending bonus for ``referee_id``; returns the entry id if paid."""
        pending = self.storage.referrals.get(referee_id)
        if pending is None or pending["bonus_given"]:
            return None

        referrer_id = pending["referrer_id"]
        entry_id = None
        with self.coordinator.settle("referral_bonus", referrer_id, referee_id) as s:
            referral = s.row("referrals", referee_id)
            if referral["bonus_given"]:
                return None
            if self.config.referral_bonus > 0:
                entry_id = s.post(
                    referrer_id,
                    EntryKind.REFERRAL_BONUS,
                    self.config.referral_bonus,
                    f"Referral bonus for {referral['referee_username']}",
                    reference=str(referee_id),
                )
            referral["bonus_given"] = True
            referral["credited_at"] = s.now

        logger.info(
            "referral bonus credited referrer=%s referee=%s amount=%s",
            referrer_id, referee_id, self.config.referral_bonus,
        )
        return entry_id
