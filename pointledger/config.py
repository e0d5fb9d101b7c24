import json
import logging
import os
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


ENV_PREFIX = "POINTLEDGER_"

DEFAULT_WHEEL_PRIZES = (50, 20, 30, 0, 10, 25, 15, 100, -10, -5)

DEFAULT_OFFER_WALLS = {
    "cpaGrip": "https://www.cpagrip.com/offer_wall.php?user=YOUR_CPAGRIP_USER_ID&type=2",
    "ogAds": "https://api.ogads.com/v1/offers?user_id=YOUR_OGADS_USER_ID",
    "adWorkMedia": "https://www.adworkmedia.com/api/v1/get_offers?api_key=YOUR_API_KEY",
}


class PlatformConfig(BaseModel):
    """Business constants for the points platform.

    Built once at process start and handed to every component that needs it.
    """

    min_deposit: Decimal = Field(default=Decimal("500"), gt=0)
    min_withdraw: int = Field(default=10, gt=0)
    points_to_money_ratio: Decimal = Field(default=Decimal("0.01"), gt=0)
    wheel_attempts_per_day: int = Field(default=1, ge=0)
    referral_bonus: int = Field(default=100, ge=0)
    house_edge: Decimal = Field(default=Decimal("0.05"), ge=0, le=1)
    reserve_percentage: Decimal = Field(default=Decimal("0.50"), ge=0, le=1)
    reserve_model_enabled: bool = True

    signup_bonus: int = Field(default=0, ge=0)
    deposit_fee_rate: Decimal = Field(default=Decimal("0"), ge=0, lt=1)
    withdrawal_fee_rate: Decimal = Field(default=Decimal("0"), ge=0, lt=1)

    wheel_prizes: tuple[int, ...] = DEFAULT_WHEEL_PRIZES
    wheel_deposit_step: Decimal = Field(default=Decimal("5000"), gt=0)
    wheel_step_bonus: Decimal = Field(default=Decimal("0.5"), ge=0)

    verification_code_ttl_minutes: int = Field(default=10, gt=0)
    require_verification: bool = True

    # Offer-wall provider name -> iframe URL shown to users
    offer_walls: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_OFFER_WALLS))

    log_level: str = "INFO"
    upload_dir: str = "uploads"

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_split(self) -> "PlatformConfig":
        if self.house_edge + self.reserve_percentage > 1:
            raise ValueError("house_edge + reserve_percentage must not exceed 1")
        if not self.wheel_prizes:
            raise ValueError("wheel_prizes must not be empty")
        return self

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "PlatformConfig":
        """Read overrides from ``POINTLEDGER_*`` environment variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if name == "wheel_prizes":
                values[name] = tuple(int(p) for p in raw.split(",") if p.strip())
            elif name == "offer_walls":
                values[name] = json.loads(raw)
            elif name in ("reserve_model_enabled", "require_verification"):
                values[name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[name] = raw
        return cls(**values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
