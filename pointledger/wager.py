"""
Wager Engine

Turns one game round or wheel spin into a point outcome and works out how a
round feeds the house pools. Nothing here touches storage: callers settle the
outcome afterwards.
"""

import random
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional

from .config import PlatformConfig
from .errors import BetTooSmallError, InsufficientFundsError, ValidationError
from .models import ContinuousOdds, DiscreteOdds, Game, OutcomeKind, ThresholdOdds

CENT = Decimal("0.01")


@dataclass(frozen=True)
class WagerOutcome:
    kind: OutcomeKind
    multiplier: Decimal
    payout: int
    net: int


@dataclass(frozen=True)
class PoolSplit:
    commission: int
    reserve: int


def floor_points(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def wheel_multiplier(total_deposited: Decimal, config: PlatformConfig) -> Decimal:
    steps = floor_points(Decimal(total_deposited) / config.wheel_deposit_step)
    return Decimal(1) + Decimal(steps) * config.wheel_step_bonus


class WagerEngine:
    def __init__(self, config: PlatformConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.SystemRandom()

    def validate_bet(self, game: Game, bet: int, available: int) -> None:
        if isinstance(bet, bool) or not isinstance(bet, int) or bet <= 0:
            raise ValidationError("Bet must be a positive whole number of points")
        if bet < game.min_bet:
            raise BetTooSmallError(f"Minimum bet for {game.name} is {game.min_bet} points")
        if bet > available:
            raise InsufficientFundsError(available, bet)

    def draw_multiplier(self, game: Game) -> Decimal:
        odds = game.odds
        if isinstance(odds, ContinuousOdds):
            raw = Decimal(str(self.rng.uniform(float(odds.low), float(odds.high))))
            multiplier = raw.quantize(CENT, rounding=ROUND_DOWN)
            return multiplier if multiplier > 1 else Decimal(0)
        if isinstance(odds, DiscreteOdds):
            return odds.multipliers[self.rng.randrange(len(odds.multipliers))]
        if isinstance(odds, ThresholdOdds):
            roll = Decimal(str(self.rng.uniform(0, 100))).quantize(CENT, rounding=ROUND_DOWN)
            return odds.multiplier if roll >= odds.threshold else Decimal(0)
        raise ValidationError(f"Unsupported odds table for game {game.id}")

    def resolve(self, game: Game, bet: int) -> WagerOutcome:
        multiplier = self.draw_multiplier(game)
        return self.outcome_for(bet, multiplier)

    @staticmethod
    def outcome_for(bet: int, multiplier: Decimal) -> WagerOutcome:
        payout = floor_points(Decimal(bet) * multiplier)
        kind = OutcomeKind.WIN if payout > bet else OutcomeKind.LOSS
        return WagerOutcome(kind=kind, multiplier=multiplier, payout=payout, net=payout - bet)

    def split(self, bet: int, outcome: WagerOutcome) -> PoolSplit:
        """Commission and reserve movement for a settled round.

        A loss feeds both pools in proportion to the bet; a win is paid out of
        the reserve (the full payout as a negative entry) and carries no
        commission.
        """
        if not self.config.reserve_model_enabled:
            return PoolSplit(commission=0, reserve=0)
        if outcome.kind == OutcomeKind.WIN:
            return PoolSplit(commission=0, reserve=-outcome.payout)
        commission = floor_points(Decimal(bet) * self.config.house_edge)
        reserve = floor_points(Decimal(bet) * self.config.reserve_percentage)
        return PoolSplit(commission=commission, reserve=reserve)

    def spin_wheel(self, multiplier: Decimal) -> int:
        prize = self.config.wheel_prizes[self.rng.randrange(len(self.config.wheel_prizes))]
        scaled = Decimal(prize) * multiplier
        return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))
