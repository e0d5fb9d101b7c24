"""
Unit Tests for the Wager Engine

Tests cover:
1. Outcome resolution per odds family
2. Commission / reserve split
3. Bet validation
4. Wheel prize scaling
"""

import random

import pytest
from decimal import Decimal

from pointledger.config import PlatformConfig
from pointledger.errors import BetTooSmallError, InsufficientFundsError, ValidationError
from pointledger.models import ContinuousOdds, Game, OutcomeKind
from pointledger.wager import WagerEngine, wheel_multiplier

from conftest import FixedRandom


def crash_game():
    return Game(id="crash", name="Crash", min_bet=10, odds={"kind": "continuous", "low": "0", "high": "2.5"})


def slots_game():
    return Game(id="slots", name="Slots", min_bet=5, odds={
        "kind": "discrete", "multipliers": ["0", "0.5", "1", "3"],
    })


def dice_game():
    return Game(id="dice", name="Dice", min_bet=5, odds={"kind": "threshold", "threshold": "55", "multiplier": "2"})


class TestResolution:
    """Tests for turning a draw into an outcome."""

    def test_continuous_win_floors_payout(self):
        engine = WagerEngine(PlatformConfig(), FixedRandom(value=1.739))
        outcome = engine.resolve(crash_game(), 15)

        # 1.73 x 15 = 25.95 -> 25
        assert outcome.kind == OutcomeKind.WIN
        assert outcome.multiplier == Decimal("1.73")
        assert outcome.payout == 25
        assert outcome.net == 10

    def test_continuous_below_one_loses_whole_bet(self):
        engine = WagerEngine(PlatformConfig(), FixedRandom(value=0.95))
        outcome = engine.resolve(crash_game(), 40)

        assert outcome.kind == OutcomeKind.LOSS
        assert outcome.payout == 0
        assert outcome.net == -40

    def test_discrete_partial_loss(self):
        engine = WagerEngine(PlatformConfig(), FixedRandom(index=1))
        outcome = engine.resolve(slots_game(), 25)

        assert outcome.kind == OutcomeKind.LOSS
        assert outcome.payout == 12
        assert outcome.net == -13

    def test_discrete_break_even_is_not_a_win(self):
        engine = WagerEngine(PlatformConfig(), FixedRandom(index=2))
        outcome = engine.resolve(slots_game(), 25)

        assert outcome.kind == OutcomeKind.LOSS
        assert outcome.net == 0

    def test_threshold_roll(self):
        winning = WagerEngine(PlatformConfig(), FixedRandom(value=55.0)).resolve(dice_game(), 10)
        losing = WagerEngine(PlatformConfig(), FixedRandom(value=54.99)).resolve(dice_game(), 10)

        assert winning.payout == 20
        assert winning.kind == OutcomeKind.WIN
        assert losing.payout == 0

    def test_outcomes_stay_within_table(self):
        engine = WagerEngine(PlatformConfig(), random.Random(7))
        allowed = {0, 5, 10, 30}

        for _ in range(200):
            assert engine.resolve(slots_game(), 10).payout in allowed


class TestSplit:
    """Tests for the commission / reserve split."""

    def test_full_loss_split(self):
        config = PlatformConfig(house_edge=Decimal("0.1"), reserve_percentage=Decimal("0.5"))
        engine = WagerEngine(config)
        split = engine.split(99, WagerEngine.outcome_for(99, Decimal("0")))

        assert split.commission == 9
        assert split.reserve == 49

    def test_win_is_paid_from_reserve_without_commission(self):
        engine = WagerEngine(PlatformConfig())
        split = engine.split(100, WagerEngine.outcome_for(100, Decimal("3")))

        assert split.commission == 0
        assert split.reserve == -300

    def test_partial_loss_splits_the_whole_bet(self):
        """Test that a partial payout still splits on the full stake."""
        config = PlatformConfig(house_edge=Decimal("0.1"), reserve_percentage=Decimal("0.5"))
        engine = WagerEngine(config)
        split = engine.split(100, WagerEngine.outcome_for(100, Decimal("0.5")))

        assert split.commission == 10
        assert split.reserve == 50

    def test_split_never_exceeds_bet(self):
        config = PlatformConfig(house_edge=Decimal("0.37"), reserve_percentage=Decimal("0.63"))
        engine = WagerEngine(config)

        for bet in range(1, 300):
            for multiplier in ("0", "0.25", "0.5", "0.9", "1"):
                split = engine.split(bet, WagerEngine.outcome_for(bet, Decimal(multiplier)))
                assert split.commission >= 0
                assert split.reserve >= 0
                assert split.commission + split.reserve <= bet

    def test_disabled_reserve_model(self):
        engine = WagerEngine(PlatformConfig(reserve_model_enabled=False))
        split = engine.split(50, WagerEngine.outcome_for(50, Decimal("0")))

        assert split.commission == 0
        assert split.reserve == 0

    def test_config_rejects_split_over_one(self):
        with pytest.raises(ValueError):
            PlatformConfig(house_edge=Decimal("0.6"), reserve_percentage=Decimal("0.5"))


class TestBetValidation:
    """Tests for rejecting bets before anything is settled."""

    def test_bet_below_minimum(self):
        with pytest.raises(BetTooSmallError):
            WagerEngine(PlatformConfig()).validate_bet(crash_game(), 9, 1000)

    def test_bet_above_available(self):
        with pytest.raises(InsufficientFundsError):
            WagerEngine(PlatformConfig()).validate_bet(crash_game(), 11, 10)

    def test_non_positive_bet(self):
        with pytest.raises(ValidationError):
            WagerEngine(PlatformConfig()).validate_bet(crash_game(), 0, 10)


class TestWheel:
    """Tests for wheel multipliers and prize scaling."""

    def test_multiplier_grows_per_deposit_step(self):
        config = PlatformConfig()

        assert wheel_multiplier(Decimal("0"), config) == Decimal("1")
        assert wheel_multiplier(Decimal("4999.99"), config) == Decimal("1")
        assert wheel_multiplier(Decimal("5000"), config) == Decimal("1.5")
        assert wheel_multiplier(Decimal("12000"), config) == Decimal("2")

    def test_prize_rounds_half_up(self):
        engine = WagerEngine(PlatformConfig(wheel_prizes=(15,)), FixedRandom())
        assert engine.spin_wheel(Decimal("1.5")) == 23

    def test_negative_prize_keeps_sign(self):
        engine = WagerEngine(PlatformConfig(wheel_prizes=(-10,)), FixedRandom())
        assert engine.spin_wheel(Decimal("2")) == -20


class TestOddsTables:

    def test_continuous_range_must_be_ordered(self):
        with pytest.raises(ValueError):
            ContinuousOdds(low=Decimal("3"), high=Decimal("1.5"))

    def test_game_rejects_inverted_range(self):
        with pytest.raises(ValueError):
            Game(id="bad", name="Bad", min_bet=1, odds={"kind": "continuous", "low": "2", "high": "1"})
