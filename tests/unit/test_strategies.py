"""
内置策略单元测试
"""
from datetime import datetime, timedelta

import pytest

from backtest.domain.models import Direction
from conftest import make_candle
from strategies.strategies import (
    STRATEGY_REGISTRY,
    PriceChangeStrategy,
    SMACrossStrategy,
    get_strategy,
)


def _feed(strategy, closes, start=datetime(2024, 1, 1), step=timedelta(days=1)):
    strategy.initialize()
    return [strategy.on_candle(make_candle("TEST", start + step * i, c)) for i, c in enumerate(closes)]


def test_builtin_strategies_registered():
    assert "price_change" in STRATEGY_REGISTRY
    assert "sma_cross" in STRATEGY_REGISTRY
    assert isinstance(get_strategy("price_change", threshold=0.02), PriceChangeStrategy)


def test_unknown_strategy_name():
    with pytest.raises(ValueError):
        get_strategy("does_not_exist")


def test_uninitialized_strategy_returns_none():
    strategy = PriceChangeStrategy()
    assert strategy.on_candle(make_candle("TEST", datetime(2024, 1, 1), 100.0)) is None


class TestPriceChangeStrategy:

    def test_signal_follows_move(self):
        signals = _feed(PriceChangeStrategy(threshold=0.01), [100.0, 100.5, 102.0, 99.0])

        assert signals[0] is None
        assert signals[1] is None
        assert signals[2].direction == Direction.LONG
        assert signals[3].direction == Direction.SHORT
        assert all(0.6 <= s.confidence <= 0.8 for s in signals[2:])

    def test_daily_signal_cap(self):
        closes = [100.0, 102.0, 104.0, 106.0, 108.0]
        signals = _feed(PriceChangeStrategy(threshold=0.01, max_signals_per_day=2), closes,
                        step=timedelta(hours=1))

        assert sum(1 for s in signals if s) == 2

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            PriceChangeStrategy(threshold=0)

    def test_cleanup_resets_state(self):
        strategy = PriceChangeStrategy(threshold=0.01)
        _feed(strategy, [100.0, 105.0])
        strategy.cleanup()

        assert strategy.initialized is False
        assert _feed(strategy, [110.0])[0] is None


class TestSMACrossStrategy:

    def test_invalid_periods(self):
        with pytest.raises(ValueError):
            SMACrossStrategy(fast_period=20, slow_period=10)

    def test_golden_and_death_cross(self):
        closes = [13.0, 12.0, 11.0, 10.0, 10.0, 14.0, 14.0, 6.0, 6.0]
        signals = _feed(SMACrossStrategy(fast_period=2, slow_period=4), closes)

        directions = [s.direction for s in signals if s]
        assert directions == [Direction.LONG, Direction.SHORT]
