"""
pytest 配置文件

提供测试 fixtures 和内存实现（数据源、结果存储、信号统计、确定性策略）。
"""
import os

# 测试期间不写日志文件，不落库
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("PERSIST_RESULTS", "false")

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytest

from backtest.adapters.cache.memory_cache import MemoryCache
from backtest.data_provider import HistoricalDataProvider
from backtest.domain.interfaces import IMarketDataSource, IResultSink, ISignalStatsRepository
from backtest.domain.models import (
    BacktestConfig,
    BacktestResult,
    Candle,
    DataOrigin,
    Direction,
    Provenance,
    ResultSummary,
    RiskMetrics,
    SignalStats,
    StrategyTier,
)
from backtest.engine import BacktestEngine
from backtest.errors import DataUnavailableError, PersistenceError
from backtest.strategy_resolver import StrategyResolver
from strategies.strategies import BaseStrategy, StrategyRegistry


def make_candle(symbol: str, ts: datetime, close: float, interval: str = "1d") -> Candle:
    return Candle(
        symbol=symbol,
        interval=interval,
        timestamp=ts,
        open=close,
        high=close * 1.01,
        low=close * 0.99,
        close=close,
        volume=1_000_000.0
    )


def make_daily_candles(symbol: str = "TEST", days: int = 10, start: date = date(2024, 1, 1),
                       closes: Optional[List[float]] = None) -> List[Candle]:
    closes = closes or [100.0] * days
    first = datetime(start.year, start.month, start.day)
    return [make_candle(symbol, first + timedelta(days=i), close) for i, close in enumerate(closes)]


# ==================== 内存实现 ====================

class StaticDataSource(IMarketDataSource):
    """固定K线数据源，记录调用次数"""

    def __init__(self, candles: Optional[Dict[str, List[Candle]]] = None):
        self.candles = candles or {}
        self.calls = []

    def fetch(self, symbol, interval, start_date, end_date):
        self.calls.append((symbol, interval, start_date, end_date))
        return list(self.candles.get(symbol, []))


class FailingDataSource(IMarketDataSource):
    """总是失败的数据源"""

    def __init__(self):
        self.calls = 0

    def fetch(self, symbol, interval, start_date, end_date):
        self.calls += 1
        raise DataUnavailableError("network down")


class RecordingResultSink(IResultSink):
    """记录所有摘要；fail=True 时模拟存储故障"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.summaries: List[ResultSummary] = []

    def append(self, summary):
        if self.fail:
            raise PersistenceError("sink unreachable")
        self.summaries.append(summary)


class FakeSignalStats(ISignalStatsRepository):
    def __init__(self, stats: Optional[Dict[str, SignalStats]] = None):
        self.stats = stats or {}

    def average_confidence_and_count(self, strategy_id):
        return self.stats.get(strategy_id, SignalStats(count=0, avg_confidence=0.0))


class AlwaysLongStrategy(BaseStrategy):
    """每根K线都做多"""

    name = "always_long"

    def __init__(self, confidence: float = 0.9, **params):
        super().__init__(confidence=confidence, **params)
        self.confidence = confidence
        self.initialize_calls = 0
        self.cleanup_calls = 0

    def on_initialize(self):
        self.initialize_calls += 1

    def on_cleanup(self):
        self.cleanup_calls += 1

    def process_candle(self, candle):
        return self._signal(candle, Direction.LONG, self.confidence)


class FragileStrategy(AlwaysLongStrategy):
    """period 为负数时构造失败"""

    name = "fragile"

    def __init__(self, period: int = 10, **params):
        if period < 0:
            raise ValueError(f"invalid period {period}")
        super().__init__(period=period, **params)
        self.period = period


# ==================== fixtures ====================

@pytest.fixture
def registry():
    return StrategyRegistry({
        "always_long": AlwaysLongStrategy,
        "fragile": FragileStrategy,
    })


@pytest.fixture
def result_sink():
    return RecordingResultSink()


@pytest.fixture
def base_config():
    """零成本、单品种、10天"""
    return BacktestConfig(
        strategy_id="always_long",
        symbols=("TEST",),
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 10),
        initial_capital=100000.0,
        commission=0.0,
        slippage=0.0,
        position_size=1000.0
    )


@pytest.fixture
def engine_factory(registry):
    """按需组装回测引擎"""

    def factory(source=None, sink=None, signal_stats=None, allow_mock=True, seed=7, strategy_registry=None):
        provider = HistoricalDataProvider(
            source=source if source is not None else StaticDataSource({"TEST": make_daily_candles()}),
            cache=MemoryCache(),
            seed=seed
        )
        resolver = StrategyResolver(
            strategy_registry or registry,
            signal_stats=signal_stats,
            seed=seed,
            allow_mock=allow_mock
        )
        return BacktestEngine(data_provider=provider, resolver=resolver, result_sink=sink)

    return factory


@pytest.fixture
def make_result(base_config):
    """构造最小的 BacktestResult"""

    def factory(**overrides) -> BacktestResult:
        fields = dict(
            config=base_config,
            final_capital=100000.0,
            total_return=0.0,
            annualized_return=0.0,
            max_drawdown=0.0,
            sharpe_ratio=0.0,
            win_rate=0.0,
            total_trades=0,
            profitable_trades=0,
            losing_trades=0,
            average_win=0.0,
            average_loss=0.0,
            profit_factor=0.0,
            expectancy=0.0,
            trades=(),
            equity_curve=(),
            monthly_returns=(),
            risk_metrics=RiskMetrics(),
            provenance=Provenance(StrategyTier.REGISTERED, {"TEST": DataOrigin.SOURCE})
        )
        fields.update(overrides)
        return BacktestResult(**fields)

    return factory
