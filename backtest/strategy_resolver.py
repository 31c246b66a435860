"""
Strategy Resolver - registered strategy, statistical stand-in or mock signal generator
"""
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from backtest.domain.interfaces import ISignalStatsRepository, IStrategyRegistry
from backtest.domain.models import Candle, Direction, SignalStats, StrategyTier, TradeSignal
from backtest.errors import StrategyNotFoundError
from config.settings import settings as config
from logger_utils import get_logger
from strategies.strategies import BaseStrategy

logger = get_logger("backtest.strategy_resolver")

# 历史平均置信度缺失或为0时的取值（0-100）
DEFAULT_HISTORICAL_CONFIDENCE = 70.0


def normalize_confidence(value: float) -> float:
    """历史置信度以 0-100 存储，统一到 [0, 1]"""
    value = float(value or 0)
    if value > 1:
        value /= 100
    return min(1.0, max(0.0, value))


class StatisticalFallbackStrategy(BaseStrategy):
    """按历史平均置信度的概率随机发出信号"""

    def __init__(self, strategy_id: str, stats: SignalStats, rng: random.Random,
                 noise: Optional[float] = None):
        super().__init__()
        self.name = strategy_id
        self.stats = stats
        self.avg_confidence = normalize_confidence(stats.avg_confidence or DEFAULT_HISTORICAL_CONFIDENCE)
        self.noise = config.STATISTICAL_CONFIDENCE_NOISE if noise is None else noise
        self._rng = rng

    def process_candle(self, candle: Candle) -> Optional[TradeSignal]:
        if self._rng.random() >= self.avg_confidence:
            return None

        direction = Direction.LONG if self._rng.random() > 0.5 else Direction.SHORT
        confidence = self.avg_confidence + (self._rng.random() - 0.5) * 2 * self.noise
        return self._signal(candle, direction, min(1.0, max(0.0, confidence)))


class MockSignalStrategy(BaseStrategy):
    """固定低概率的模拟信号"""

    def __init__(self, strategy_id: str, rng: random.Random, rate: Optional[float] = None):
        super().__init__()
        self.name = strategy_id
        self.rate = config.MOCK_SIGNAL_RATE if rate is None else rate
        self._rng = rng

    def process_candle(self, candle: Candle) -> Optional[TradeSignal]:
        if self._rng.random() >= self.rate:
            return None

        direction = Direction.LONG if self._rng.random() > 0.5 else Direction.SHORT
        return self._signal(candle, direction, 0.7 + self._rng.random() * 0.3)


@dataclass(frozen=True)
class ResolvedStrategy:
    """解析结果：策略实例 + 使用的层级"""
    strategy_id: str
    tier: StrategyTier
    strategy: BaseStrategy

    @property
    def is_fallback(self) -> bool:
        return self.tier != StrategyTier.REGISTERED


class StrategyResolver:
    """Resolve a strategy id: registered -> statistical -> mock"""

    def __init__(
        self,
        registry: IStrategyRegistry,
        signal_stats: Optional[ISignalStatsRepository] = None,
        seed: Optional[int] = None,
        mock_signal_rate: Optional[float] = None,
        allow_mock: Optional[bool] = None
    ):
        self.registry = registry
        self.signal_stats = signal_stats
        self.mock_signal_rate = mock_signal_rate
        self.allow_mock = config.ALLOW_MOCK_STRATEGY_FALLBACK if allow_mock is None else allow_mock
        self.seed = seed

    def resolve(self, strategy_id: str, params: Optional[Dict[str, Any]] = None) -> ResolvedStrategy:
        """
        Resolve a strategy for one run

        Args:
            strategy_id: Strategy identifier
            params: Constructor parameters for a registered strategy (ignored by fallback tiers)

        Raises:
            StrategyNotFoundError: nothing registered, no history, mock fallback disabled
            ValueError: registered strategy rejected its parameters
        """
        strategy = self.registry.find(strategy_id, params or {})
        if strategy is not None:
            logger.debug(f"Resolved {strategy_id} to registered strategy")
            return ResolvedStrategy(strategy_id, StrategyTier.REGISTERED, strategy)

        stats = self._lookup_stats(strategy_id)
        rng = self._rng_for(strategy_id)

        if stats is not None and stats.count > 0:
            logger.info(
                f"Strategy {strategy_id} not registered, using statistical fallback "
                f"({stats.count} signals, avg confidence {stats.avg_confidence})"
            )
            return ResolvedStrategy(
                strategy_id,
                StrategyTier.STATISTICAL,
                StatisticalFallbackStrategy(strategy_id, stats, rng)
            )

        if not self.allow_mock:
            raise StrategyNotFoundError(f"Strategy not found and no signal history: {strategy_id}")

        logger.warning(f"Strategy {strategy_id} has no implementation or history, using mock signals")
        return ResolvedStrategy(
            strategy_id,
            StrategyTier.MOCK,
            MockSignalStrategy(strategy_id, rng, self.mock_signal_rate)
        )

    def _rng_for(self, strategy_id: str) -> random.Random:
        # 固定种子时同一策略每次回放相同的随机流
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{strategy_id}")

    def _lookup_stats(self, strategy_id: str) -> Optional[SignalStats]:
        if self.signal_stats is None:
            return None
        try:
            return self.signal_stats.average_confidence_and_count(strategy_id)
        except Exception as e:
            logger.warning(f"Signal statistics lookup failed for {strategy_id}: {e}")
            return None
