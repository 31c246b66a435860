from abc import ABC, abstractmethod
from collections import deque
from datetime import date
from typing import Any, Callable, Dict, Iterable, Optional, Type

import numpy as np

from backtest.domain.interfaces import IStrategyRegistry
from backtest.domain.models import Candle, Direction, TradeSignal
from logger_utils import get_logger

logger = get_logger("strategies")


# ==================== 策略基类 ====================

class BaseStrategy(ABC):
    """策略基类：initialize -> on_candle (每根K线) -> cleanup"""

    name: str = "base"
    description: str = ""

    def __init__(self, **params):
        self.params = params
        self.initialized = False

    def initialize(self) -> None:
        if self.initialized:
            logger.warning(f"Strategy {self.name} already initialized")
            return
        self.on_initialize()
        self.initialized = True

    def on_candle(self, candle: Candle) -> Optional[TradeSignal]:
        if not self.initialized:
            logger.warning(f"Strategy {self.name} not initialized, skipping candle")
            return None
        return self.process_candle(candle)

    def cleanup(self) -> None:
        self.on_cleanup()
        self.initialized = False

    def on_initialize(self) -> None:
        """子类可选实现"""
        pass

    def on_cleanup(self) -> None:
        """子类可选实现"""
        pass

    @abstractmethod
    def process_candle(self, candle: Candle) -> Optional[TradeSignal]:
        """分析一根K线，返回信号或 None"""
        pass

    def _signal(self, candle: Candle, direction: Direction, confidence: float) -> TradeSignal:
        return TradeSignal(
            symbol=candle.symbol,
            direction=direction,
            confidence=confidence,
            strategy=self.name,
            timestamp=candle.timestamp,
            price=candle.close
        )


# ==================== 策略注册表 ====================

class StrategyRegistry(IStrategyRegistry):
    """策略ID -> 策略类"""

    def __init__(self, strategies: Optional[Dict[str, Type[BaseStrategy]]] = None):
        self._strategies: Dict[str, Type[BaseStrategy]] = dict(strategies or {})

    def register(self, name: str, strategy_cls: Type[BaseStrategy]) -> None:
        self._strategies[name] = strategy_cls

    def names(self) -> Iterable[str]:
        return sorted(self._strategies)

    def __contains__(self, name: str) -> bool:
        return name in self._strategies

    def find(self, strategy_id: str, params: Optional[Dict[str, Any]] = None) -> Optional[BaseStrategy]:
        strategy_cls = self._strategies.get(strategy_id)
        if strategy_cls is None:
            return None
        # 参数不合法时由策略构造函数抛出 ValueError
        return strategy_cls(**(params or {}))


STRATEGY_REGISTRY = StrategyRegistry()


def register_strategy(name: str) -> Callable[[Type[BaseStrategy]], Type[BaseStrategy]]:
    """类装饰器：注册到默认注册表"""
    def decorator(cls: Type[BaseStrategy]) -> Type[BaseStrategy]:
        cls.name = name
        STRATEGY_REGISTRY.register(name, cls)
        return cls
    return decorator


def get_strategy(name: str, **params) -> BaseStrategy:
    """获取策略实例"""
    strategy = STRATEGY_REGISTRY.find(name, params)
    if strategy is None:
        raise ValueError(f"未知策略: {name}")
    return strategy


# ==================== 价格变动策略 ====================

@register_strategy("price_change")
class PriceChangeStrategy(BaseStrategy):
    """收盘价相对上一根K线变动超过阈值时顺势开仓"""

    description = "价格变动超过阈值产生顺势信号"

    def __init__(self, threshold: float = 0.01, max_signals_per_day: int = 5,
                 min_confidence: float = 0.6, **params):
        super().__init__(threshold=threshold, max_signals_per_day=max_signals_per_day,
                         min_confidence=min_confidence, **params)
        if threshold <= 0:
            raise ValueError(f"threshold 必须大于0: {threshold}")
        if max_signals_per_day < 1:
            raise ValueError(f"max_signals_per_day 至少为1: {max_signals_per_day}")
        self.threshold = float(threshold)
        self.max_signals_per_day = int(max_signals_per_day)
        self.min_confidence = float(min_confidence)
        self._last_close: Dict[str, float] = {}
        self._signals_today: Dict[str, int] = {}
        self._current_day: Optional[date] = None

    def on_cleanup(self) -> None:
        self._last_close.clear()
        self._signals_today.clear()
        self._current_day = None

    def process_candle(self, candle: Candle) -> Optional[TradeSignal]:
        if candle.date != self._current_day:
            self._current_day = candle.date
            self._signals_today.clear()

        last = self._last_close.get(candle.symbol)
        self._last_close[candle.symbol] = candle.close
        if not last:
            return None

        if self._signals_today.get(candle.symbol, 0) >= self.max_signals_per_day:
            return None

        change = (candle.close - last) / last
        if abs(change) <= self.threshold:
            return None

        confidence = min(0.8, self.min_confidence + (abs(change) / self.threshold) * 0.2)
        direction = Direction.LONG if change > 0 else Direction.SHORT
        self._signals_today[candle.symbol] = self._signals_today.get(candle.symbol, 0) + 1
        return self._signal(candle, direction, confidence)


# ==================== 均线交叉策略 ====================

@register_strategy("sma_cross")
class SMACrossStrategy(BaseStrategy):
    """快慢均线交叉：金叉做多，死叉做空"""

    description = "快线上穿慢线做多，下穿做空"

    def __init__(self, fast_period: int = 10, slow_period: int = 30, **params):
        super().__init__(fast_period=fast_period, slow_period=slow_period, **params)
        fast_period, slow_period = int(fast_period), int(slow_period)
        if fast_period < 1 or fast_period >= slow_period:
            raise ValueError(f"均线周期非法: fast={fast_period}, slow={slow_period}")
        self.fast_period = fast_period
        self.slow_period = slow_period
        self._closes: Dict[str, deque] = {}
        self._last_diff: Dict[str, float] = {}

    def on_cleanup(self) -> None:
        self._closes.clear()
        self._last_diff.clear()

    def process_candle(self, candle: Candle) -> Optional[TradeSignal]:
        closes = self._closes.setdefault(candle.symbol, deque(maxlen=self.slow_period))
        closes.append(candle.close)
        if len(closes) < self.slow_period:
            return None

        window = np.fromiter(closes, dtype=float)
        fast = window[-self.fast_period:].mean()
        slow = window.mean()
        diff = fast - slow

        prev = self._last_diff.get(candle.symbol)
        self._last_diff[candle.symbol] = diff
        if prev is None or slow == 0:
            return None

        # 偏离越大置信度越高
        confidence = float(min(1.0, 0.5 + abs(diff) / slow * 10))
        if prev <= 0 < diff:
            return self._signal(candle, Direction.LONG, confidence)
        if prev >= 0 > diff:
            return self._signal(candle, Direction.SHORT, confidence)
        return None
