"""
接口抽象层 - 回测引擎依赖的外部协作方
"""
from abc import ABC, abstractmethod
from datetime import date
from typing import Optional, List, Dict, Any

from backtest.domain.models import Candle, SignalStats, ResultSummary


class IMarketDataSource(ABC):
    """外部行情数据源"""

    @abstractmethod
    def fetch(self, symbol: str, interval: str, start_date: date, end_date: date) -> List[Candle]:
        """
        获取K线（按时间升序）

        任何失败都必须抛出异常，由数据提供者决定是否降级
        """
        pass


class IStrategyRegistry(ABC):
    """已注册策略查询"""

    @abstractmethod
    def find(self, strategy_id: str, params: Optional[Dict[str, Any]] = None):
        """返回策略实例，不存在时返回 None"""
        pass


class ISignalStatsRepository(ABC):
    """历史信号统计查询"""

    @abstractmethod
    def average_confidence_and_count(self, strategy_id: str) -> SignalStats:
        """获取策略历史信号数量和平均置信度"""
        pass


class IResultSink(ABC):
    """结果存储（只追加）"""

    @abstractmethod
    def append(self, summary: ResultSummary) -> None:
        """追加一条运行摘要"""
        pass
