"""
随机采样搜索 - 历史上称为 bayesian，实际为参数域均匀随机采样（无代理模型）
"""
from typing import Any, Dict, Optional, Sequence

from backtest.optimization.base import BaseOptimizer
from backtest.optimization.history import SearchHistory
from config.settings import settings as config
from logger_utils import get_logger

logger = get_logger("backtest.optimization.stochastic")


class StochasticSearchOptimizer(BaseOptimizer):
    """均匀随机采样优化器"""

    method = "stochastic"

    def __init__(self, evaluate, initial_points: Optional[int] = None, **kwargs):
        super().__init__(evaluate, **kwargs)
        self.initial_points = initial_points or config.STOCHASTIC_INITIAL_POINTS

    def optimize(self, parameters: Dict[str, Sequence[Any]], max_iterations: int) -> SearchHistory:
        """初始批量采样，之后继续采样直到预算用完"""
        self.total_evaluations = max_iterations
        initial = min(self.initial_points, max_iterations)
        logger.info(f"Starting stochastic search: {initial} initial points, budget {max_iterations}")

        self._evaluate_batch([self.sample(parameters) for _ in range(initial)])

        remaining = max_iterations - initial
        while remaining > 0:
            batch_size = min(self.max_workers, remaining)
            self._evaluate_batch([self.sample(parameters) for _ in range(batch_size)])
            remaining -= batch_size

        best = self.history.best
        logger.info(f"Stochastic search finished, best fitness {best.fitness if best else None}")
        return self.history
