"""
网格搜索算法 - 按生成顺序遍历参数组合
"""
import itertools
from typing import Any, Dict, Iterator, Sequence

from backtest.optimization.base import BaseOptimizer
from backtest.optimization.history import SearchHistory
from logger_utils import get_logger

logger = get_logger("backtest.optimization.grid")


class GridSearchOptimizer(BaseOptimizer):
    """网格搜索优化器"""

    method = "grid"

    def optimize(self, parameters: Dict[str, Sequence[Any]], max_iterations: int) -> SearchHistory:
        """
        执行网格搜索

        Args:
            parameters: 参数搜索空间，如 {'period': [10, 20, 30], 'threshold': [0.5, 1.0]}
            max_iterations: 最多评估的组合数

        Returns:
            搜索历史
        """
        total = min(max_iterations, self.get_search_space_size(parameters))
        self.total_evaluations = total
        logger.info(f"Starting grid search: {total} combinations")

        # 按批提交，并发时每批填满所有 worker
        batch_size = self.max_workers * 4 if self.max_workers > 1 else 1
        combinations = itertools.islice(self.combinations(parameters), total)
        while True:
            batch = list(itertools.islice(combinations, batch_size))
            if not batch:
                break
            self._evaluate_batch(batch)

        return self.history

    @staticmethod
    def combinations(parameters: Dict[str, Sequence[Any]]) -> Iterator[Dict[str, Any]]:
        """笛卡尔积（参数声明顺序，最后一个参数变化最快）"""
        names = list(parameters.keys())
        for combo in itertools.product(*parameters.values()):
            yield dict(zip(names, combo))

    @staticmethod
    def get_search_space_size(parameters: Dict[str, Sequence[Any]]) -> int:
        """计算搜索空间大小"""
        size = 1
        for values in parameters.values():
            size *= len(values)
        return size
