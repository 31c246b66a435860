"""
搜索历史 - 所有候选的评估步骤（线程安全，只追加）
"""
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from backtest.domain.models import BacktestResult, OptimizationStatistics, OptimizationStep
from config.settings import settings as config


class SearchHistory:
    """优化步骤历史 + 当前最优"""

    def __init__(self):
        self._lock = threading.Lock()
        self._steps: List[OptimizationStep] = []
        self._best: Optional[OptimizationStep] = None
        self._failures = 0

    def record(self, parameters: Dict[str, Any], result: BacktestResult, fitness: float) -> OptimizationStep:
        """追加一步，并原子地更新最优"""
        with self._lock:
            step = OptimizationStep(
                iteration=len(self._steps) + 1,
                parameters=dict(parameters),
                fitness=fitness,
                result=result,
                timestamp=datetime.now()
            )
            self._steps.append(step)
            if self._best is None or fitness > self._best.fitness:
                self._best = step
            return step

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1

    @property
    def steps(self) -> Tuple[OptimizationStep, ...]:
        with self._lock:
            return tuple(self._steps)

    @property
    def best(self) -> Optional[OptimizationStep]:
        with self._lock:
            return self._best

    @property
    def failures(self) -> int:
        return self._failures

    def __len__(self) -> int:
        return len(self._steps)

    def convergence_rate(self, window: Optional[int] = None) -> float:
        """最近 N 步平均适应度 / 其中最优适应度 * 100；不足 N 步为 0"""
        window = window or config.CONVERGENCE_WINDOW
        steps = self.steps
        if len(steps) < window:
            return 0.0

        recent = np.array([s.fitness for s in steps[-window:]], dtype=float)
        best = recent.max()
        if best == 0:
            return 0.0
        rate = float(recent.mean() / best * 100)
        return rate if np.isfinite(rate) else 0.0

    def statistics(self, execution_time: float) -> OptimizationStatistics:
        steps = self.steps
        fitness = [s.fitness for s in steps]
        best = self.best
        return OptimizationStatistics(
            total_iterations=len(steps),
            best_fitness=best.fitness if best else 0.0,
            average_fitness=float(np.mean(fitness)) if fitness else 0.0,
            convergence_rate=self.convergence_rate(),
            execution_time=execution_time
        )
