"""
搜索算法基类 - 统一的候选评估、历史记录和进度回调
"""
import random
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

from backtest.domain.models import EvaluationOutcome
from backtest.optimization.history import SearchHistory
from config.settings import settings as config
from logger_utils import get_logger

logger = get_logger("backtest.optimization")

Evaluator = Callable[[Dict[str, Any]], EvaluationOutcome]
ProgressCallback = Callable[[Dict[str, Any]], None]


class BaseOptimizer(ABC):
    """参数搜索基类"""

    method: str = "base"

    def __init__(
        self,
        evaluate: Evaluator,
        history: Optional[SearchHistory] = None,
        max_workers: Optional[int] = None,
        seed: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """
        Args:
            evaluate: 候选评估函数，接收参数字典，返回 EvaluationOutcome（不抛异常）
            history: 共享的搜索历史
            max_workers: 并发评估数（1 为串行）
            seed: 随机种子
            progress_callback: 进度回调
        """
        self.evaluate = evaluate
        self.history = history if history is not None else SearchHistory()
        self.max_workers = max(1, max_workers or config.OPTIMIZATION_MAX_WORKERS)
        self.rng = random.Random(seed)
        self.progress_callback = progress_callback
        self.total_evaluations = 0
        self._completed = 0

    @abstractmethod
    def optimize(self, parameters: Dict[str, Sequence[Any]], max_iterations: int) -> SearchHistory:
        """执行搜索，返回历史"""
        pass

    def sample(self, parameters: Dict[str, Sequence[Any]]) -> Dict[str, Any]:
        """每个参数独立均匀采样"""
        return {name: self.rng.choice(list(values)) for name, values in parameters.items()}

    def _evaluate_batch(self, candidates: List[Dict[str, Any]]) -> List[EvaluationOutcome]:
        """评估一批候选；成功的按提交顺序写入历史，失败的记录后跳过"""
        if self.max_workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                outcomes = list(executor.map(self.evaluate, candidates))
        else:
            outcomes = [self.evaluate(params) for params in candidates]

        for outcome in outcomes:
            self._completed += 1
            if outcome.ok:
                self.history.record(outcome.parameters, outcome.result, outcome.fitness)
                logger.debug(f"[{self.method}] {outcome.parameters} -> {outcome.fitness:.4f}")
            else:
                self.history.record_failure()
                logger.warning(f"[{self.method}] 参数组合失败: {outcome.parameters}, 错误: {outcome.error}")
            self._report(outcome)

        return outcomes

    def _report(self, outcome: EvaluationOutcome) -> None:
        if not self.progress_callback:
            return

        best = self.history.best
        total = self.total_evaluations or self._completed
        self.progress_callback({
            'method': self.method,
            'completed': self._completed,
            'total': total,
            'progress': min(1.0, self._completed / total) if total else 1.0,
            'current_params': outcome.parameters,
            'current_fitness': outcome.fitness if outcome.ok else None,
            'best_fitness': best.fitness if best else None,
            'best_params': best.parameters if best else None
        })
