"""
优化服务 - 编排网格搜索、遗传算法和随机采样
"""
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from backtest.domain.interfaces import IResultSink
from backtest.domain.models import (
    BacktestConfig,
    EvaluationOutcome,
    OptimizationConfig,
    OptimizationMethod,
    OptimizationResult,
    OptimizationStep,
    ResultSummary,
)
from backtest.engine import BacktestEngine
from backtest.errors import (
    BacktestError,
    EvaluationError,
    NoValidResultsError,
    OptimizationInProgressError,
    StrategyNotFoundError,
)
from backtest.optimization.base import BaseOptimizer
from backtest.optimization.fitness import calculate_fitness
from backtest.optimization.genetic import GeneticOptimizer
from backtest.optimization.grid_search import GridSearchOptimizer
from backtest.optimization.history import SearchHistory
from backtest.optimization.stochastic import StochasticSearchOptimizer
from config.settings import settings as config
from logger_utils import get_logger

logger = get_logger("backtest.optimization_service")


class AlgorithmOptimizer:
    """优化服务（同一实例同一时间只允许一个优化任务）"""

    def __init__(
        self,
        engine: Optional[BacktestEngine] = None,
        result_sink: Optional[IResultSink] = None,
        max_workers: Optional[int] = None
    ):
        self.engine = engine or BacktestEngine()
        self.result_sink = result_sink
        self.max_workers = max_workers or config.OPTIMIZATION_MAX_WORKERS
        self._running = threading.Lock()
        self._last_history: Tuple[OptimizationStep, ...] = ()

    @property
    def is_optimizing(self) -> bool:
        return self._running.locked()

    def optimize_algorithm(
        self,
        opt_config: OptimizationConfig,
        progress_callback: Optional[Callable[[Dict[str, Any]], None]] = None
    ) -> OptimizationResult:
        """
        运行一次参数优化

        Raises:
            OptimizationInProgressError: 已有优化在运行
            NoValidResultsError: 没有任何候选评估成功
            StrategyNotFoundError: 策略无法解析
        """
        if not self._running.acquire(blocking=False):
            raise OptimizationInProgressError("Optimization already in progress")

        try:
            started = time.perf_counter()
            logger.info(
                f"Starting {opt_config.method.value} optimization for {opt_config.strategy_id}: "
                f"space={opt_config.search_space_size}, budget={opt_config.max_iterations}, "
                f"metric={opt_config.fitness_metric}"
            )

            base_config = opt_config.base_backtest_config()
            history = SearchHistory()
            optimizer = self._create_optimizer(
                opt_config,
                lambda params: self._evaluate(base_config, params, opt_config.fitness_metric),
                history,
                progress_callback
            )
            try:
                optimizer.optimize(opt_config.parameters, opt_config.max_iterations)
            finally:
                self._last_history = history.steps

            best = history.best
            if best is None:
                raise NoValidResultsError(
                    f"No valid optimization results for {opt_config.strategy_id} "
                    f"({history.failures} candidates failed)"
                )

            execution_time = time.perf_counter() - started
            result = OptimizationResult(
                strategy_id=opt_config.strategy_id,
                method=opt_config.method,
                fitness_metric=opt_config.fitness_metric,
                best_parameters=dict(best.parameters),
                best_result=best.result,
                history=history.steps,
                statistics=history.statistics(execution_time)
            )

            logger.info(
                f"Optimization completed for {opt_config.strategy_id}: best fitness "
                f"{result.statistics.best_fitness:.4f} after {result.statistics.total_iterations} "
                f"evaluations ({history.failures} failed) in {execution_time:.2f}s"
            )
            self._persist(result)
            return result
        finally:
            self._running.release()

    def compare_optimizations(
        self,
        configs: Sequence[OptimizationConfig]
    ) -> List[Tuple[OptimizationConfig, OptimizationResult]]:
        """依次运行多个优化，跳过失败的，按最优适应度降序"""
        results = []
        for opt_config in configs:
            try:
                results.append((opt_config, self.optimize_algorithm(opt_config)))
            except BacktestError as e:
                logger.warning(f"Optimization failed for {opt_config.strategy_id} ({opt_config.method.value}): {e}")

        results.sort(key=lambda pair: pair[1].statistics.best_fitness, reverse=True)
        return results

    def get_optimization_history(self) -> List[OptimizationStep]:
        """上一次优化的全部步骤（副本）"""
        return list(self._last_history)

    def _evaluate(self, base_config: BacktestConfig, params: Dict[str, Any], metric: str) -> EvaluationOutcome:
        try:
            backtest_config = base_config.with_parameters(params)
            result = self.engine.run(backtest_config, persist=False)
        except StrategyNotFoundError:
            raise
        except Exception as e:
            return EvaluationOutcome.failure(params, EvaluationError(str(e), params, e))
        return EvaluationOutcome.success(params, result, calculate_fitness(result, metric))

    def _create_optimizer(
        self,
        opt_config: OptimizationConfig,
        evaluate: Callable[[Dict[str, Any]], EvaluationOutcome],
        history: SearchHistory,
        progress_callback: Optional[Callable[[Dict[str, Any]], None]]
    ) -> BaseOptimizer:
        options = dict(
            history=history,
            max_workers=self.max_workers,
            seed=opt_config.seed,
            progress_callback=progress_callback
        )
        if opt_config.method == OptimizationMethod.GRID:
            return GridSearchOptimizer(evaluate, **options)
        if opt_config.method == OptimizationMethod.GENETIC:
            return GeneticOptimizer(
                evaluate,
                population_size=opt_config.population_size,
                mutation_rate=opt_config.mutation_rate,
                crossover_rate=opt_config.crossover_rate,
                **options
            )
        return StochasticSearchOptimizer(evaluate, **options)

    def _persist(self, result: OptimizationResult) -> None:
        if self.result_sink is None:
            return

        best = result.best_result
        summary = ResultSummary(
            strategy_id=result.strategy_id,
            run_date=datetime.now().date(),
            run_type=f"optimization:{result.method.value}",
            trade_count=best.total_trades,
            success_count=best.profitable_trades,
            total_return_pct=best.total_return * 100,
            win_rate_pct=best.win_rate * 100,
            fitness_score=result.statistics.best_fitness,
            patterns_used=(result.strategy_id,),
            degraded=best.provenance.is_degraded
        )
        try:
            self.result_sink.append(summary)
        except Exception as e:
            logger.warning(f"Failed to persist optimization summary for {result.strategy_id}: {e}")
