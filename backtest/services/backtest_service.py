"""
统一回测服务 - 单次回测、策略对比、参数优化与导出
"""
import itertools
from typing import Any, Dict, List, Optional, Sequence

from backtest.domain.models import BacktestConfig, BacktestResult, ParameterOptimization
from backtest.engine import BacktestEngine
from backtest.errors import NoValidResultsError, StrategyNotFoundError
from backtest.services.export_service import export_optimization, export_results
from logger_utils import get_logger

logger = get_logger("backtest.backtest_service")


class BacktestService:
    """统一回测服务"""

    def __init__(self, engine: Optional[BacktestEngine] = None):
        self.engine = engine or BacktestEngine()

    def run_backtest(self, config: BacktestConfig) -> BacktestResult:
        """
        运行回测

        Args:
            config: 回测配置

        Returns:
            回测结果（包含指标、权益曲线和来源标记）
        """
        return self.engine.run(config)

    def compare_strategies(self, strategy_ids: Sequence[str], base_config: BacktestConfig) -> List[BacktestResult]:
        """多个策略在同一配置下回测，按总收益降序"""
        results = []
        for strategy_id in strategy_ids:
            try:
                results.append(self.engine.run(base_config.with_strategy(strategy_id)))
            except StrategyNotFoundError:
                raise
            except Exception as e:
                logger.error(f"Backtest failed for {strategy_id}: {e}")

        results.sort(key=lambda r: r.total_return, reverse=True)
        return results

    def optimize_parameters(
        self,
        strategy_id: str,
        base_config: BacktestConfig,
        parameter_domains: Dict[str, Sequence[Any]]
    ) -> ParameterOptimization:
        """
        穷举参数组合，按总收益取最优

        Raises:
            NoValidResultsError: 没有任何组合回测成功
        """
        names = list(parameter_domains.keys())
        config = base_config.with_strategy(strategy_id)

        best_params: Optional[Dict[str, Any]] = None
        best_result: Optional[BacktestResult] = None
        evaluated = failed = 0

        for combo in itertools.product(*parameter_domains.values()):
            params = dict(zip(names, combo))
            try:
                result = self.engine.run(config.with_parameters(params), persist=False)
            except StrategyNotFoundError:
                raise
            except Exception as e:
                failed += 1
                logger.warning(f"参数组合失败: {params}, 错误: {e}")
                continue

            evaluated += 1
            if best_result is None or result.total_return > best_result.total_return:
                best_params, best_result = params, result

        if best_result is None:
            raise NoValidResultsError(f"No valid parameter combination for {strategy_id}")

        logger.info(
            f"Best parameters for {strategy_id}: {best_params} "
            f"(return {best_result.total_return:.2%}, {evaluated} evaluated, {failed} failed)"
        )
        return ParameterOptimization(best_params=best_params, best_result=best_result,
                                     evaluated=evaluated, failed=failed)

    @staticmethod
    def export_results(results: Sequence[BacktestResult]) -> str:
        return export_results(results)

    @staticmethod
    def export_optimization(result) -> str:
        return export_optimization(result)
