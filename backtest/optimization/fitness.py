"""
适应度函数 - 所有搜索算法共用
"""
import math

from backtest.domain.models import BacktestResult, FitnessMetric
from logger_utils import get_logger

logger = get_logger("backtest.optimization.fitness")

# 综合评分权重
CUSTOM_WEIGHTS = {
    'sharpe': 0.4,
    'returns': 0.3,
    'win_rate': 0.2,
    'drawdown': 0.1,
}


def calculate_fitness(result: BacktestResult, metric: str) -> float:
    """
    计算适应度

    Args:
        result: 回测结果
        metric: sharpe / returns / calmar / custom，未知指标按总收益计算

    Returns:
        适应度（有限值）
    """
    metric = str(metric).strip().lower()

    if metric == FitnessMetric.SHARPE.value:
        score = result.sharpe_ratio
    elif metric == FitnessMetric.RETURNS.value:
        score = result.total_return
    elif metric == FitnessMetric.CALMAR.value:
        score = result.risk_metrics.calmar_ratio
    elif metric == FitnessMetric.CUSTOM.value:
        score = (
            CUSTOM_WEIGHTS['sharpe'] * result.sharpe_ratio
            + CUSTOM_WEIGHTS['returns'] * result.total_return
            + CUSTOM_WEIGHTS['win_rate'] * result.win_rate
            + CUSTOM_WEIGHTS['drawdown'] * (1 - result.max_drawdown)
        )
    else:
        logger.debug(f"Unknown fitness metric {metric!r}, using total return")
        score = result.total_return

    return score if math.isfinite(score) else 0.0
