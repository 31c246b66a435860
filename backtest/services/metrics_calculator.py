"""
指标计算模块 - 收益、风险比率、月度分解
"""
import math
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from backtest.domain.models import BacktestTrade, EquityPoint, MonthlyReturn, RiskMetrics


def _finite(value: float) -> float:
    """NaN / Inf 一律归零"""
    value = float(value)
    return value if math.isfinite(value) else 0.0


class MetricsCalculator:
    """回测指标计算器（纯函数）"""

    @staticmethod
    def calculate_all_metrics(
        trades: Sequence[BacktestTrade],
        equity_curve: Sequence[EquityPoint],
        initial_capital: float,
        final_capital: float,
        start_date: date,
        end_date: date,
        benchmark_returns: Optional[Sequence[float]] = None
    ) -> Dict[str, Any]:
        """计算所有回测指标"""
        total_return = _finite((final_capital - initial_capital) / initial_capital)
        days = (end_date - start_date).days
        returns = MetricsCalculator.daily_returns(equity_curve)
        max_drawdown = MetricsCalculator._calculate_max_drawdown(equity_curve)

        trade_stats = MetricsCalculator._calculate_trade_stats(trades)
        volatility = MetricsCalculator._calculate_volatility(returns)
        sharpe = MetricsCalculator._calculate_sharpe(returns)
        beta, alpha = MetricsCalculator._calculate_beta_alpha(returns, equity_curve, benchmark_returns)

        risk_metrics = RiskMetrics(
            volatility=volatility,
            beta=beta,
            alpha=alpha,
            sharpe_ratio=sharpe,
            sortino_ratio=MetricsCalculator._calculate_sortino(returns),
            calmar_ratio=_finite(total_return / max_drawdown) if max_drawdown > 0 else 0.0
        )

        return {
            'total_return': total_return,
            'annualized_return': MetricsCalculator._calculate_annualized_return(total_return, days),
            'max_drawdown': max_drawdown,
            'sharpe_ratio': sharpe,
            **trade_stats,
            'monthly_returns': MetricsCalculator.monthly_returns(trades),
            'risk_metrics': risk_metrics,
        }

    @staticmethod
    def daily_returns(equity_curve: Sequence[EquityPoint]) -> np.ndarray:
        """相邻权益点的相对变化（前值 <= 0 的跳过）"""
        equity = np.array([p.equity for p in equity_curve], dtype=float)
        if len(equity) < 2:
            return np.array([], dtype=float)

        prev, curr = equity[:-1], equity[1:]
        valid = prev > 0
        return (curr[valid] - prev[valid]) / prev[valid]

    @staticmethod
    def _calculate_trade_stats(trades: Sequence[BacktestTrade]) -> Dict[str, Any]:
        """胜率、平均盈亏、盈亏比、单笔期望"""
        total_trades = len(trades)
        if total_trades == 0:
            return {
                'win_rate': 0.0,
                'total_trades': 0,
                'profitable_trades': 0,
                'losing_trades': 0,
                'average_win': 0.0,
                'average_loss': 0.0,
                'profit_factor': 0.0,
                'expectancy': 0.0,
            }

        pnls = np.array([t.pnl for t in trades], dtype=float)
        wins = pnls[pnls > 0]
        losses = pnls[pnls <= 0]

        total_win = float(wins.sum())
        total_loss = abs(float(losses.sum()))

        return {
            'win_rate': len(wins) / total_trades,
            'total_trades': total_trades,
            'profitable_trades': len(wins),
            'losing_trades': len(losses),
            'average_win': _finite(wins.mean()) if len(wins) else 0.0,
            'average_loss': abs(_finite(losses.mean())) if len(losses) else 0.0,
            'profit_factor': _finite(total_win / total_loss) if total_loss > 0 else 0.0,
            'expectancy': _finite(pnls.sum() / total_trades),
        }

    @staticmethod
    def monthly_returns(trades: Sequence[BacktestTrade]) -> List[MonthlyReturn]:
        """按开仓月份 (YYYY-MM) 分组"""
        if not trades:
            return []

        df = pd.DataFrame({
            'month': [t.entry_date.strftime('%Y-%m') for t in trades],
            'pnl': [t.pnl for t in trades],
        })
        df['win'] = df['pnl'] > 0
        grouped = df.groupby('month', sort=True).agg(
            pnl=('pnl', 'sum'),
            trades=('pnl', 'size'),
            wins=('win', 'sum')
        )

        return [
            MonthlyReturn(
                month=month,
                pnl=_finite(row.pnl),
                trades=int(row.trades),
                win_rate=float(row.wins) / int(row.trades)
            )
            for month, row in grouped.iterrows()
        ]

    @staticmethod
    def _calculate_max_drawdown(equity_curve: Sequence[EquityPoint]) -> float:
        """计算最大回撤（权益曲线）"""
        if not equity_curve:
            return 0.0
        return _finite(max(p.drawdown for p in equity_curve))

    @staticmethod
    def _calculate_annualized_return(total_return: float, days: int) -> float:
        """年化收益：(1 + r)^(365/days) - 1"""
        if days <= 0:
            return 0.0
        if total_return <= -1:
            return -1.0
        try:
            return _finite((1 + total_return) ** (365 / days) - 1)
        except OverflowError:
            return 0.0

    @staticmethod
    def _calculate_volatility(returns: np.ndarray) -> float:
        """总体标准差"""
        if len(returns) == 0:
            return 0.0
        return _finite(np.std(returns))

    @staticmethod
    def _calculate_sharpe(returns: np.ndarray) -> float:
        """计算夏普比率（假设无风险利率为0，不年化）"""
        if len(returns) == 0:
            return 0.0

        std_return = np.std(returns)
        if std_return == 0:
            return 0.0

        return _finite(np.mean(returns) / std_return)

    @staticmethod
    def _calculate_sortino(returns: np.ndarray) -> float:
        """计算索提诺比率（仅考虑下行波动）"""
        if len(returns) == 0:
            return 0.0

        mean_return = np.mean(returns)
        negative_returns = returns[returns < 0]
        if len(negative_returns) == 0:
            return 0.0

        # 下行方差以全部收益个数为分母
        downside_std = np.sqrt(np.sum((negative_returns - mean_return) ** 2) / len(returns))
        if downside_std == 0:
            return 0.0

        return _finite(mean_return / downside_std)

    @staticmethod
    def _calculate_beta_alpha(
        returns: np.ndarray,
        equity_curve: Sequence[EquityPoint],
        benchmark_returns: Optional[Sequence[float]]
    ):
        """有基准时按协方差计算，否则 beta=1, alpha=0"""
        if len(equity_curve) < 2:
            return 0.0, 0.0

        if benchmark_returns is None or len(benchmark_returns) != len(returns) or len(returns) < 2:
            return 1.0, 0.0

        bench = np.asarray(benchmark_returns, dtype=float)
        var = np.var(bench)
        if var == 0:
            return 0.0, _finite(np.mean(returns))

        cov = np.mean((returns - returns.mean()) * (bench - bench.mean()))
        beta = _finite(cov / var)
        alpha = _finite(np.mean(returns) - beta * np.mean(bench))
        return beta, alpha
