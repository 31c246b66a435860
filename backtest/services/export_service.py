"""
导出服务 - 回测结果 CSV，优化结果 JSON
"""
import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Sequence

import numpy as np
import pandas as pd

from backtest.domain.models import BacktestResult, OptimizationResult

CSV_COLUMNS = [
    'Strategy',
    'Total Return',
    'Annualized Return',
    'Sharpe Ratio',
    'Win Rate',
    'Total Trades',
    'Max Drawdown',
]


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def export_results(results: Sequence[BacktestResult]) -> str:
    """回测结果列表 -> CSV 文本（百分比渲染为 12.34%）"""
    rows = [
        {
            'Strategy': r.strategy_id,
            'Total Return': _pct(r.total_return),
            'Annualized Return': _pct(r.annualized_return),
            'Sharpe Ratio': f"{r.sharpe_ratio:.3f}",
            'Win Rate': _pct(r.win_rate),
            'Total Trades': r.total_trades,
            'Max Drawdown': _pct(r.max_drawdown),
        }
        for r in results
    ]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    return df.to_csv(index=False, lineterminator='\n')


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {k: _to_jsonable(v) for k, v in asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    return value


def optimization_to_dict(result: OptimizationResult) -> dict:
    return _to_jsonable(result)


def export_optimization(result: OptimizationResult) -> str:
    """优化结果 -> JSON 文本（日期 ISO 格式，枚举取值）"""
    return json.dumps(optimization_to_dict(result), indent=2, ensure_ascii=False)
