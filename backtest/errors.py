"""
回测引擎异常类定义
"""


class BacktestError(Exception):
    """回测错误基类"""

    def __init__(self, message: str, raw_error: Exception = None):
        super().__init__(message)
        self.raw_error = raw_error


class ConfigurationError(BacktestError, ValueError):
    """配置无效（日期区间、资金、成本、搜索空间等）"""
    pass


class StrategyNotFoundError(BacktestError):
    """策略不存在且无法降级"""
    pass


class DataUnavailableError(BacktestError):
    """外部行情数据不可用（由数据提供者内部处理，不会抛给调用方）"""
    pass


class EvaluationError(BacktestError):
    """单个参数组合评估失败"""

    def __init__(self, message: str, params=None, raw_error: Exception = None):
        super().__init__(message, raw_error)
        self.params = dict(params or {})


class NoValidResultsError(BacktestError):
    """没有任何参数组合评估成功"""
    pass


class OptimizationInProgressError(BacktestError):
    """已有优化任务在运行"""
    pass


class PersistenceError(BacktestError):
    """结果持久化失败"""
    pass
