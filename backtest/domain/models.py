"""
领域模型
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple, Sequence

from backtest.errors import ConfigurationError
from config.settings import settings as config


class Direction(str, Enum):
    """信号方向"""
    LONG = "LONG"
    SHORT = "SHORT"


class DataOrigin(str, Enum):
    """行情数据来源"""
    SOURCE = "source"
    SYNTHETIC = "synthetic"


class StrategyTier(str, Enum):
    """策略解析层级"""
    REGISTERED = "registered"
    STATISTICAL = "statistical"
    MOCK = "mock"


class OptimizationMethod(str, Enum):
    """参数搜索方法"""
    GRID = "grid"
    GENETIC = "genetic"
    STOCHASTIC = "stochastic"

    @classmethod
    def parse(cls, value) -> "OptimizationMethod":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        # 历史名称：实际行为是均匀随机采样
        if name == "bayesian":
            return cls.STOCHASTIC
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(f"Unknown optimization method: {value}")


class FitnessMetric(str, Enum):
    """适应度指标"""
    SHARPE = "sharpe"
    RETURNS = "returns"
    CALMAR = "calmar"
    CUSTOM = "custom"


def _to_date(value, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ConfigurationError(f"{field_name} must be a date or YYYY-MM-DD string, got {value!r}")


def _validate_window(start_date: date, end_date: date, initial_capital: float) -> None:
    if end_date <= start_date:
        raise ConfigurationError(f"end_date {end_date} must be after start_date {start_date}")
    if initial_capital <= 0:
        raise ConfigurationError(f"initial_capital must be positive, got {initial_capital}")


@dataclass(frozen=True)
class Candle:
    """K线"""
    symbol: str
    interval: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def date(self) -> date:
        return self.timestamp.date()


@dataclass(frozen=True)
class TradeSignal:
    """交易信号"""
    symbol: str
    direction: Direction
    confidence: float
    strategy: str
    timestamp: datetime
    price: float
    quantity: Optional[int] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


@dataclass(frozen=True)
class RiskPolicy:
    """风控参数（金额 / 百分比）"""
    max_position_size: float = field(default_factory=lambda: config.DEFAULT_MAX_POSITION_SIZE)
    max_daily_loss: float = field(default_factory=lambda: config.DEFAULT_MAX_DAILY_LOSS)
    stop_loss: float = field(default_factory=lambda: config.DEFAULT_STOP_LOSS)
    take_profit: float = field(default_factory=lambda: config.DEFAULT_TAKE_PROFIT)

    def __post_init__(self):
        if self.max_position_size <= 0:
            raise ConfigurationError(f"max_position_size must be positive, got {self.max_position_size}")
        for name in ("max_daily_loss", "stop_loss", "take_profit"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")


# 可被优化参数覆盖的配置字段，其余参数传给策略
CONFIG_PARAMETER_KEYS = ("initial_capital", "commission", "slippage", "position_size")
RISK_PARAMETER_KEYS = ("max_position_size", "max_daily_loss", "stop_loss", "take_profit")


@dataclass(frozen=True)
class BacktestConfig:
    """回测配置"""
    strategy_id: str
    symbols: Tuple[str, ...]
    start_date: date
    end_date: date
    initial_capital: float = field(default_factory=lambda: config.DEFAULT_INITIAL_CAPITAL)
    commission: float = field(default_factory=lambda: config.DEFAULT_COMMISSION)
    slippage: float = field(default_factory=lambda: config.DEFAULT_SLIPPAGE)
    position_size: float = field(default_factory=lambda: config.DEFAULT_POSITION_SIZE)
    risk: RiskPolicy = field(default_factory=RiskPolicy)
    strategy_params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.strategy_id:
            raise ConfigurationError("strategy_id is required")
        symbols = (self.symbols,) if isinstance(self.symbols, str) else tuple(self.symbols)
        if not symbols:
            raise ConfigurationError("at least one symbol is required")
        object.__setattr__(self, "symbols", symbols)
        object.__setattr__(self, "start_date", _to_date(self.start_date, "start_date"))
        object.__setattr__(self, "end_date", _to_date(self.end_date, "end_date"))
        _validate_window(self.start_date, self.end_date, self.initial_capital)
        if self.commission < 0 or self.slippage < 0:
            raise ConfigurationError("commission and slippage must not be negative")
        if self.position_size <= 0:
            raise ConfigurationError(f"position_size must be positive, got {self.position_size}")

    @property
    def effective_position_size(self) -> float:
        return min(self.position_size, self.risk.max_position_size)

    def with_parameters(self, params: Dict[str, Any]) -> "BacktestConfig":
        """把一组优化参数应用到配置上（非法组合抛出 ConfigurationError）"""
        config_updates = {}
        risk_updates = {}
        strategy_params = dict(self.strategy_params)

        for key, value in params.items():
            if key in CONFIG_PARAMETER_KEYS:
                config_updates[key] = float(value)
            elif key in RISK_PARAMETER_KEYS:
                risk_updates[key] = float(value)
            else:
                strategy_params[key] = value

        risk = replace(self.risk, **risk_updates) if risk_updates else self.risk
        return replace(self, risk=risk, strategy_params=strategy_params, **config_updates)

    def with_strategy(self, strategy_id: str) -> "BacktestConfig":
        return replace(self, strategy_id=strategy_id)


@dataclass(frozen=True)
class BacktestTrade:
    """模拟成交"""
    id: str
    symbol: str
    entry_date: date
    exit_date: date
    entry_price: float
    exit_price: float
    quantity: int
    side: Direction
    pnl: float
    pnl_pct: float
    duration: int
    signal: Optional[TradeSignal] = None


@dataclass(frozen=True)
class EquityPoint:
    """权益曲线点（每个交易日一个）"""
    date: date
    equity: float
    drawdown: float
    trades: int


@dataclass(frozen=True)
class MonthlyReturn:
    """月度收益"""
    month: str
    pnl: float
    trades: int
    win_rate: float


@dataclass(frozen=True)
class RiskMetrics:
    """风险指标"""
    volatility: float = 0.0
    beta: float = 0.0
    alpha: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0


@dataclass(frozen=True)
class Provenance:
    """结果来源：策略层级 + 每个品种的数据来源"""
    strategy_tier: StrategyTier
    data_origins: Dict[str, DataOrigin] = field(default_factory=dict)

    @property
    def synthetic_symbols(self) -> List[str]:
        return [s for s, origin in self.data_origins.items() if origin == DataOrigin.SYNTHETIC]

    @property
    def is_degraded(self) -> bool:
        return self.strategy_tier != StrategyTier.REGISTERED or bool(self.synthetic_symbols)


@dataclass(frozen=True)
class BacktestResult:
    """回测结果（只读）"""
    config: BacktestConfig
    final_capital: float
    total_return: float
    annualized_return: float
    max_drawdown: float
    sharpe_ratio: float
    win_rate: float
    total_trades: int
    profitable_trades: int
    losing_trades: int
    average_win: float
    average_loss: float
    profit_factor: float
    expectancy: float
    trades: Tuple[BacktestTrade, ...]
    equity_curve: Tuple[EquityPoint, ...]
    monthly_returns: Tuple[MonthlyReturn, ...]
    risk_metrics: RiskMetrics
    provenance: Provenance

    @property
    def strategy_id(self) -> str:
        return self.config.strategy_id

    @property
    def symbols(self) -> Tuple[str, ...]:
        return self.config.symbols

    @property
    def start_date(self) -> date:
        return self.config.start_date

    @property
    def end_date(self) -> date:
        return self.config.end_date

    @property
    def initial_capital(self) -> float:
        return self.config.initial_capital


@dataclass(frozen=True)
class SignalStats:
    """历史信号统计"""
    count: int
    avg_confidence: float


@dataclass(frozen=True)
class ResultSummary:
    """写入结果存储的扁平摘要"""
    strategy_id: str
    run_date: date
    run_type: str
    trade_count: int
    success_count: int
    total_return_pct: float
    win_rate_pct: float
    fitness_score: float
    patterns_used: Tuple[str, ...] = ()
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy_id': self.strategy_id,
            'date': self.run_date.isoformat(),
            'run_type': self.run_type,
            'trade_count': self.trade_count,
            'success_count': self.success_count,
            'total_return_pct': self.total_return_pct,
            'win_rate_pct': self.win_rate_pct,
            'fitness_score': self.fitness_score,
            'patterns_used': list(self.patterns_used),
            'degraded': self.degraded,
        }


@dataclass(frozen=True)
class OptimizationConfig:
    """参数优化配置"""
    strategy_id: str
    symbols: Tuple[str, ...]
    start_date: date
    end_date: date
    parameters: Dict[str, Tuple[Any, ...]]
    initial_capital: float = field(default_factory=lambda: config.DEFAULT_INITIAL_CAPITAL)
    method: OptimizationMethod = OptimizationMethod.GRID
    fitness_metric: str = FitnessMetric.SHARPE.value
    max_iterations: int = 100
    population_size: int = field(default_factory=lambda: config.GA_POPULATION_SIZE)
    mutation_rate: float = field(default_factory=lambda: config.GA_MUTATION_RATE)
    crossover_rate: float = field(default_factory=lambda: config.GA_CROSSOVER_RATE)
    commission: float = field(default_factory=lambda: config.DEFAULT_COMMISSION)
    slippage: float = field(default_factory=lambda: config.DEFAULT_SLIPPAGE)
    position_size: float = field(default_factory=lambda: config.DEFAULT_POSITION_SIZE)
    risk: RiskPolicy = field(default_factory=RiskPolicy)
    strategy_params: Dict[str, Any] = field(default_factory=dict)
    seed: Optional[int] = None

    def __post_init__(self):
        if not self.strategy_id:
            raise ConfigurationError("strategy_id is required")
        symbols = (self.symbols,) if isinstance(self.symbols, str) else tuple(self.symbols)
        if not symbols:
            raise ConfigurationError("at least one symbol is required")
        object.__setattr__(self, "symbols", symbols)
        object.__setattr__(self, "start_date", _to_date(self.start_date, "start_date"))
        object.__setattr__(self, "end_date", _to_date(self.end_date, "end_date"))
        _validate_window(self.start_date, self.end_date, self.initial_capital)

        if not self.parameters:
            raise ConfigurationError("parameter space must not be empty")
        domains = {}
        for name, values in self.parameters.items():
            values = tuple(values)
            if not values:
                raise ConfigurationError(f"parameter {name!r} has no candidate values")
            domains[name] = values
        object.__setattr__(self, "parameters", domains)

        object.__setattr__(self, "method", OptimizationMethod.parse(self.method))
        object.__setattr__(self, "fitness_metric", str(self.fitness_metric).strip().lower())

        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be at least 1")
        if self.population_size < 2:
            raise ConfigurationError("population_size must be at least 2")
        for name in ("mutation_rate", "crossover_rate"):
            if not 0 <= getattr(self, name) <= 1:
                raise ConfigurationError(f"{name} must be within [0, 1]")

    @property
    def search_space_size(self) -> int:
        size = 1
        for values in self.parameters.values():
            size *= len(values)
        return size

    def base_backtest_config(self) -> BacktestConfig:
        return BacktestConfig(
            strategy_id=self.strategy_id,
            symbols=self.symbols,
            start_date=self.start_date,
            end_date=self.end_date,
            initial_capital=self.initial_capital,
            commission=self.commission,
            slippage=self.slippage,
            position_size=self.position_size,
            risk=self.risk,
            strategy_params=dict(self.strategy_params),
        )


@dataclass(frozen=True)
class EvaluationOutcome:
    """单个候选参数的评估结果（成功 or 失败）"""
    parameters: Dict[str, Any]
    result: Optional[BacktestResult] = None
    fitness: float = 0.0
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None

    @classmethod
    def success(cls, parameters: Dict[str, Any], result: BacktestResult, fitness: float) -> "EvaluationOutcome":
        return cls(parameters=dict(parameters), result=result, fitness=fitness)

    @classmethod
    def failure(cls, parameters: Dict[str, Any], error: Exception) -> "EvaluationOutcome":
        return cls(parameters=dict(parameters), error=error)


@dataclass(frozen=True)
class OptimizationStep:
    """优化历史中的一步"""
    iteration: int
    parameters: Dict[str, Any]
    fitness: float
    result: BacktestResult
    timestamp: datetime


@dataclass(frozen=True)
class OptimizationStatistics:
    """优化统计"""
    total_iterations: int
    best_fitness: float
    average_fitness: float
    convergence_rate: float
    execution_time: float


@dataclass(frozen=True)
class OptimizationResult:
    """优化结果"""
    strategy_id: str
    method: OptimizationMethod
    fitness_metric: str
    best_parameters: Dict[str, Any]
    best_result: BacktestResult
    history: Tuple[OptimizationStep, ...]
    statistics: OptimizationStatistics


@dataclass(frozen=True)
class ParameterOptimization:
    """optimize_parameters 的返回值"""
    best_params: Dict[str, Any]
    best_result: BacktestResult
    evaluated: int
    failed: int
