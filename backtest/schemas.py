"""
Backtest request models
"""
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from backtest.domain.models import BacktestConfig, OptimizationConfig, OptimizationMethod, RiskPolicy
from config.settings import settings as config


class RiskPolicyRequest(BaseModel):
    """风控参数"""
    max_position_size: float = Field(default_factory=lambda: config.DEFAULT_MAX_POSITION_SIZE, gt=0)
    max_daily_loss: float = Field(default_factory=lambda: config.DEFAULT_MAX_DAILY_LOSS, ge=0)
    stop_loss: float = Field(default_factory=lambda: config.DEFAULT_STOP_LOSS, ge=0, description="止损百分比")
    take_profit: float = Field(default_factory=lambda: config.DEFAULT_TAKE_PROFIT, ge=0, description="止盈百分比")

    def to_domain(self) -> RiskPolicy:
        return RiskPolicy(**self.model_dump())


class BacktestRequest(BaseModel):
    strategy_id: str = Field(..., min_length=1, description="策略ID")
    symbols: List[str] = Field(..., min_length=1, description="品种列表，如 ['AAPL', 'MSFT']")
    start_date: date
    end_date: date
    initial_capital: float = Field(default_factory=lambda: config.DEFAULT_INITIAL_CAPITAL, gt=0)
    commission: float = Field(default_factory=lambda: config.DEFAULT_COMMISSION, ge=0, description="手续费百分比")
    slippage: float = Field(default_factory=lambda: config.DEFAULT_SLIPPAGE, ge=0, description="滑点百分比")
    position_size: float = Field(default_factory=lambda: config.DEFAULT_POSITION_SIZE, gt=0)
    risk: RiskPolicyRequest = Field(default_factory=RiskPolicyRequest)
    strategy_params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('symbols')
    @classmethod
    def normalize_symbols(cls, v):
        """去空格、转大写、去重（保持顺序）"""
        symbols = []
        for symbol in v:
            symbol = symbol.strip().upper()
            if symbol and symbol not in symbols:
                symbols.append(symbol)
        if not symbols:
            raise ValueError("至少需要一个品种")
        return symbols

    @model_validator(mode="after")
    def validate_window(self):
        if self.end_date <= self.start_date:
            raise ValueError(f"end_date {self.end_date} 必须晚于 start_date {self.start_date}")
        return self

    def to_domain(self) -> BacktestConfig:
        return BacktestConfig(
            strategy_id=self.strategy_id,
            symbols=tuple(self.symbols),
            start_date=self.start_date,
            end_date=self.end_date,
            initial_capital=self.initial_capital,
            commission=self.commission,
            slippage=self.slippage,
            position_size=self.position_size,
            risk=self.risk.to_domain(),
            strategy_params=dict(self.strategy_params)
        )


class OptimizationRequest(BacktestRequest):
    parameters: Dict[str, List[Any]] = Field(..., description="参数名 -> 候选值列表")
    method: str = Field("grid", description="grid / genetic / stochastic (bayesian)")
    fitness_metric: str = Field("sharpe", description="sharpe / returns / calmar / custom")
    max_iterations: int = Field(100, ge=1)
    population_size: int = Field(default_factory=lambda: config.GA_POPULATION_SIZE, ge=2)
    mutation_rate: float = Field(default_factory=lambda: config.GA_MUTATION_RATE, ge=0.0, le=1.0)
    crossover_rate: float = Field(default_factory=lambda: config.GA_CROSSOVER_RATE, ge=0.0, le=1.0)
    seed: Optional[int] = None

    @field_validator('parameters')
    @classmethod
    def validate_parameters(cls, v):
        if not v:
            raise ValueError("参数空间不能为空")
        for name, values in v.items():
            if not values:
                raise ValueError(f"参数 {name} 没有候选值")
        return v

    @field_validator('method')
    @classmethod
    def validate_method(cls, v):
        return OptimizationMethod.parse(v).value

    def to_domain(self) -> OptimizationConfig:
        return OptimizationConfig(
            strategy_id=self.strategy_id,
            symbols=tuple(self.symbols),
            start_date=self.start_date,
            end_date=self.end_date,
            parameters={name: tuple(values) for name, values in self.parameters.items()},
            initial_capital=self.initial_capital,
            method=OptimizationMethod(self.method),
            fitness_metric=self.fitness_metric,
            max_iterations=self.max_iterations,
            population_size=self.population_size,
            mutation_rate=self.mutation_rate,
            crossover_rate=self.crossover_rate,
            commission=self.commission,
            slippage=self.slippage,
            position_size=self.position_size,
            risk=self.risk.to_domain(),
            strategy_params=dict(self.strategy_params),
            seed=self.seed
        )
