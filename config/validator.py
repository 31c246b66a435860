"""
配置验证模块 - 使用 Pydantic 进行类型安全验证
"""
from pydantic import BaseModel, Field, field_validator, model_validator

from logger_utils import get_logger

logger = get_logger("config.validator")


class RiskConfig(BaseModel):
    """风险管理配置"""
    max_position_size: float = Field(5000.0, gt=0, description="单笔最大仓位（金额）")
    max_daily_loss: float = Field(1000.0, ge=0, description="单日最大亏损（金额）")
    stop_loss: float = Field(2.0, ge=0, le=100, description="止损百分比")
    take_profit: float = Field(4.0, ge=0, le=100, description="止盈百分比")
    min_signal_confidence: float = Field(0.5, ge=0.0, le=1.0, description="最小信号置信度")

    @field_validator('take_profit')
    @classmethod
    def validate_take_profit(cls, v):
        """止盈为0时所有模拟交易都只剩成本"""
        if v == 0:
            logger.warning("⚠️ take_profit=0，模拟交易将只产生手续费亏损")
        return v


class BacktestDefaultsConfig(BaseModel):
    """回测默认参数"""
    initial_capital: float = Field(100000.0, gt=0)
    commission: float = Field(0.1, ge=0, le=100, description="手续费百分比")
    slippage: float = Field(0.05, ge=0, le=100, description="滑点百分比")
    position_size: float = Field(1000.0, gt=0, description="固定仓位金额")

    @model_validator(mode="after")
    def validate_position_vs_capital(self):
        if self.position_size > self.initial_capital:
            logger.warning(
                "⚠️ position_size %.2f 大于 initial_capital %.2f，所有信号都会被风控拒绝",
                self.position_size, self.initial_capital
            )
        return self


class OptimizationDefaultsConfig(BaseModel):
    """参数优化默认配置"""
    population_size: int = Field(50, ge=2)
    mutation_rate: float = Field(0.1, ge=0.0, le=1.0)
    crossover_rate: float = Field(0.8, ge=0.0, le=1.0)
    tournament_size: int = Field(3, ge=1)
    stochastic_initial_points: int = Field(10, ge=1)
    convergence_window: int = Field(10, ge=1)
    max_workers: int = Field(1, ge=1)


def validate_config(config_module) -> bool:
    """
    验证配置模块

    Args:
        config_module: 配置模块对象

    Returns:
        bool: 验证是否通过
    """
    try:
        RiskConfig(
            max_position_size=config_module.DEFAULT_MAX_POSITION_SIZE,
            max_daily_loss=config_module.DEFAULT_MAX_DAILY_LOSS,
            stop_loss=config_module.DEFAULT_STOP_LOSS,
            take_profit=config_module.DEFAULT_TAKE_PROFIT,
            min_signal_confidence=config_module.MIN_SIGNAL_CONFIDENCE,
        )
        logger.info("✅ 风险配置验证通过")

        BacktestDefaultsConfig(
            initial_capital=config_module.DEFAULT_INITIAL_CAPITAL,
            commission=config_module.DEFAULT_COMMISSION,
            slippage=config_module.DEFAULT_SLIPPAGE,
            position_size=config_module.DEFAULT_POSITION_SIZE,
        )
        logger.info("✅ 回测配置验证通过")

        OptimizationDefaultsConfig(
            population_size=config_module.GA_POPULATION_SIZE,
            mutation_rate=config_module.GA_MUTATION_RATE,
            crossover_rate=config_module.GA_CROSSOVER_RATE,
            tournament_size=getattr(config_module, 'GA_TOURNAMENT_SIZE', 3),
            stochastic_initial_points=getattr(config_module, 'STOCHASTIC_INITIAL_POINTS', 10),
            convergence_window=getattr(config_module, 'CONVERGENCE_WINDOW', 10),
            max_workers=getattr(config_module, 'OPTIMIZATION_MAX_WORKERS', 1),
        )
        logger.info("✅ 优化配置验证通过")

        return True

    except Exception as e:
        logger.error("❌ 配置验证失败: %s", e)
        return False


if __name__ == "__main__":
    from config.settings import settings as config
    validate_config(config)
