"""
配置文件 - 回测与参数优化引擎
所有配置项都可通过环境变量（或 .env 文件）覆盖
"""
import os
from typing import List
from dotenv import load_dotenv

# 加载 .env 文件
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


# ==================== 行情数据源 ====================

TWELVEDATA_API_KEY = os.getenv("TWELVEDATA_API_KEY", "")
TWELVEDATA_BASE_URL = os.getenv("TWELVEDATA_BASE_URL", "https://api.twelvedata.com")
MARKET_DATA_TIMEOUT = _env_float("MARKET_DATA_TIMEOUT", 15)   # 秒
MARKET_DATA_INTERVAL = os.getenv("MARKET_DATA_INTERVAL", "1d")
MARKET_DATA_CACHE_TTL = _env_int("MARKET_DATA_CACHE_TTL", 3600)

# 合成数据（数据源不可用时的降级方案）
SYNTHETIC_DAILY_VOLATILITY = _env_float("SYNTHETIC_DAILY_VOLATILITY", 0.02)

# ==================== 回测默认参数 ====================

DEFAULT_INITIAL_CAPITAL = _env_float("DEFAULT_INITIAL_CAPITAL", 100000.0)
DEFAULT_COMMISSION = _env_float("DEFAULT_COMMISSION", 0.1)      # 百分比
DEFAULT_SLIPPAGE = _env_float("DEFAULT_SLIPPAGE", 0.05)         # 百分比
DEFAULT_POSITION_SIZE = _env_float("DEFAULT_POSITION_SIZE", 1000.0)

# ==================== 风控默认参数 ====================

DEFAULT_MAX_POSITION_SIZE = _env_float("DEFAULT_MAX_POSITION_SIZE", 5000.0)
DEFAULT_MAX_DAILY_LOSS = _env_float("DEFAULT_MAX_DAILY_LOSS", 1000.0)
DEFAULT_STOP_LOSS = _env_float("DEFAULT_STOP_LOSS", 2.0)        # 百分比
DEFAULT_TAKE_PROFIT = _env_float("DEFAULT_TAKE_PROFIT", 4.0)    # 百分比
MIN_SIGNAL_CONFIDENCE = _env_float("MIN_SIGNAL_CONFIDENCE", 0.5)

# ==================== 策略解析 ====================

MOCK_SIGNAL_RATE = _env_float("MOCK_SIGNAL_RATE", 0.05)
STATISTICAL_CONFIDENCE_NOISE = _env_float("STATISTICAL_CONFIDENCE_NOISE", 0.1)
ALLOW_MOCK_STRATEGY_FALLBACK = _env_bool("ALLOW_MOCK_STRATEGY_FALLBACK", True)

# ==================== 参数优化 ====================

OPTIMIZATION_METHODS: List[str] = ["grid", "genetic", "stochastic"]
FITNESS_METRICS: List[str] = ["sharpe", "returns", "calmar", "custom"]

GA_POPULATION_SIZE = _env_int("GA_POPULATION_SIZE", 50)
GA_MUTATION_RATE = _env_float("GA_MUTATION_RATE", 0.1)
GA_CROSSOVER_RATE = _env_float("GA_CROSSOVER_RATE", 0.8)
GA_TOURNAMENT_SIZE = _env_int("GA_TOURNAMENT_SIZE", 3)

STOCHASTIC_INITIAL_POINTS = _env_int("STOCHASTIC_INITIAL_POINTS", 10)
CONVERGENCE_WINDOW = _env_int("CONVERGENCE_WINDOW", 10)

# 1 = 串行评估
OPTIMIZATION_MAX_WORKERS = _env_int("OPTIMIZATION_MAX_WORKERS", 1)

# ==================== 数据库 ====================

PERSIST_RESULTS = _env_bool("PERSIST_RESULTS", True)
BACKTEST_DB_PATH = os.getenv("BACKTEST_DB_PATH", "backtest.db")
SIGNALS_DB_PATH = os.getenv("SIGNALS_DB_PATH", "trading_bot.db")
DB_MAX_CONNECTIONS = _env_int("DB_MAX_CONNECTIONS", 10)

# ==================== 日志 ====================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE = os.getenv("LOG_FILE", "backtest.log")
LOG_TO_FILE = _env_bool("LOG_TO_FILE", True)


def validate_config() -> List[str]:
    """验证配置，返回错误列表（为空表示通过）"""
    errors = []

    if MARKET_DATA_TIMEOUT <= 0:
        errors.append("MARKET_DATA_TIMEOUT 必须大于0")

    if DEFAULT_INITIAL_CAPITAL <= 0:
        errors.append("DEFAULT_INITIAL_CAPITAL 必须大于0")

    if DEFAULT_COMMISSION < 0 or DEFAULT_SLIPPAGE < 0:
        errors.append("DEFAULT_COMMISSION / DEFAULT_SLIPPAGE 不能为负数")

    if DEFAULT_POSITION_SIZE <= 0 or DEFAULT_MAX_POSITION_SIZE <= 0:
        errors.append("仓位参数必须大于0")

    if not 0 <= MIN_SIGNAL_CONFIDENCE <= 1:
        errors.append("MIN_SIGNAL_CONFIDENCE 必须在 0-1 之间")

    if not 0 <= MOCK_SIGNAL_RATE <= 1:
        errors.append("MOCK_SIGNAL_RATE 必须在 0-1 之间")

    if GA_POPULATION_SIZE < 2:
        errors.append("GA_POPULATION_SIZE 至少为2")

    for name, rate in (("GA_MUTATION_RATE", GA_MUTATION_RATE), ("GA_CROSSOVER_RATE", GA_CROSSOVER_RATE)):
        if not 0 <= rate <= 1:
            errors.append(f"{name} 必须在 0-1 之间")

    if GA_TOURNAMENT_SIZE < 1:
        errors.append("GA_TOURNAMENT_SIZE 至少为1")

    if OPTIMIZATION_MAX_WORKERS < 1:
        errors.append("OPTIMIZATION_MAX_WORKERS 至少为1")

    if DB_MAX_CONNECTIONS < 1:
        errors.append("DB_MAX_CONNECTIONS 至少为1")

    if LOG_LEVEL.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(f"LOG_LEVEL 无效: {LOG_LEVEL}")

    return errors


def print_config():
    """打印当前配置"""
    print("=" * 50)
    print("当前配置")
    print("=" * 50)
    print(f"数据源: {'TwelveData' if TWELVEDATA_API_KEY else '合成数据'}")
    print(f"K线周期: {MARKET_DATA_INTERVAL}")
    print(f"手续费: {DEFAULT_COMMISSION}%  滑点: {DEFAULT_SLIPPAGE}%")
    print(f"单笔仓位: {DEFAULT_POSITION_SIZE}  最大仓位: {DEFAULT_MAX_POSITION_SIZE}")
    print(f"止损: {DEFAULT_STOP_LOSS}%  止盈: {DEFAULT_TAKE_PROFIT}%")
    print(f"遗传算法: 种群{GA_POPULATION_SIZE} 变异{GA_MUTATION_RATE} 交叉{GA_CROSSOVER_RATE}")
    print(f"并发评估: {OPTIMIZATION_MAX_WORKERS}")
    print("=" * 50)


if __name__ == "__main__":
    errors = validate_config()
    if errors:
        print("配置错误:")
        for e in errors:
            print(f"  - {e}")
    else:
        print_config()


# ==================== 导出 settings 对象 ====================
# 为了向后兼容，将当前模块作为 settings 对象导出
import sys
settings = sys.modules[__name__]
