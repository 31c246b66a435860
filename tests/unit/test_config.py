"""
配置与配置验证单元测试
"""
import pytest
from pydantic import ValidationError

from config.settings import settings
from config.validator import BacktestDefaultsConfig, OptimizationDefaultsConfig, RiskConfig, validate_config


def test_default_settings_valid():
    assert settings.validate_config() == []
    assert validate_config(settings) is True


def test_invalid_setting_reported(monkeypatch):
    monkeypatch.setattr(settings, "GA_MUTATION_RATE", 1.5)

    assert validate_config(settings) is False


@pytest.mark.parametrize("field, value", [
    ("max_position_size", 0),
    ("max_daily_loss", -1),
    ("take_profit", 150),
    ("min_signal_confidence", 1.2),
])
def test_risk_config_bounds(field, value):
    with pytest.raises(ValidationError):
        RiskConfig(**{field: value})


def test_backtest_defaults():
    defaults = BacktestDefaultsConfig()
    assert defaults.initial_capital == 100000.0
    assert defaults.commission == 0.1

    with pytest.raises(ValidationError):
        BacktestDefaultsConfig(initial_capital=0)


def test_optimization_defaults():
    with pytest.raises(ValidationError):
        OptimizationDefaultsConfig(population_size=1)
