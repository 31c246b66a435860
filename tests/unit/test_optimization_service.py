"""
AlgorithmOptimizer 单元测试
"""
from datetime import date

import pytest

from backtest.domain.models import OptimizationConfig, OptimizationMethod
from backtest.errors import (
    ConfigurationError,
    NoValidResultsError,
    OptimizationInProgressError,
    StrategyNotFoundError,
)
from backtest.services.optimization_service import AlgorithmOptimizer
from conftest import RecordingResultSink


def _opt_config(**overrides):
    fields = dict(
        strategy_id="always_long",
        symbols=("TEST",),
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 10),
        parameters={"take_profit": (1.0, 2.0, 4.0)},
        method=OptimizationMethod.GRID,
        fitness_metric="returns",
        max_iterations=10,
        commission=0.0,
        slippage=0.0,
        seed=1
    )
    fields.update(overrides)
    return OptimizationConfig(**fields)


@pytest.fixture
def optimizer(engine_factory, result_sink):
    return AlgorithmOptimizer(engine=engine_factory(), result_sink=result_sink)


class TestOptimizationConfig:

    def test_bayesian_alias(self):
        assert _opt_config(method="bayesian").method == OptimizationMethod.STOCHASTIC

    @pytest.mark.parametrize("overrides", [
        {"method": "simulated_annealing"},
        {"parameters": {}},
        {"parameters": {"period": ()}},
        {"max_iterations": 0},
        {"end_date": date(2024, 1, 1)},
        {"initial_capital": 0},
        {"mutation_rate": 1.5},
    ])
    def test_invalid_configs(self, overrides):
        with pytest.raises(ConfigurationError):
            _opt_config(**overrides)

    def test_search_space_size(self):
        assert _opt_config(parameters={"a": (1, 2), "b": (1, 2, 3)}).search_space_size == 6


class TestAlgorithmOptimizer:

    def test_grid_finds_best_take_profit(self, optimizer):
        result = optimizer.optimize_algorithm(_opt_config())

        assert result.best_parameters == {"take_profit": 4.0}
        assert result.method == OptimizationMethod.GRID
        assert len(result.history) == 3
        assert result.statistics.total_iterations == 3
        assert result.statistics.best_fitness == pytest.approx(result.best_result.total_return)
        assert result.best_result.config.risk.take_profit == 4.0

    def test_parameters_split_between_config_and_strategy(self, optimizer):
        result = optimizer.optimize_algorithm(_opt_config(
            parameters={"position_size": (2000.0,), "confidence": (0.8,)}
        ))

        config = result.best_result.config
        assert config.position_size == 2000.0
        assert config.strategy_params == {"confidence": 0.8}
        assert result.best_result.trades[0].quantity == 20

    def test_scenario_grid_three_values(self, optimizer):
        result = optimizer.optimize_algorithm(_opt_config(
            parameters={"period": (10, 20, 30)}, strategy_id="fragile", max_iterations=3
        ))

        assert [s.parameters for s in result.history] == [{"period": 10}, {"period": 20}, {"period": 30}]

    def test_scenario_genetic_steps(self, optimizer):
        result = optimizer.optimize_algorithm(_opt_config(
            method=OptimizationMethod.GENETIC,
            parameters={"take_profit": (1.0, 2.0, 3.0, 4.0)},
            population_size=10,
            max_iterations=5
        ))

        assert len(result.history) >= 50
        assert result.best_parameters == {"take_profit": 4.0}

    def test_stochastic_budget(self, optimizer):
        result = optimizer.optimize_algorithm(_opt_config(method="stochastic", max_iterations=12))
        assert len(result.history) == 12

    def test_failed_candidates_skipped(self, optimizer):
        result = optimizer.optimize_algorithm(_opt_config(
            strategy_id="fragile", parameters={"period": (-1, 5, 10)}
        ))
        assert len(result.history) == 2

    def test_invalid_config_override_counts_as_failure(self, optimizer):
        result = optimizer.optimize_algorithm(_opt_config(parameters={"commission": (-1.0, 0.0)}))

        assert [s.parameters for s in result.history] == [{"commission": 0.0}]

    def test_no_valid_results(self, optimizer):
        with pytest.raises(NoValidResultsError):
            optimizer.optimize_algorithm(_opt_config(strategy_id="fragile", parameters={"period": (-1, -2)}))
        assert not optimizer.is_optimizing

    def test_unknown_strategy_is_fatal(self, engine_factory):
        optimizer = AlgorithmOptimizer(engine=engine_factory(allow_mock=False))
        with pytest.raises(StrategyNotFoundError):
            optimizer.optimize_algorithm(_opt_config(strategy_id="missing"))

    def test_rejects_concurrent_optimization(self, optimizer):
        seen = []

        def progress(event):
            if seen:
                return
            seen.append(optimizer.is_optimizing)
            with pytest.raises(OptimizationInProgressError):
                optimizer.optimize_algorithm(_opt_config())

        optimizer.optimize_algorithm(_opt_config(), progress_callback=progress)

        assert seen == [True]
        assert not optimizer.is_optimizing

    def test_summary_appended_once_per_run(self, optimizer, result_sink):
        result = optimizer.optimize_algorithm(_opt_config())

        assert len(result_sink.summaries) == 1
        summary = result_sink.summaries[0]
        assert summary.run_type == "optimization:grid"
        assert summary.fitness_score == result.statistics.best_fitness
        assert summary.patterns_used == ("always_long",)

    def test_sink_failure_does_not_fail_run(self, engine_factory):
        optimizer = AlgorithmOptimizer(engine=engine_factory(), result_sink=RecordingResultSink(fail=True))
        assert optimizer.optimize_algorithm(_opt_config()).best_parameters == {"take_profit": 4.0}

    def test_history_copy(self, optimizer):
        optimizer.optimize_algorithm(_opt_config())

        history = optimizer.get_optimization_history()
        history.clear()

        assert len(optimizer.get_optimization_history()) == 3

    def test_parallel_evaluation(self, engine_factory):
        optimizer = AlgorithmOptimizer(engine=engine_factory(), max_workers=4)

        result = optimizer.optimize_algorithm(_opt_config(parameters={"take_profit": (1.0, 2.0, 3.0, 4.0, 5.0)}))

        assert [s.parameters["take_profit"] for s in result.history] == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert result.best_parameters == {"take_profit": 5.0}

    def test_compare_optimizations(self, optimizer):
        configs = [
            _opt_config(parameters={"take_profit": (1.0,)}),
            _opt_config(strategy_id="fragile", parameters={"period": (-1,)}),
            _opt_config(parameters={"take_profit": (3.0,)}),
        ]

        ranked = optimizer.compare_optimizations(configs)

        assert [r.best_parameters for _, r in ranked] == [{"take_profit": 3.0}, {"take_profit": 1.0}]
