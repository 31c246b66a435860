"""
搜索算法单元测试（fitness / history / grid / genetic / stochastic）
"""
import threading

import pytest

from backtest.domain.models import EvaluationOutcome, RiskMetrics
from backtest.errors import EvaluationError
from backtest.optimization.fitness import calculate_fitness
from backtest.optimization.genetic import GeneticOptimizer
from backtest.optimization.grid_search import GridSearchOptimizer
from backtest.optimization.history import SearchHistory
from backtest.optimization.stochastic import StochasticSearchOptimizer


@pytest.fixture
def evaluator(make_result):
    """适应度 = 参数值之和；value < 0 的组合评估失败"""
    calls = []
    lock = threading.Lock()

    def evaluate(params):
        with lock:
            calls.append(dict(params))
        if any(v < 0 for v in params.values()):
            return EvaluationOutcome.failure(params, EvaluationError("bad combination", params))
        return EvaluationOutcome.success(params, make_result(), float(sum(params.values())))

    evaluate.calls = calls
    return evaluate


class TestFitness:

    def test_named_metrics(self, make_result):
        result = make_result(
            sharpe_ratio=1.5,
            total_return=0.2,
            win_rate=0.6,
            max_drawdown=0.1,
            risk_metrics=RiskMetrics(calmar_ratio=2.0)
        )

        assert calculate_fitness(result, "sharpe") == 1.5
        assert calculate_fitness(result, "returns") == 0.2
        assert calculate_fitness(result, "calmar") == 2.0
        assert calculate_fitness(result, "custom") == pytest.approx(
            0.4 * 1.5 + 0.3 * 0.2 + 0.2 * 0.6 + 0.1 * 0.9
        )

    def test_unknown_metric_defaults_to_total_return(self, make_result):
        assert calculate_fitness(make_result(total_return=0.07), "profit_factor") == 0.07

    def test_non_finite_becomes_zero(self, make_result):
        assert calculate_fitness(make_result(sharpe_ratio=float("nan")), "sharpe") == 0.0


class TestSearchHistory:

    def test_iterations_and_best(self, make_result):
        history = SearchHistory()
        for fitness in (1.0, 3.0, 2.0):
            history.record({"x": fitness}, make_result(), fitness)

        assert [s.iteration for s in history.steps] == [1, 2, 3]
        assert history.best.fitness == 3.0
        assert history.best.parameters == {"x": 3.0}

    def test_convergence_requires_full_window(self, make_result):
        history = SearchHistory()
        for _ in range(9):
            history.record({}, make_result(), 2.0)
        assert history.convergence_rate(10) == 0.0

        history.record({}, make_result(), 4.0)
        # (9 * 2 + 4) / 10 / 4 * 100
        assert history.convergence_rate(10) == pytest.approx(55.0)

    def test_convergence_zero_best(self, make_result):
        history = SearchHistory()
        for _ in range(10):
            history.record({}, make_result(), 0.0)
        assert history.convergence_rate(10) == 0.0

    def test_statistics(self, make_result):
        history = SearchHistory()
        for fitness in (1.0, 2.0, 3.0):
            history.record({}, make_result(), fitness)

        stats = history.statistics(1.25)

        assert stats.total_iterations == 3
        assert stats.best_fitness == 3.0
        assert stats.average_fitness == pytest.approx(2.0)
        assert stats.execution_time == 1.25

    def test_concurrent_records(self, make_result):
        history = SearchHistory()
        result = make_result()

        def worker(offset):
            for i in range(100):
                history.record({"i": offset + i}, result, float(offset + i))

        threads = [threading.Thread(target=worker, args=(n * 100,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(history) == 400
        assert sorted(s.iteration for s in history.steps) == list(range(1, 401))
        assert history.best.fitness == 399.0


class TestGridSearch:

    def test_one_step_per_value(self, evaluator):
        history = GridSearchOptimizer(evaluator).optimize({"period": [10, 20, 30]}, max_iterations=3)

        assert [s.parameters for s in history.steps] == [{"period": 10}, {"period": 20}, {"period": 30}]
        assert history.best.parameters == {"period": 30}

    def test_full_space_each_combination_once(self, evaluator):
        space = {"a": [1, 2], "b": [10, 20, 30]}

        history = GridSearchOptimizer(evaluator).optimize(space, max_iterations=100)

        combos = [tuple(sorted(s.parameters.items())) for s in history.steps]
        assert len(combos) == 6
        assert len(set(combos)) == 6
        assert len(evaluator.calls) == 6

    def test_budget_truncates_in_generation_order(self, evaluator):
        history = GridSearchOptimizer(evaluator).optimize({"a": [1, 2], "b": [10, 20, 30]}, max_iterations=4)

        assert [s.parameters for s in history.steps] == [
            {"a": 1, "b": 10}, {"a": 1, "b": 20}, {"a": 1, "b": 30}, {"a": 2, "b": 10}
        ]

    def test_failed_candidates_skipped(self, evaluator):
        history = GridSearchOptimizer(evaluator).optimize({"a": [-1, 1, 2]}, max_iterations=10)

        assert len(history) == 2
        assert history.failures == 1

    def test_parallel_matches_sequential(self, evaluator):
        space = {"a": list(range(5)), "b": list(range(4))}

        history = GridSearchOptimizer(evaluator, max_workers=4).optimize(space, max_iterations=100)

        assert [s.parameters for s in history.steps] == list(GridSearchOptimizer.combinations(space))
        assert history.best.fitness == 7.0

    def test_progress_callback(self, evaluator):
        events = []
        GridSearchOptimizer(evaluator, progress_callback=events.append).optimize({"a": [1, 2]}, 10)

        assert [e["completed"] for e in events] == [1, 2]
        assert events[-1]["progress"] == 1.0
        assert events[-1]["best_fitness"] == 2.0


class TestGeneticOptimizer:

    def test_population_times_generations_steps(self, evaluator):
        optimizer = GeneticOptimizer(evaluator, population_size=10, seed=1)

        history = optimizer.optimize({"a": [1, 2, 3], "b": [10, 20]}, max_iterations=5)

        assert len(history) >= 50
        for step in history.steps:
            assert step.parameters["a"] in (1, 2, 3)
            assert step.parameters["b"] in (10, 20)

    def test_seeded_search_is_reproducible(self, evaluator):
        space = {"a": list(range(10)), "b": list(range(10))}

        first = GeneticOptimizer(evaluator, population_size=8, seed=11).optimize(space, 4)
        second = GeneticOptimizer(evaluator, population_size=8, seed=11).optimize(space, 4)

        assert [s.parameters for s in first.steps] == [s.parameters for s in second.steps]

    def test_converges_towards_best(self, evaluator):
        space = {"a": list(range(10)), "b": list(range(10))}

        history = GeneticOptimizer(evaluator, population_size=20, seed=3).optimize(space, 15)

        assert history.best.fitness >= 16

    def test_all_failures_reinitialize(self, evaluator):
        history = GeneticOptimizer(evaluator, population_size=4, seed=1).optimize({"a": [-1, -2]}, 3)

        assert len(history) == 0
        assert history.failures == 12

    def test_crossover_disabled_keeps_parents(self, evaluator):
        optimizer = GeneticOptimizer(evaluator, population_size=4, crossover_rate=0.0, seed=1)
        parents = [{"a": 1}, {"a": 2}, {"a": 3}]

        assert optimizer._crossover(parents) == parents

    def test_uniform_crossover_swaps_genes(self, evaluator):
        optimizer = GeneticOptimizer(evaluator, population_size=4, seed=1)

        child1, child2 = optimizer._uniform_crossover({"a": 1, "b": 2}, {"a": 3, "b": 4})

        for key in ("a", "b"):
            assert {child1[key], child2[key]} == ({1, 3} if key == "a" else {2, 4})

    def test_full_mutation_resamples_domain(self, evaluator):
        optimizer = GeneticOptimizer(evaluator, population_size=4, mutation_rate=1.0, seed=1)

        mutated = optimizer._mutation([{"a": 99}] * 20, {"a": [1, 2]})

        assert all(m["a"] in (1, 2) for m in mutated)

    def test_tournament_prefers_fitter(self, evaluator, make_result):
        optimizer = GeneticOptimizer(evaluator, population_size=50, tournament_size=3, seed=2)
        evaluated = [EvaluationOutcome.success({"a": i}, make_result(), float(i)) for i in range(5)]

        selected = optimizer._selection(evaluated)

        assert len(selected) == 50
        mean = sum(s["a"] for s in selected) / len(selected)
        assert mean > 2.0


class TestStochasticSearch:

    @pytest.mark.parametrize("budget", [5, 10, 25])
    def test_budget_exhausted(self, evaluator, budget):
        history = StochasticSearchOptimizer(evaluator, seed=1).optimize({"a": [1, 2, 3]}, budget)

        assert len(history) == budget
        assert all(s.parameters["a"] in (1, 2, 3) for s in history.steps)

    def test_parallel_batches(self, evaluator):
        history = StochasticSearchOptimizer(evaluator, max_workers=3, seed=1).optimize({"a": [1, 2]}, 17)
        assert len(history) == 17

    def test_tracks_best(self, evaluator):
        history = StochasticSearchOptimizer(evaluator, seed=4).optimize({"a": list(range(5))}, 40)
        assert history.best.fitness == max(s.fitness for s in history.steps)
