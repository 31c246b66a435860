"""
遗传算法 - 锦标赛选择 + 均匀交叉 + 逐基因重采样变异
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backtest.domain.models import EvaluationOutcome
from backtest.optimization.base import BaseOptimizer
from backtest.optimization.history import SearchHistory
from config.settings import settings as config
from logger_utils import get_logger

logger = get_logger("backtest.optimization.genetic")


class GeneticOptimizer(BaseOptimizer):
    """遗传算法优化器"""

    method = "genetic"

    def __init__(
        self,
        evaluate,
        population_size: Optional[int] = None,
        mutation_rate: Optional[float] = None,
        crossover_rate: Optional[float] = None,
        tournament_size: Optional[int] = None,
        **kwargs
    ):
        """
        Args:
            evaluate: 候选评估函数
            population_size: 种群大小
            mutation_rate: 每个基因的变异率
            crossover_rate: 每对父代的交叉率
            tournament_size: 锦标赛规模
        """
        super().__init__(evaluate, **kwargs)
        self.population_size = population_size or config.GA_POPULATION_SIZE
        self.mutation_rate = config.GA_MUTATION_RATE if mutation_rate is None else mutation_rate
        self.crossover_rate = config.GA_CROSSOVER_RATE if crossover_rate is None else crossover_rate
        self.tournament_size = tournament_size or config.GA_TOURNAMENT_SIZE

    def optimize(self, parameters: Dict[str, Sequence[Any]], max_iterations: int) -> SearchHistory:
        """
        执行遗传算法优化

        Args:
            parameters: 参数空间，如 {'period': [10, 20, 30]}
            max_iterations: 迭代代数

        Returns:
            搜索历史
        """
        self.total_evaluations = self.population_size * max_iterations
        logger.info(
            f"Starting genetic algorithm: population={self.population_size}, generations={max_iterations}"
        )

        population = self._initialize_population(parameters)
        best_fitness = float('-inf')

        for generation in range(max_iterations):
            outcomes = self._evaluate_batch(population)
            evaluated = [o for o in outcomes if o.ok]

            if not evaluated:
                logger.warning(f"Generation {generation + 1}: no valid individuals, reinitializing population")
                population = self._initialize_population(parameters)
                continue

            generation_best = max(evaluated, key=lambda o: o.fitness)
            best_fitness = max(best_fitness, generation_best.fitness)
            logger.info(
                f"Generation {generation + 1}/{max_iterations}: best={generation_best.fitness:.4f} "
                f"avg={sum(o.fitness for o in evaluated) / len(evaluated):.4f} overall={best_fitness:.4f}"
            )

            # 选择
            selected = self._selection(evaluated)

            # 交叉和变异
            offspring = self._crossover(selected)
            population = self._mutation(offspring, parameters)

        return self.history

    def _initialize_population(self, parameters: Dict[str, Sequence[Any]]) -> List[Dict[str, Any]]:
        """初始化种群"""
        return [self.sample(parameters) for _ in range(self.population_size)]

    def _selection(self, evaluated: List[EvaluationOutcome]) -> List[Dict[str, Any]]:
        """锦标赛选择（有放回抽取，适应度最高者胜出）"""
        selected = []
        for _ in range(self.population_size):
            contestants = [self.rng.choice(evaluated) for _ in range(self.tournament_size)]
            winner = max(contestants, key=lambda o: o.fitness)
            selected.append(dict(winner.parameters))
        return selected

    def _crossover(self, population: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """两两配对均匀交叉；落单个体原样保留"""
        offspring = []
        for i in range(0, len(population), 2):
            if i + 1 < len(population) and self.rng.random() < self.crossover_rate:
                offspring.extend(self._uniform_crossover(population[i], population[i + 1]))
            else:
                offspring.append(population[i])
                if i + 1 < len(population):
                    offspring.append(population[i + 1])
        return offspring

    def _uniform_crossover(
        self,
        parent1: Dict[str, Any],
        parent2: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """每个基因各 50% 概率来自任一父代"""
        child1, child2 = {}, {}
        for key in parent1:
            if self.rng.random() < 0.5:
                child1[key], child2[key] = parent1[key], parent2[key]
            else:
                child1[key], child2[key] = parent2[key], parent1[key]
        return child1, child2

    def _mutation(self, population: List[Dict[str, Any]],
                  parameters: Dict[str, Sequence[Any]]) -> List[Dict[str, Any]]:
        """逐基因按变异率从参数域重新采样"""
        mutated = []
        for individual in population:
            child = dict(individual)
            for name, values in parameters.items():
                if self.rng.random() < self.mutation_rate:
                    child[name] = self.rng.choice(list(values))
            mutated.append(child)
        return mutated
