"""
Backtest Engine - Core backtesting logic
"""
import heapq
import math
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence

from backtest.data_provider import CandleSeries, HistoricalDataProvider
from backtest.domain.interfaces import IResultSink
from backtest.domain.models import (
    BacktestConfig,
    BacktestResult,
    BacktestTrade,
    Candle,
    Direction,
    EquityPoint,
    Provenance,
    ResultSummary,
    TradeSignal,
)
from backtest.services.metrics_calculator import MetricsCalculator
from backtest.strategy_resolver import ResolvedStrategy, StrategyResolver
from config.settings import settings as config
from logger_utils import get_logger

logger = get_logger("backtest.engine")


class EngineState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SIMULATING = "simulating"
    FINALIZED = "finalized"


class TradeSimulator:
    """Replay bars through one strategy and simulate fills for one run"""

    def __init__(self, backtest_config: BacktestConfig, resolved: ResolvedStrategy,
                 min_confidence: Optional[float] = None):
        self.config = backtest_config
        self.resolved = resolved
        self.strategy = resolved.strategy
        self.min_confidence = config.MIN_SIGNAL_CONFIDENCE if min_confidence is None else min_confidence

        self.state = EngineState.IDLE
        self.series: Dict[str, CandleSeries] = {}

        self.capital = backtest_config.initial_capital
        self.peak_capital = backtest_config.initial_capital
        self.max_drawdown = 0.0
        self.daily_pnl = 0.0
        self.trades: List[BacktestTrade] = []
        self.equity_curve: List[EquityPoint] = []
        self.rejected_signals = 0
        self._current_date: Optional[date] = None

    def load(self, data_provider: HistoricalDataProvider) -> None:
        self._require(EngineState.IDLE)
        self.state = EngineState.LOADING

        for symbol in self.config.symbols:
            if symbol not in self.series:
                self.series[symbol] = data_provider.load(symbol, self.config.start_date, self.config.end_date)

    def simulate(self) -> None:
        self._require(EngineState.LOADING)
        self.state = EngineState.SIMULATING

        self.strategy.initialize()
        try:
            for candle in self._merged_candles():
                self.on_candle(candle)
        finally:
            self.strategy.cleanup()

        if self._current_date is not None:
            self._record_equity_point()
        self.state = EngineState.FINALIZED

    def on_candle(self, candle: Candle) -> Optional[BacktestTrade]:
        """处理一根K线：换日 -> 策略信号 -> 风控 -> 成交"""
        if self._current_date is not None and candle.date != self._current_date:
            self._record_equity_point()
            self.daily_pnl = 0.0
        self._current_date = candle.date

        signal = self.strategy.on_candle(candle)
        if signal is None:
            return None

        reason = self.check_risk(signal)
        if reason:
            self.rejected_signals += 1
            logger.debug(f"Signal rejected {signal.symbol} {candle.timestamp}: {reason}")
            return None

        return self._execute(signal, candle)

    def check_risk(self, signal: TradeSignal) -> Optional[str]:
        """风控闸门，返回拒绝原因；通过返回 None"""
        if self.daily_pnl < -self.config.risk.max_daily_loss:
            return f"daily loss limit reached ({self.daily_pnl:.2f})"
        if self.config.effective_position_size > self.capital:
            return f"position size {self.config.effective_position_size} exceeds capital {self.capital:.2f}"
        if signal.confidence < self.min_confidence:
            return f"confidence {signal.confidence:.2f} below {self.min_confidence}"
        return None

    def _execute(self, signal: TradeSignal, candle: Candle) -> Optional[BacktestTrade]:
        entry_price = candle.close
        if entry_price <= 0:
            return None

        quantity = math.floor(self.config.effective_position_size / entry_price)
        entry_costs = self._costs(quantity * entry_price)
        if quantity == 0 or quantity * entry_price + entry_costs > self.capital:
            self.rejected_signals += 1
            logger.debug(f"Order too small or too costly for {signal.symbol} @ {entry_price:.4f}")
            return None

        # 固定止盈价离场
        take_profit = self.config.risk.take_profit / 100
        if signal.direction == Direction.LONG:
            exit_price = entry_price * (1 + take_profit)
            gross_pnl = (exit_price - entry_price) * quantity
        else:
            exit_price = entry_price * (1 - take_profit)
            gross_pnl = (entry_price - exit_price) * quantity

        pnl = gross_pnl - entry_costs - self._costs(quantity * exit_price)

        trade = BacktestTrade(
            id=f"{signal.symbol}-{len(self.trades) + 1}",
            symbol=signal.symbol,
            entry_date=candle.date,
            exit_date=candle.date + timedelta(days=1),
            entry_price=entry_price,
            exit_price=exit_price,
            quantity=quantity,
            side=signal.direction,
            pnl=pnl,
            pnl_pct=pnl / (quantity * entry_price),
            duration=1,
            signal=signal
        )
        self.trades.append(trade)

        self.capital += pnl
        self.daily_pnl += pnl
        self.peak_capital = max(self.peak_capital, self.capital)
        self.max_drawdown = max(self.max_drawdown, self._drawdown())
        return trade

    def _costs(self, notional: float) -> float:
        return notional * (self.config.commission + self.config.slippage) / 100

    def _drawdown(self) -> float:
        if self.peak_capital <= 0:
            return 0.0
        return max(0.0, (self.peak_capital - self.capital) / self.peak_capital)

    def _record_equity_point(self) -> None:
        self.equity_curve.append(EquityPoint(
            date=self._current_date,
            equity=self.capital,
            drawdown=self._drawdown(),
            trades=len(self.trades)
        ))

    def _merged_candles(self) -> Iterator[Candle]:
        # 各品种内部已按时间排序，按时间戳归并（同一时刻按品种顺序）
        streams = [self.series[symbol].candles for symbol in self.series]
        return heapq.merge(*streams, key=lambda c: c.timestamp)

    def _require(self, state: EngineState) -> None:
        if self.state != state:
            raise RuntimeError(f"TradeSimulator is {self.state.value}, expected {state.value}")


class BacktestEngine:
    """Run one backtest: resolve strategy, load data, simulate, compute metrics, persist summary"""

    def __init__(
        self,
        data_provider: Optional[HistoricalDataProvider] = None,
        resolver: Optional[StrategyResolver] = None,
        metrics_calculator: Optional[MetricsCalculator] = None,
        result_sink: Optional[IResultSink] = None
    ):
        if resolver is None:
            from strategies.strategies import STRATEGY_REGISTRY
            resolver = StrategyResolver(STRATEGY_REGISTRY)
        self.data_provider = data_provider or HistoricalDataProvider()
        self.resolver = resolver
        self.metrics_calculator = metrics_calculator or MetricsCalculator()
        self.result_sink = result_sink

    def run(self, backtest_config: BacktestConfig, persist: bool = True,
            benchmark_returns: Optional[Sequence[float]] = None) -> BacktestResult:
        """
        Run backtest

        Args:
            backtest_config: Validated backtest configuration
            persist: Append a summary to the result sink
            benchmark_returns: Optional benchmark daily returns for beta/alpha

        Returns:
            BacktestResult (provenance tells whether fallbacks were used)

        Raises:
            StrategyNotFoundError: Unknown strategy and mock fallback disabled
        """
        resolved = self.resolver.resolve(backtest_config.strategy_id, backtest_config.strategy_params)
        logger.info(
            f"Backtest {backtest_config.strategy_id} ({resolved.tier.value}) "
            f"{','.join(backtest_config.symbols)} {backtest_config.start_date} -> {backtest_config.end_date}"
        )

        simulator = TradeSimulator(backtest_config, resolved)
        simulator.load(self.data_provider)
        simulator.simulate()

        result = self._build_result(simulator, benchmark_returns)
        logger.info(
            f"Backtest finished {result.strategy_id}: trades={result.total_trades} "
            f"return={result.total_return:.2%} sharpe={result.sharpe_ratio:.3f} "
            f"rejected={simulator.rejected_signals}"
        )

        if persist:
            self._persist(result)
        return result

    def _build_result(self, simulator: TradeSimulator,
                      benchmark_returns: Optional[Sequence[float]]) -> BacktestResult:
        cfg = simulator.config
        metrics = self.metrics_calculator.calculate_all_metrics(
            trades=simulator.trades,
            equity_curve=simulator.equity_curve,
            initial_capital=cfg.initial_capital,
            final_capital=simulator.capital,
            start_date=cfg.start_date,
            end_date=cfg.end_date,
            benchmark_returns=benchmark_returns
        )

        provenance = Provenance(
            strategy_tier=simulator.resolved.tier,
            data_origins={symbol: series.origin for symbol, series in simulator.series.items()}
        )

        return BacktestResult(
            config=cfg,
            final_capital=simulator.capital,
            total_return=metrics['total_return'],
            annualized_return=metrics['annualized_return'],
            max_drawdown=max(simulator.max_drawdown, metrics['max_drawdown']),
            sharpe_ratio=metrics['sharpe_ratio'],
            win_rate=metrics['win_rate'],
            total_trades=metrics['total_trades'],
            profitable_trades=metrics['profitable_trades'],
            losing_trades=metrics['losing_trades'],
            average_win=metrics['average_win'],
            average_loss=metrics['average_loss'],
            profit_factor=metrics['profit_factor'],
            expectancy=metrics['expectancy'],
            trades=tuple(simulator.trades),
            equity_curve=tuple(simulator.equity_curve),
            monthly_returns=tuple(metrics['monthly_returns']),
            risk_metrics=metrics['risk_metrics'],
            provenance=provenance
        )

    def _persist(self, result: BacktestResult) -> None:
        if self.result_sink is None:
            return

        summary = ResultSummary(
            strategy_id=result.strategy_id,
            run_date=datetime.now().date(),
            run_type="backtest",
            trade_count=result.total_trades,
            success_count=result.profitable_trades,
            total_return_pct=result.total_return * 100,
            win_rate_pct=result.win_rate * 100,
            fitness_score=result.sharpe_ratio,
            patterns_used=(result.strategy_id,),
            degraded=result.provenance.is_degraded
        )
        try:
            self.result_sink.append(summary)
        except Exception as e:
            # Log but don't fail the backtest if summary persistence fails
            logger.warning(f"Failed to persist summary for {result.strategy_id}: {e}")
