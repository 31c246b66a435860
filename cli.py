"""
命令行工具 - 回测、策略对比、参数优化
"""
import argparse
import json
import sys
from typing import List, Optional

from pydantic import ValidationError

from backtest.data_provider import HistoricalDataProvider
from backtest.engine import BacktestEngine
from backtest.errors import BacktestError
from backtest.repository_factory import get_result_sink, get_signal_stats_repository
from backtest.schemas import BacktestRequest, OptimizationRequest
from backtest.services.backtest_service import BacktestService
from backtest.services.export_service import export_optimization, export_results
from backtest.services.optimization_service import AlgorithmOptimizer
from backtest.strategy_resolver import StrategyResolver
from config.settings import settings as config
from config.validator import validate_config as validate_config_models
from logger_utils import get_logger
from strategies.strategies import STRATEGY_REGISTRY

logger = get_logger("cli")


def build_engine(seed: Optional[int] = None) -> BacktestEngine:
    """按配置组装回测引擎"""
    # 没有历史信号库时不创建空库，未注册策略直接走模拟信号
    signal_stats = get_signal_stats_repository(create=False)
    resolver = StrategyResolver(STRATEGY_REGISTRY, signal_stats=signal_stats, seed=seed)
    return BacktestEngine(
        data_provider=HistoricalDataProvider(seed=seed),
        resolver=resolver,
        result_sink=get_result_sink()
    )


def check_config() -> bool:
    """启动前验证配置"""
    errors = config.validate_config()
    if errors:
        logger.error("配置错误:")
        for e in errors:
            logger.error(f"  - {e}")
        return False
    return validate_config_models(config)


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _backtest_request(args, strategy_id: str) -> BacktestRequest:
    fields = {
        'strategy_id': strategy_id,
        'symbols': _split(args.symbols),
        'start_date': args.start,
        'end_date': args.end,
        'strategy_params': json.loads(args.params) if args.params else {},
    }
    if args.capital is not None:
        fields['initial_capital'] = args.capital
    return BacktestRequest(**fields)


def _print_results(results, output: str):
    if output == 'json':
        rows = [
            {
                'strategy': r.strategy_id,
                'total_return': r.total_return,
                'annualized_return': r.annualized_return,
                'sharpe_ratio': r.sharpe_ratio,
                'win_rate': r.win_rate,
                'total_trades': r.total_trades,
                'max_drawdown': r.max_drawdown,
                'strategy_tier': r.provenance.strategy_tier.value,
                'synthetic_symbols': r.provenance.synthetic_symbols,
            }
            for r in results
        ]
        print(json.dumps(rows, indent=2))
    else:
        print(export_results(results), end='')

    for r in results:
        if r.provenance.is_degraded:
            logger.warning(
                f"⚠️ {r.strategy_id}: strategy tier={r.provenance.strategy_tier.value}, "
                f"synthetic data={r.provenance.synthetic_symbols or '-'}"
            )


def cmd_backtest(args):
    """单策略回测"""
    request = _backtest_request(args, args.strategy)
    service = BacktestService(build_engine(args.seed))
    result = service.run_backtest(request.to_domain())
    _print_results([result], args.output)


def cmd_compare(args):
    """多策略对比"""
    strategy_ids = _split(args.strategies)
    if not strategy_ids:
        raise ValueError("--strategies 至少需要一个策略ID")
    request = _backtest_request(args, strategy_ids[0])
    service = BacktestService(build_engine(args.seed))
    results = service.compare_strategies(strategy_ids, request.to_domain())
    _print_results(results, args.output)


def cmd_optimize(args):
    """参数优化（JSON 配置文件）"""
    with open(args.config, encoding='utf-8') as f:
        request = OptimizationRequest.model_validate(json.load(f))

    opt_config = request.to_domain()
    engine = build_engine(opt_config.seed)
    optimizer = AlgorithmOptimizer(engine=engine, result_sink=engine.result_sink, max_workers=args.workers)
    result = optimizer.optimize_algorithm(opt_config)

    if args.output == 'csv':
        print(export_results([result.best_result]), end='')
        print(f"# best parameters: {json.dumps(result.best_parameters)}")
    else:
        print(export_optimization(result))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="策略回测与参数优化命令行工具")
    subparsers = parser.add_subparsers(dest='command', help='可用命令')

    def add_window_args(p):
        p.add_argument('--symbols', required=True, help='品种列表，逗号分隔（如 AAPL,MSFT）')
        p.add_argument('--start', required=True, help='开始日期 YYYY-MM-DD')
        p.add_argument('--end', required=True, help='结束日期 YYYY-MM-DD')
        p.add_argument('--capital', type=float, default=None, help='初始资金')
        p.add_argument('--params', help='策略参数 JSON')
        p.add_argument('--seed', type=int, help='随机种子')
        p.add_argument('--output', choices=['csv', 'json'], default='csv', help='输出格式')

    # backtest
    p_bt = subparsers.add_parser('backtest', help='运行回测')
    p_bt.add_argument('--strategy', required=True, help='策略ID')
    add_window_args(p_bt)

    # compare
    p_cmp = subparsers.add_parser('compare', help='对比策略')
    p_cmp.add_argument('--strategies', required=True, help='策略ID列表，逗号分隔')
    add_window_args(p_cmp)

    # optimize
    p_opt = subparsers.add_parser('optimize', help='参数优化')
    p_opt.add_argument('--config', required=True, help='优化配置 JSON 文件')
    p_opt.add_argument('--workers', type=int, default=None, help='并发评估数')
    p_opt.add_argument('--output', choices=['csv', 'json'], default='json', help='输出格式')

    args = parser.parse_args(argv)

    commands = {
        'backtest': cmd_backtest,
        'compare': cmd_compare,
        'optimize': cmd_optimize,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    if not check_config():
        return 1

    try:
        command(args)
    except (BacktestError, ValidationError, ValueError, OSError) as e:
        logger.error(f"❌ {args.command} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
