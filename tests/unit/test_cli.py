"""
命令行工具单元测试
"""
import json

import pytest

import cli


@pytest.fixture
def fake_engine(monkeypatch, engine_factory):
    monkeypatch.setattr(cli, "build_engine", lambda seed=None: engine_factory())


WINDOW = ["--symbols", "test", "--start", "2024-01-01", "--end", "2024-01-10"]


def test_backtest_csv(fake_engine, capsys):
    assert cli.main(["backtest", "--strategy", "always_long", *WINDOW]) == 0

    lines = capsys.readouterr().out.strip().split("\n")
    assert lines[0].startswith("Strategy,")
    assert lines[1].startswith("always_long,")


def test_backtest_json(fake_engine, capsys):
    assert cli.main(["backtest", "--strategy", "always_long", "--output", "json", *WINDOW]) == 0

    rows = json.loads(capsys.readouterr().out)
    assert rows[0]["strategy"] == "always_long"
    assert rows[0]["strategy_tier"] == "registered"
    assert rows[0]["total_trades"] > 0


def test_compare(fake_engine, capsys):
    assert cli.main(["compare", "--strategies", "always_long,fragile", *WINDOW]) == 0

    lines = capsys.readouterr().out.strip().split("\n")
    assert len(lines) == 3


def test_invalid_window_fails(fake_engine):
    args = ["backtest", "--strategy", "always_long", "--symbols", "TEST",
            "--start", "2024-01-10", "--end", "2024-01-01"]
    assert cli.main(args) == 1


def test_optimize_from_file(fake_engine, tmp_path, capsys):
    config_file = tmp_path / "opt.json"
    config_file.write_text(json.dumps({
        "strategy_id": "always_long",
        "symbols": ["TEST"],
        "start_date": "2024-01-01",
        "end_date": "2024-01-10",
        "commission": 0,
        "slippage": 0,
        "parameters": {"take_profit": [1, 3]},
        "fitness_metric": "returns",
    }))

    assert cli.main(["optimize", "--config", str(config_file)]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["best_parameters"] == {"take_profit": 3}


def test_optimize_missing_file(fake_engine, tmp_path):
    assert cli.main(["optimize", "--config", str(tmp_path / "missing.json")]) == 1


def test_no_command():
    assert cli.main([]) == 1


def test_compare_requires_strategy(fake_engine):
    assert cli.main(["compare", "--strategies", ",", *WINDOW]) == 1


def test_invalid_config_rejected(fake_engine, monkeypatch):
    from config.settings import settings

    monkeypatch.setattr(settings, "GA_MUTATION_RATE", 1.5)

    assert cli.main(["backtest", "--strategy", "always_long", *WINDOW]) == 1


def test_invalid_risk_config_rejected(fake_engine, monkeypatch):
    from config.settings import settings

    monkeypatch.setattr(settings, "DEFAULT_STOP_LOSS", -1.0)

    assert cli.main(["backtest", "--strategy", "always_long", *WINDOW]) == 1


def test_build_engine_skips_missing_signal_db(monkeypatch, tmp_path):
    from config.settings import settings

    db_path = tmp_path / "signals.db"
    monkeypatch.setattr(settings, "SIGNALS_DB_PATH", str(db_path))

    engine = cli.build_engine(seed=1)

    assert engine.resolver.signal_stats is None
    assert not db_path.exists()
