"""
Backtest Summary Repository - Append-only result sink for reporting
"""
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from backtest.domain.interfaces import IResultSink
from backtest.domain.models import ResultSummary
from backtest.errors import PersistenceError
from config.settings import settings as config


class SQLiteResultSink(IResultSink):
    """Repository for flattened backtest / optimization run summaries"""

    def __init__(self, db_path: Optional[str] = None, max_connections: Optional[int] = None):
        self.db_path = db_path or config.BACKTEST_DB_PATH
        self._pool = threading.BoundedSemaphore(max_connections or config.DB_MAX_CONNECTIONS)
        self._init_db()

    def _get_conn(self):
        """Get database connection with WAL mode"""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self._pool:
            conn = self._get_conn()
            try:
                yield conn
            finally:
                conn.close()

    def _init_db(self):
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS backtest_run_summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    strategy_id TEXT NOT NULL,
                    run_date TEXT NOT NULL,
                    run_type TEXT NOT NULL,
                    trade_count INTEGER NOT NULL,
                    success_count INTEGER NOT NULL,
                    total_return_pct REAL,
                    win_rate_pct REAL,
                    fitness_score REAL,
                    patterns_used TEXT,
                    degraded INTEGER DEFAULT 0,
                    created_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_run_summaries_strategy
                    ON backtest_run_summaries(strategy_id, run_date);
            """)
            conn.commit()

    def append(self, summary: ResultSummary) -> None:
        """
        Append one run summary

        Raises:
            PersistenceError: database unavailable or write failed
        """
        try:
            with self._connection() as conn:
                conn.execute("""
                    INSERT INTO backtest_run_summaries (
                        strategy_id, run_date, run_type, trade_count, success_count,
                        total_return_pct, win_rate_pct, fitness_score, patterns_used,
                        degraded, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    summary.strategy_id,
                    summary.run_date.isoformat(),
                    summary.run_type,
                    summary.trade_count,
                    summary.success_count,
                    summary.total_return_pct,
                    summary.win_rate_pct,
                    summary.fitness_score,
                    json.dumps(list(summary.patterns_used)),
                    int(summary.degraded),
                    int(datetime.utcnow().timestamp())
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to append summary for {summary.strategy_id}: {e}", e)

    def list_summaries(self, strategy_id: Optional[str] = None, limit: int = 50) -> List[Dict]:
        """Most recent summaries first"""
        sql = (
            "SELECT id, strategy_id, run_date, run_type, trade_count, success_count, "
            "total_return_pct, win_rate_pct, fitness_score, patterns_used, degraded, created_at "
            "FROM backtest_run_summaries"
        )
        params: list = []
        if strategy_id:
            sql += " WHERE strategy_id = ?"
            params.append(strategy_id)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            {
                "id": row[0],
                "strategy_id": row[1],
                "date": row[2],
                "run_type": row[3],
                "trade_count": row[4],
                "success_count": row[5],
                "total_return_pct": row[6],
                "win_rate_pct": row[7],
                "fitness_score": row[8],
                "patterns_used": json.loads(row[9]) if row[9] else [],
                "degraded": bool(row[10]),
                "created_at": row[11],
            }
            for row in rows
        ]
