"""
Signal Repository - SQLite store of historically recorded strategy signals
"""
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from backtest.domain.interfaces import ISignalStatsRepository
from backtest.domain.models import Direction, SignalStats
from config.settings import settings as config


class SQLiteSignalStatsRepository(ISignalStatsRepository):
    """Recorded signals per strategy; confidence is stored on a 0-100 scale"""

    def __init__(self, db_path: Optional[str] = None, max_connections: Optional[int] = None):
        self.db_path = db_path or config.SIGNALS_DB_PATH
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
        """Initialize database schema"""
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS signals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    strategy TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    created_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_signals_strategy ON signals(strategy);
            """)
            conn.commit()

    def record_signal(self, strategy: str, symbol: str, direction: Direction, confidence: float,
                      created_at: Optional[datetime] = None) -> int:
        """Append one signal, returns its row id"""
        ts = int((created_at or datetime.utcnow()).timestamp())
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT INTO signals (strategy, symbol, direction, confidence, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (strategy, symbol, Direction(direction).value, float(confidence), ts)
            )
            conn.commit()
            return cursor.lastrowid

    def average_confidence_and_count(self, strategy_id: str) -> SignalStats:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*), AVG(confidence) FROM signals WHERE strategy = ?",
                (strategy_id,)
            ).fetchone()

        count, avg_confidence = row
        return SignalStats(count=int(count or 0), avg_confidence=float(avg_confidence or 0.0))

    def list_signals(self, strategy_id: str, limit: int = 100) -> List[Dict]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id, strategy, symbol, direction, confidence, created_at FROM signals "
                "WHERE strategy = ? ORDER BY id DESC LIMIT ?",
                (strategy_id, limit)
            ).fetchall()

        return [
            {
                "id": row[0],
                "strategy": row[1],
                "symbol": row[2],
                "direction": row[3],
                "confidence": row[4],
                "created_at": row[5],
            }
            for row in rows
        ]
