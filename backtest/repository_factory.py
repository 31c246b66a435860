"""
Repository Factory - 根据配置创建结果存储和信号统计仓库
"""
import os
from typing import Optional

from backtest.repository import SQLiteSignalStatsRepository
from backtest.summary_repository import SQLiteResultSink
from config.settings import settings as config


def get_result_sink(db_path: Optional[str] = None) -> Optional[SQLiteResultSink]:
    """
    获取 Result Sink 实例

    PERSIST_RESULTS=false 时返回 None（不持久化）
    """
    if not config.PERSIST_RESULTS:
        return None
    return SQLiteResultSink(db_path)


def get_signal_stats_repository(db_path: Optional[str] = None,
                                create: bool = True) -> Optional[SQLiteSignalStatsRepository]:
    """
    获取历史信号统计仓库

    create=False 且数据库文件不存在时返回 None
    """
    db_path = db_path or config.SIGNALS_DB_PATH
    if not create and not os.path.exists(db_path):
        return None
    return SQLiteSignalStatsRepository(db_path)
