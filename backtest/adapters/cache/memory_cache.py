"""
内存缓存 - 缓存已加载的K线序列，保证同一次优化中的所有候选回放相同数据
"""
import sys
import threading
import time
from typing import Optional, Any, Dict, Tuple


def estimate_size(value: Any) -> int:
    """粗略估算占用字节数（容器按元素及其字段累加）"""
    size = sys.getsizeof(value)
    if isinstance(value, (str, bytes)) or not hasattr(value, "__len__"):
        return size

    for item in value:
        size += sys.getsizeof(item)
        fields = getattr(item, "__dict__", None)
        if fields:
            size += sys.getsizeof(fields) + sum(sys.getsizeof(v) for v in fields.values())
    return size


class MemoryCache:
    """内存TTL缓存（线程安全）"""

    def __init__(self, max_size_mb: float = 100, default_ttl: Optional[int] = None):
        self.max_size_mb = max_size_mb
        self.default_ttl = default_ttl
        # key -> (value, expire_at, size)
        self._cache: Dict[str, Tuple[Any, Optional[float], int]] = {}
        self._size_bytes = 0
        self._lock = threading.RLock()

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    def get(self, key: str) -> Optional[Any]:
        """获取缓存"""
        with self._lock:
            if key not in self._cache:
                return None

            value, expire_at, _ = self._cache[key]

            # 检查是否过期
            if expire_at and time.monotonic() > expire_at:
                self.delete(key)
                return None

            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """设置缓存"""
        ttl = ttl if ttl is not None else self.default_ttl
        expire_at = time.monotonic() + ttl if ttl else None
        value_size = estimate_size(value)

        with self._lock:
            if key in self._cache:
                self.delete(key)
            self._purge_expired()

            # 超出上限时从最旧的开始清理
            while self._cache and self._size_bytes + value_size > self.max_size_mb * 1024 * 1024:
                self._evict_oldest()

            self._cache[key] = (value, expire_at, value_size)
            self._size_bytes += value_size

    def delete(self, key: str) -> None:
        """删除缓存"""
        with self._lock:
            if key in self._cache:
                _, _, value_size = self._cache.pop(key)
                self._size_bytes -= value_size

    def __len__(self) -> int:
        return len(self._cache)

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [k for k, (_, expire_at, _) in self._cache.items() if expire_at and now > expire_at]
        for key in expired:
            self.delete(key)

    def _evict_oldest(self) -> None:
        """清理最旧的缓存项"""
        if not self._cache:
            return

        # 字典保持插入顺序，第一个键即最旧
        key = next(iter(self._cache))
        self.delete(key)
