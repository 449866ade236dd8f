"""
Counter Store：计数器 / 基数估计 / 时间窗有序集合，键级 TTL。

所有写入都经由 `store.batch()` 返回的 CounterBatch 累积，`execute()` 一次提交：
  - RedisCounterStore    : MULTI/EXEC pipeline（transaction=True），读者不会看到半截更新
  - InMemoryCounterStore : 一把 RLock 下整批应用，可见性语义与 Redis 相同；
                           unique 集合用精确 set 代替 HyperLogLog（小规模下两者一致）

CounterBatch 也承载读操作，用于 get_metrics 的单次往返读取。
"""

from __future__ import annotations

import fnmatch
import threading
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Set, Tuple, Union

import redis

from src.core.errors import StoreUnavailableError
from src.log import get_logger
from src.observability import metrics

logger = get_logger(__name__)

Score = Union[int, float, str]  # 也可为 "-inf" / "+inf" / "(x"


class CounterBatch(Protocol):
    def incr(self, key: str, amount: int = 1) -> "CounterBatch": ...
    def pfadd(self, key: str, *members: str) -> "CounterBatch": ...
    def zadd(self, key: str, member: str, score: float) -> "CounterBatch": ...
    def zremrangebyscore(self, key: str, min_score: Score, max_score: Score) -> "CounterBatch": ...
    def expire(self, key: str, seconds: int) -> "CounterBatch": ...
    def get(self, key: str) -> "CounterBatch": ...
    def pfcount(self, key: str) -> "CounterBatch": ...
    def zcount(self, key: str, min_score: Score, max_score: Score) -> "CounterBatch": ...
    def __len__(self) -> int: ...
    def execute(self) -> List[Any]: ...


class CounterStore(Protocol):
    def batch(self) -> CounterBatch: ...
    def scan_keys(self, pattern: str, count: int = 100) -> Iterator[str]: ...
    def ping(self) -> bool: ...


# ============================================================
# Redis
# ============================================================

class RedisCounterBatch:
    def __init__(self, client: "redis.Redis"):
        self._pipe = client.pipeline(transaction=True)
        self._size = 0

    def _add(self) -> "RedisCounterBatch":
        self._size += 1
        return self

    def incr(self, key: str, amount: int = 1):
        self._pipe.incrby(key, amount)
        return self._add()

    def pfadd(self, key: str, *members: str):
        self._pipe.pfadd(key, *members)
        return self._add()

    def zadd(self, key: str, member: str, score: float):
        self._pipe.zadd(key, {member: score})
        return self._add()

    def zremrangebyscore(self, key: str, min_score: Score, max_score: Score):
        self._pipe.zremrangebyscore(key, min_score, max_score)
        return self._add()

    def expire(self, key: str, seconds: int):
        self._pipe.expire(key, seconds)
        return self._add()

    def get(self, key: str):
        self._pipe.get(key)
        return self._add()

    def pfcount(self, key: str):
        self._pipe.pfcount(key)
        return self._add()

    def zcount(self, key: str, min_score: Score, max_score: Score):
        self._pipe.zcount(key, min_score, max_score)
        return self._add()

    def __len__(self) -> int:
        return self._size

    def execute(self) -> List[Any]:
        try:
            return self._pipe.execute()
        except redis.RedisError as e:
            metrics.store_errors_total.labels(store="counter", operation="execute").inc()
            raise StoreUnavailableError("counter", str(e), cause=e) from e
        finally:
            self._pipe.reset()


class RedisCounterStore:
    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisCounterStore":
        return cls(redis.from_url(url, decode_responses=True, socket_timeout=socket_timeout))

    def batch(self) -> RedisCounterBatch:
        return RedisCounterBatch(self.client)

    def scan_keys(self, pattern: str, count: int = 100) -> Iterator[str]:
        try:
            for key in self.client.scan_iter(match=pattern, count=count):
                yield key
        except redis.RedisError as e:
            metrics.store_errors_total.labels(store="counter", operation="scan").inc()
            raise StoreUnavailableError("counter", str(e), cause=e) from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning("redis ping failed: %s", e)
            return False

    def close(self) -> None:
        self.client.close()


# ============================================================
# In-memory
# ============================================================

def _bound(value: Score) -> Tuple[float, bool]:
    """redis 分数区间写法：数字、"-inf"/"+inf"，或 "(x" 表示开区间。"""
    if isinstance(value, str) and value.startswith("("):
        return float(value[1:]), True
    return float(value), False


def _in_range(score: float, lo: Tuple[float, bool], hi: Tuple[float, bool]) -> bool:
    above = score > lo[0] if lo[1] else score >= lo[0]
    below = score < hi[0] if hi[1] else score <= hi[0]
    return above and below


class InMemoryCounterBatch:
    def __init__(self, store: "InMemoryCounterStore"):
        self._store = store
        self._ops: List[Tuple[str, tuple]] = []

    def _add(self, op: str, *args: Any) -> "InMemoryCounterBatch":
        self._ops.append((op, args))
        return self

    def incr(self, key: str, amount: int = 1):
        return self._add("incr", key, amount)

    def pfadd(self, key: str, *members: str):
        return self._add("pfadd", key, members)

    def zadd(self, key: str, member: str, score: float):
        return self._add("zadd", key, member, score)

    def zremrangebyscore(self, key: str, min_score: Score, max_score: Score):
        return self._add("zremrangebyscore", key, min_score, max_score)

    def expire(self, key: str, seconds: int):
        return self._add("expire", key, seconds)

    def get(self, key: str):
        return self._add("get", key)

    def pfcount(self, key: str):
        return self._add("pfcount", key)

    def zcount(self, key: str, min_score: Score, max_score: Score):
        return self._add("zcount", key, min_score, max_score)

    def __len__(self) -> int:
        return len(self._ops)

    def execute(self) -> List[Any]:
        ops, self._ops = self._ops, []
        return self._store._apply(ops)


class InMemoryCounterStore:
    """
    进程内实现，供测试与单机开发使用。
    值语义与 redis 的 decode_responses=True 一致：get 返回 str 或 None。
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._counters: Dict[str, int] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        self._expires: Dict[str, float] = {}

    def batch(self) -> InMemoryCounterBatch:
        return InMemoryCounterBatch(self)

    def ping(self) -> bool:
        return True

    def _purge(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= self._clock():
            self._drop(key)

    def _drop(self, key: str) -> None:
        self._counters.pop(key, None)
        self._sets.pop(key, None)
        self._zsets.pop(key, None)
        self._expires.pop(key, None)

    def _exists(self, key: str) -> bool:
        return key in self._counters or key in self._sets or key in self._zsets

    def _apply(self, ops: List[Tuple[str, tuple]]) -> List[Any]:
        results: List[Any] = []
        with self._lock:
            for op, args in ops:
                key = args[0]
                self._purge(key)
                results.append(getattr(self, f"_op_{op}")(*args))
        return results

    def _op_incr(self, key: str, amount: int) -> int:
        value = self._counters.get(key, 0) + int(amount)
        self._counters[key] = value
        return value

    def _op_pfadd(self, key: str, members: tuple) -> int:
        bucket = self._sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(str(m) for m in members)
        return 1 if len(bucket) != before else 0

    def _op_zadd(self, key: str, member: str, score: float) -> int:
        zset = self._zsets.setdefault(key, {})
        added = 0 if member in zset else 1
        zset[member] = float(score)
        return added

    def _op_zremrangebyscore(self, key: str, min_score: Score, max_score: Score) -> int:
        zset = self._zsets.get(key)
        if not zset:
            return 0
        lo, hi = _bound(min_score), _bound(max_score)
        doomed = [m for m, s in zset.items() if _in_range(s, lo, hi)]
        for m in doomed:
            del zset[m]
        if not zset:
            self._drop(key)
        return len(doomed)

    def _op_expire(self, key: str, seconds: int) -> int:
        if not self._exists(key):
            return 0
        self._expires[key] = self._clock() + int(seconds)
        return 1

    def _op_get(self, key: str) -> Optional[str]:
        value = self._counters.get(key)
        return None if value is None else str(value)

    def _op_pfcount(self, key: str) -> int:
        return len(self._sets.get(key, ()))

    def _op_zcount(self, key: str, min_score: Score, max_score: Score) -> int:
        lo, hi = _bound(min_score), _bound(max_score)
        return sum(1 for s in self._zsets.get(key, {}).values() if _in_range(s, lo, hi))

    def scan_keys(self, pattern: str, count: int = 100) -> Iterator[str]:
        with self._lock:
            keys = list(self._counters) + list(self._sets) + list(self._zsets)
            for key in keys:
                self._purge(key)
            live = [k for k in dict.fromkeys(keys) if self._exists(k)]
        for key in live:
            if fnmatch.fnmatchcase(key, pattern):
                yield key

    def ttl(self, key: str) -> int:
        """-2 不存在，-1 无过期，否则剩余秒数（与 redis TTL 一致）。"""
        with self._lock:
            self._purge(key)
            if not self._exists(key):
                return -2
            deadline = self._expires.get(key)
            if deadline is None:
                return -1
            return max(0, int(deadline - self._clock()))
