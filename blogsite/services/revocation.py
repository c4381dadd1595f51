# blogsite/services/revocation.py
"""
Token 撤銷清單（logout 後的 token 在自然過期前都必須被拒絕）。

- InMemoryRevocationStore：單一 process 內的 dict，重啟即消失，也不跨 instance 共享
  → 只適用單機部署（水平擴充時 A 機撤銷的 token 在 B 機仍有效）。
- RedisRevocationStore：多 instance 共用，TTL = token 剩餘壽命。

InMemory 的容量 / 淘汰策略可替換：
- WholesaleClear（預設）：超過容量就整個清空。這是已知會遺失撤銷紀錄的策略，
  被清掉、但 token 自身 exp 還沒到的舊 token 會再次通過驗證。
- DropExpired：只移除 exp 已過的紀錄，仍超量時從最舊的開始丟。
"""
from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# Eviction strategies
# ============================================================

class EvictionStrategy(ABC):
    @abstractmethod
    def evict(self, entries: Dict[str, datetime], capacity: int, now: datetime) -> int:
        """就地整理 entries，回傳移除筆數。"""


class WholesaleClear(EvictionStrategy):
    def evict(self, entries: Dict[str, datetime], capacity: int, now: datetime) -> int:
        if len(entries) <= capacity:
            return 0
        removed = len(entries)
        entries.clear()
        logger.warning("Revocation registry exceeded %d entries, cleared %d revocations", capacity, removed)
        return removed


class DropExpired(EvictionStrategy):
    def evict(self, entries: Dict[str, datetime], capacity: int, now: datetime) -> int:
        expired = [token for token, exp in entries.items() if exp <= now]
        for token in expired:
            del entries[token]

        overflow = len(entries) - capacity
        if overflow > 0:
            # dict 保留插入順序：最舊的在前面
            for token in list(entries)[:overflow]:
                del entries[token]
            logger.warning("Revocation registry over capacity, dropped %d oldest revocations", overflow)
            return len(expired) + overflow
        return len(expired)


EVICTION_STRATEGIES = {
    "clear": WholesaleClear,
    "expired": DropExpired,
}


# ============================================================
# Store interface
# ============================================================

class RevocationStore(ABC):
    """
    撤銷清單介面。

    Implementations:
    - InMemoryRevocationStore: 單機部署
    - RedisRevocationStore: 多 instance
    """

    @abstractmethod
    async def revoke(self, token: str, expires_at: datetime) -> None:
        """加入撤銷清單；重複撤銷同一個 token 不會出錯。"""

    @abstractmethod
    async def is_revoked(self, token: str) -> bool:
        pass

    @abstractmethod
    async def sweep(self, now: Optional[datetime] = None) -> int:
        """排程用：套用淘汰策略，回傳移除筆數。"""

    @abstractmethod
    async def size(self) -> int:
        pass


class InMemoryRevocationStore(RevocationStore):
    def __init__(self, capacity: int = 1000, eviction: Optional[EvictionStrategy] = None):
        self.capacity = capacity
        self.eviction = eviction or WholesaleClear()
        self._entries: Dict[str, datetime] = {}

    async def revoke(self, token: str, expires_at: datetime) -> None:
        self._entries[token] = expires_at
        self.eviction.evict(self._entries, self.capacity, _now_utc())

    async def is_revoked(self, token: str) -> bool:
        return token in self._entries

    async def sweep(self, now: Optional[datetime] = None) -> int:
        return self.eviction.evict(self._entries, self.capacity, now or _now_utc())

    async def size(self) -> int:
        return len(self._entries)


class RedisRevocationStore(RevocationStore):
    def __init__(self, redis: Redis, prefix: str = "revoked:"):
        self._redis = redis
        self._prefix = prefix

    def _key(self, token: str) -> str:
        # 不把原始 token 當 key 存進 Redis
        return self._prefix + hashlib.sha256(token.encode("utf-8")).hexdigest()

    async def revoke(self, token: str, expires_at: datetime) -> None:
        ttl = int((expires_at - _now_utc()).total_seconds())
        if ttl <= 0:
            # 已經自然過期，驗證時本來就會被拒
            return
        await self._redis.set(self._key(token), "1", ex=ttl)

    async def is_revoked(self, token: str) -> bool:
        return bool(await self._redis.exists(self._key(token)))

    async def sweep(self, now: Optional[datetime] = None) -> int:
        # TTL 由 Redis 自行處理
        return 0

    async def size(self) -> int:
        count = 0
        async for _ in self._redis.scan_iter(match=self._prefix + "*"):
            count += 1
        return count


def build_revocation_store(settings) -> RevocationStore:
    backend = (settings.REVOCATION_BACKEND or "memory").lower()
    if backend == "redis":
        redis = Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        logger.info("Revocation registry backend: redis")
        return RedisRevocationStore(redis)
    if backend != "memory":
        raise RuntimeError(f"Unknown REVOCATION_BACKEND={settings.REVOCATION_BACKEND!r}")

    strategy_cls = EVICTION_STRATEGIES.get((settings.REVOCATION_EVICTION or "clear").lower())
    if strategy_cls is None:
        raise RuntimeError(f"Unknown REVOCATION_EVICTION={settings.REVOCATION_EVICTION!r}")
    logger.info(
        "Revocation registry backend: memory (capacity=%d, eviction=%s, single-instance only)",
        settings.REVOCATION_CAPACITY, strategy_cls.__name__,
    )
    return InMemoryRevocationStore(capacity=settings.REVOCATION_CAPACITY, eviction=strategy_cls())
