# blogsite/services/rate_limit.py
from __future__ import annotations

import time
from typing import Optional, Tuple

from redis.asyncio import Redis

from blogsite.core.config import settings

# 單例 Redis（lazy-init）
_redis: Optional[Redis] = None


def _enabled() -> bool:
    # 每次呼叫時讀 settings，測試可用 monkeypatch 切換
    return bool(settings.RATE_LIMIT_ENABLED)


def get_redis() -> Redis:
    """Lazy 初始化 Redis 連線（redis.asyncio）。"""
    if not _enabled():
        # 停用時理論上不應呼叫；若被誤用，明確拋錯幫助定位
        raise RuntimeError("Rate limit is disabled in current environment")
    global _redis
    if _redis is None:
        _redis = Redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,  # 用字串便於除錯
        )
    return _redis


def _key_ip(ip: str) -> str:
    return f"rl:login:ip:{ip or 'unknown'}"


def _key_user_ip(username: str, ip: str) -> str:
    return f"rl:login:ui:{(username or '').lower()}|{ip or 'unknown'}"


async def _prune(redis: Redis, key: str, now_s: float) -> None:
    """移除滑動視窗外的紀錄（score < now - WINDOW）。"""
    await redis.zremrangebyscore(key, "-inf", now_s - settings.RATE_LIMIT_WINDOW_SEC)


async def _count(redis: Redis, key: str) -> int:
    return int(await redis.zcard(key))


async def _oldest_ts(redis: Redis, key: str) -> Optional[float]:
    """取得窗口內最舊嘗試的時間戳（若無則 None）。"""
    data = await redis.zrange(key, 0, 0, withscores=True)
    if data:
        # 形式 [(member, score)]，score 為 epoch 秒
        return float(data[0][1])
    return None


async def _hit(redis: Redis, key: str, now_s: float) -> None:
    """記錄一次嘗試（ZSET，score=now），並讓 key 隨視窗自然過期。"""
    member = f"{now_s:.6f}"
    await redis.zadd(key, {member: now_s})
    await redis.expire(key, settings.RATE_LIMIT_WINDOW_SEC)


def _retry_after(now_s: float, oldest: Optional[float]) -> int:
    return max(1, int(settings.RATE_LIMIT_WINDOW_SEC - (now_s - (oldest or now_s))))


async def check_limit_and_hit(ip: str, username: Optional[str]) -> Tuple[bool, int]:
    """
    檢查是否超出限流；若允許，會「順便記一次嘗試」。
    回傳：(allowed, retry_after_seconds)
      先看 IP 維度，再看 username+IP 維度。
    """
    if not _enabled():
        return True, 0

    r = get_redis()
    now_s = time.time()

    # ---- IP 維度 ----
    kip = _key_ip(ip)
    await _prune(r, kip, now_s)
    if await _count(r, kip) >= settings.RATE_LIMIT_MAX_PER_IP:
        return False, _retry_after(now_s, await _oldest_ts(r, kip))

    # ---- username+IP 維度 ----
    if username:
        kui = _key_user_ip(username, ip)
        await _prune(r, kui, now_s)
        if await _count(r, kui) >= settings.RATE_LIMIT_MAX_PER_USER_IP:
            return False, _retry_after(now_s, await _oldest_ts(r, kui))

    await _hit(r, kip, now_s)
    if username:
        await _hit(r, _key_user_ip(username, ip), now_s)

    return True, 0


async def reset_success(ip: str, username: Optional[str]) -> None:
    """
    登入成功後清空 username+IP 的桶，降低誤鎖風險。
    IP 維度不清空，保留反掃號的保護力。
    """
    if not username or not _enabled():
        return
    await get_redis().delete(_key_user_ip(username, ip))
