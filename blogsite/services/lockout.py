# blogsite/services/lockout.py
"""
帳號鎖定（每個使用者一台小狀態機，完全由 login 端點驅動）：

  Unlocked --(失敗次數達 MAX_LOGIN_ATTEMPTS)--> Locked（locked_until = now + LOCKOUT_MINUTES）
  Locked   --(下一次登入時 now >= locked_until)--> 照常比對密碼（沒有主動解鎖的排程）
  *        --(密碼正確)--> 計數歸零、locked_until 清空

注意：
- 計數器是「讀出 → +1 → 寫回」，沒有包在 transaction 裡；同一帳號的並行失敗請求可能少算。
- 鎖定期滿後計數器並不歸零，所以解鎖後再錯一次就會立刻重新上鎖。
- 鎖定時直接回 423，不做密碼比對，也沒有刻意補上等長延遲。
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from blogsite.core.config import settings
from blogsite.models.base import utcnow
from blogsite.models.users import User

logger = logging.getLogger(__name__)


def is_locked(user: User, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return user.locked_until is not None and now < user.locked_until


async def register_failure(db: AsyncSession, user: User, now: Optional[datetime] = None) -> bool:
    """記一次失敗；回傳這次是否觸發鎖定。"""
    now = now or utcnow()
    attempts = (user.login_attempts or 0) + 1
    should_lock = attempts >= settings.MAX_LOGIN_ATTEMPTS

    user.login_attempts = attempts
    user.locked_until = now + timedelta(minutes=settings.LOCKOUT_MINUTES) if should_lock else None
    await db.commit()

    if should_lock:
        logger.warning(
            "Account %s locked until %s after %d failed attempts",
            user.username, user.locked_until.isoformat(), attempts,
        )
    return should_lock


async def register_success(db: AsyncSession, user: User, now: Optional[datetime] = None) -> None:
    user.login_attempts = 0
    user.locked_until = None
    user.last_login = now or utcnow()
    await db.commit()
