# blogsite/services/bootstrap.py
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogsite.core.security import hash_password
from blogsite.models.users import User

logger = logging.getLogger(__name__)


async def ensure_admin_user(db: AsyncSession, username: str, password: str, role: str = "admin") -> bool:
    """
    建立管理員帳號（已存在就不動它）。
    回傳 True 表示這次有新建。
    """
    if not password or not password.strip():
        raise ValueError("Admin password cannot be empty")

    result = await db.execute(select(User).where(User.username == username))
    if result.scalar_one_or_none() is not None:
        logger.info("Admin user %s already exists, left unchanged", username)
        return False

    db.add(User(username=username, password_hash=hash_password(password), role=role))
    await db.commit()
    logger.info("Admin user %s created", username)
    return True
