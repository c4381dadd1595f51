# blogsite/db/session.py
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from blogsite.core.config import settings

# ---- Engine ----
DATABASE_URL = settings.DATABASE_URL
echo_flag = str(getattr(settings, "DB_ECHO", "false")).lower() in {"1", "true", "yes"}

_url = make_url(DATABASE_URL)
_engine_kwargs = {"echo": echo_flag, "future": True}

if _url.get_backend_name() == "sqlite":
    # SQLite 檔案所在目錄不存在時先建立；連線不進池，避免跨 event loop 重用
    if _url.database and _url.database != ":memory:":
        Path(_url.database).parent.mkdir(parents=True, exist_ok=True)
    _engine_kwargs["poolclass"] = NullPool
else:
    # pool_pre_ping 讓連線池自我檢查
    _engine_kwargs["pool_pre_ping"] = True

engine = create_async_engine(DATABASE_URL, **_engine_kwargs)

# ---- Session factory ----
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ---- Dependency ----
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI 依賴：產生一個 AsyncSession，並在完成後總是關閉。
    """
    session: AsyncSession = AsyncSessionLocal()
    try:
        yield session
    finally:
        await session.close()
