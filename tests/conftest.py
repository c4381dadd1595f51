# tests/conftest.py
import asyncio
import os
from typing import Optional
from uuid import uuid4

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

# ---- 測試期環境變數（先於 app 載入）----
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")
os.environ.setdefault("ENV", "test")

from blogsite.main import app  # noqa: E402
from blogsite.db.session import engine, AsyncSessionLocal  # noqa: E402
from blogsite.core.security import hash_password  # noqa: E402
from blogsite.models.base import Base  # noqa: E402
from blogsite.models.users import User  # noqa: E402
# 匯入 audit_logs 模型，讓 metadata 建得到這張表
import blogsite.models.audit_log  # noqa: E402,F401
from blogsite.services.revocation import InMemoryRevocationStore  # noqa: E402

DEFAULT_PASSWORD = "CorrectHorse!42"


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    """測試前重建資料表，測試後 drop_all（用 asyncio.run 避免事件圈衝突）。"""
    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

    async def drop_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    asyncio.run(init_models())
    yield
    asyncio.run(drop_models())


@pytest.fixture(autouse=True)
def fresh_revocation_store():
    """每個測試一份新的撤銷清單，避免互相影響。"""
    original = app.state.revocation_store
    app.state.revocation_store = InMemoryRevocationStore()
    yield app.state.revocation_store
    app.state.revocation_store = original


@pytest.fixture(scope="session")
def anyio_backend():
    """讓 pytest 使用 asyncio event loop。"""
    return "asyncio"


@pytest.fixture
async def client(anyio_backend):
    """使用 ASGITransport 直接掛載 app，不需啟動伺服器。"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def make_user():
    """建立測試帳號；username 預設隨機，避免測試順序相依。"""
    async def _make(
        username: Optional[str] = None,
        password: str = DEFAULT_PASSWORD,
        role: str = "admin",
        **fields,
    ) -> User:
        async with AsyncSessionLocal() as session:
            user = User(
                username=username or f"user_{uuid4().hex[:8]}",
                password_hash=hash_password(password),
                role=role,
                **fields,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make


async def login(client: AsyncClient, username: str, password: str = DEFAULT_PASSWORD, captcha: Optional[str] = "test-captcha"):
    body = {"username": username, "password": password}
    if captcha is not None:
        body["h-captcha-response"] = captcha
    return await client.post("/api/auth/login", json=body)


async def get_user(username: str) -> User:
    async with AsyncSessionLocal() as session:
        return (await session.execute(select(User).where(User.username == username))).scalar_one()
