# tests/test_lockout.py
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from blogsite.core.config import settings
from blogsite.db.session import AsyncSessionLocal
from blogsite.models.base import utcnow
from blogsite.models.users import User
from blogsite.services import lockout
from conftest import get_user, login

pytestmark = pytest.mark.anyio

LOCKED_MESSAGE = "Account temporarily locked due to too many failed attempts"


async def _set_lock(username: str, **values) -> None:
    async with AsyncSessionLocal() as session:
        await session.execute(update(User).where(User.username == username).values(**values))
        await session.commit()


async def test_password_checks_stop_after_max_attempts(client: AsyncClient, make_user, monkeypatch):
    """連續錯 5 次後上鎖；第 6 次不再比對密碼，直接 423"""
    user = await make_user()
    calls = []

    def _counting_verify(plain, password_hash):
        calls.append(plain)
        return False

    monkeypatch.setattr("blogsite.api.endpoints.auth.verify_password", _counting_verify)

    for _ in range(settings.MAX_LOGIN_ATTEMPTS):
        r = await login(client, user.username, password="nope")
        assert r.status_code == 401, r.text

    r = await login(client, user.username, password="nope")
    assert r.status_code == 423
    assert r.json()["error"] == LOCKED_MESSAGE
    assert len(calls) == settings.MAX_LOGIN_ATTEMPTS

    stored = await get_user(user.username)
    assert stored.login_attempts == settings.MAX_LOGIN_ATTEMPTS
    assert stored.locked_until is not None
    assert stored.locked_until > utcnow() + timedelta(minutes=settings.LOCKOUT_MINUTES - 1)


async def test_correct_password_rejected_while_locked(client: AsyncClient, make_user):
    user = await make_user(login_attempts=5, locked_until=utcnow() + timedelta(minutes=10))

    r = await login(client, user.username)
    assert r.status_code == 423

    # 鎖定期滿：正確密碼可以登入，並清掉計數
    await _set_lock(user.username, locked_until=utcnow() - timedelta(seconds=1))
    r = await login(client, user.username)
    assert r.status_code == 200, r.text

    stored = await get_user(user.username)
    assert stored.login_attempts == 0
    assert stored.locked_until is None
    assert stored.last_login is not None


async def test_failure_after_expired_lock_relocks_immediately(client: AsyncClient, make_user):
    """期滿後計數器沒有歸零，再錯一次就重新上鎖"""
    user = await make_user(login_attempts=5, locked_until=utcnow() - timedelta(minutes=1))

    r = await login(client, user.username, password="still-wrong")
    assert r.status_code == 401

    stored = await get_user(user.username)
    assert stored.login_attempts == 6
    assert stored.locked_until is not None

    r = await login(client, user.username)
    assert r.status_code == 423


async def test_success_resets_counter(client: AsyncClient, make_user):
    user = await make_user()
    for _ in range(2):
        r = await login(client, user.username, password="wrong")
        assert r.status_code == 401

    assert (await get_user(user.username)).login_attempts == 2

    r = await login(client, user.username)
    assert r.status_code == 200
    assert (await get_user(user.username)).login_attempts == 0


async def test_unknown_user_does_not_touch_counters(client: AsyncClient, make_user):
    user = await make_user()
    r = await login(client, user.username + "-other", password="wrong")
    assert r.status_code == 401
    assert (await get_user(user.username)).login_attempts == 0


def test_is_locked_boundaries():
    now = utcnow()
    user = User(username="x", password_hash="h", role="admin", login_attempts=0)
    assert lockout.is_locked(user, now) is False

    user.locked_until = now + timedelta(seconds=1)
    assert lockout.is_locked(user, now) is True

    # now == locked_until 時已解鎖
    user.locked_until = now
    assert lockout.is_locked(user, now) is False
