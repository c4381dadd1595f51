# tests/test_admin_client.py
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport

from blogsite.client.admin_client import AdminClient, LoginFailed, NotAuthenticated
from blogsite.client.session_mirror import MemorySessionStorage, SessionMirror
from blogsite.core.security import create_access_token
from blogsite.main import app
from conftest import DEFAULT_PASSWORD

pytestmark = pytest.mark.anyio


@pytest.fixture
def delays(monkeypatch):
    """把 1–3 秒的失敗延遲換成只記錄次數"""
    calls = []

    async def _no_wait(*args, **kwargs):
        calls.append(args)

    monkeypatch.setattr("blogsite.client.admin_client.secure_delay", _no_wait)
    return calls


@pytest.fixture
async def admin_client(anyio_backend):
    mirror = SessionMirror(storage=MemorySessionStorage(), fingerprint=lambda: "test-fp")
    async with AdminClient("http://testserver", mirror=mirror, transport=ASGITransport(app=app)) as c:
        yield c


async def test_login_verify_logout(admin_client: AdminClient, make_user, fresh_revocation_store, delays):
    user = await make_user()

    session = await admin_client.login(user.username, DEFAULT_PASSWORD, "captcha-ok")
    assert session.username == user.username
    assert session.role == "admin"
    assert admin_client.mirror.current() == session

    data = await admin_client.verify()
    assert data["valid"] is True
    assert data["user"]["id"] == user.id

    result = await admin_client.logout()
    assert result["message"] == "Logout successful"
    assert admin_client.mirror.load() is None
    assert await fresh_revocation_store.is_revoked(session.token)
    assert delays == []


async def test_failed_login_waits_and_keeps_no_session(admin_client: AdminClient, make_user, delays):
    user = await make_user()

    with pytest.raises(LoginFailed) as exc:
        await admin_client.login(user.username, "wrong", "captcha-ok")

    assert exc.value.status_code == 401
    assert str(exc.value) == "Invalid credentials"
    assert len(delays) == 1
    assert admin_client.mirror.load() is None


async def test_client_side_validation_skips_request(admin_client: AdminClient, delays):
    with pytest.raises(LoginFailed) as exc:
        await admin_client.login("admin", "pw", "")
    assert exc.value.status_code is None
    assert "captcha" in str(exc.value)

    with pytest.raises(LoginFailed):
        await admin_client.login("", "pw", "captcha-ok")
    assert len(delays) == 2


async def test_server_revocation_clears_mirror(admin_client: AdminClient, make_user, fresh_revocation_store):
    user = await make_user()
    session = await admin_client.login(user.username, DEFAULT_PASSWORD, "captcha-ok")

    await fresh_revocation_store.revoke(session.token, datetime.now(timezone.utc) + timedelta(minutes=30))

    with pytest.raises(NotAuthenticated) as exc:
        await admin_client.verify()
    assert exc.value.status_code == 403
    assert admin_client.mirror.load() is None


async def test_check_existing_session(admin_client: AdminClient, make_user, fresh_revocation_store):
    assert await admin_client.check_existing_session() is None

    user = await make_user()
    session = await admin_client.login(user.username, DEFAULT_PASSWORD, "captcha-ok")
    assert await admin_client.check_existing_session() == session

    await fresh_revocation_store.revoke(session.token, datetime.now(timezone.utc) + timedelta(minutes=30))
    assert await admin_client.check_existing_session() is None
    assert admin_client.mirror.load() is None


async def test_extended_mirror_still_rejected_when_token_expired(admin_client: AdminClient, make_user):
    """client 端延長了，但伺服器的 token 已經過期 → 以伺服器為準"""
    user = await make_user()
    stale = create_access_token(
        user, "127.0.0.1", "ua", now=datetime.now(timezone.utc) - timedelta(minutes=31)
    )
    admin_client.mirror.store(stale, user.username, user.role)
    assert admin_client.touch("mousedown") is not None

    with pytest.raises(NotAuthenticated):
        await admin_client.verify()
    assert admin_client.mirror.load() is None


async def test_insufficient_role_keeps_session(admin_client: AdminClient, make_user):
    editor = await make_user(role="editor")
    await admin_client.login(editor.username, DEFAULT_PASSWORD, "captcha-ok")

    r = await admin_client.request("GET", "/api/admin/audit-logs")
    assert r.status_code == 403
    assert r.json()["required"] == "admin"
    # 角色不足不是 token 失效，鏡像保留
    assert admin_client.mirror.current() is not None


async def test_request_without_session(admin_client: AdminClient):
    with pytest.raises(NotAuthenticated):
        await admin_client.verify()
    # 沒有 session 的登出是 no-op
    assert await admin_client.logout() is None


async def test_touch_restarts_timers(admin_client: AdminClient, make_user):
    user = await make_user()
    await admin_client.login(user.username, DEFAULT_PASSWORD, "captcha-ok")

    timer = admin_client.start_timers(lambda: None, lambda: None)
    first_handles = list(timer._handles)
    assert admin_client.touch("scroll") is not None
    assert timer._handles != first_handles
    assert all(h.cancelled() for h in first_handles)

    await admin_client.logout()
    assert admin_client.timer is None
    assert not timer.running
