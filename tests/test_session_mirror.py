# tests/test_session_mirror.py
import asyncio
import base64
import time
from pathlib import Path

import pytest

from blogsite.client.fingerprint import collect_traits, compute_fingerprint, current_fingerprint
from blogsite.client.session_mirror import (
    FINGERPRINT_KEY,
    SESSION_KEY,
    FileSessionStorage,
    MemorySessionStorage,
    SessionMirror,
    SessionState,
    SessionTimer,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _mirror(clock=None, storage=None, fingerprint="fp-1") -> SessionMirror:
    return SessionMirror(
        storage=storage or MemorySessionStorage(),
        fingerprint=lambda: fingerprint,
        clock=clock or FakeClock(),
    )


def test_store_and_load():
    clock = FakeClock()
    mirror = _mirror(clock)
    session = mirror.store("tok", "admin", "admin")

    assert session.expires_at == clock.now + 30 * 60
    assert len(session.csrf_token) == 64
    int(session.csrf_token, 16)

    loaded = mirror.load()
    assert loaded == session
    # storage 內是 base64 JSON，不是明文
    raw = mirror.storage.get(SESSION_KEY)
    assert b'"token":"tok"' in base64.b64decode(raw)
    assert mirror.storage.get(FINGERPRINT_KEY) == "fp-1"


def test_csrf_token_differs_per_login():
    mirror = _mirror()
    assert mirror.store("a", "u", "admin").csrf_token != mirror.store("b", "u", "admin").csrf_token


def test_fingerprint_mismatch_discards_session():
    storage = MemorySessionStorage()
    _mirror(storage=storage, fingerprint="fp-1").store("tok", "admin", "admin")

    other = _mirror(storage=storage, fingerprint="fp-2")
    assert other.load() is None
    assert storage.get(SESSION_KEY) is None
    assert storage.get(FINGERPRINT_KEY) is None


def test_corrupt_session_is_discarded():
    mirror = _mirror()
    mirror.storage.set(SESSION_KEY, "not-base64-json!!")
    mirror.storage.set(FINGERPRINT_KEY, "fp-1")

    assert mirror.load() is None
    assert mirror.storage.get(SESSION_KEY) is None


def test_state_transitions():
    clock = FakeClock()
    mirror = _mirror(clock)
    assert mirror.state() is SessionState.NONE

    mirror.store("tok", "admin", "admin")
    assert mirror.state() is SessionState.ACTIVE

    clock.advance(25 * 60 - 1)
    assert mirror.state() is SessionState.ACTIVE
    clock.advance(1)
    assert mirror.state() is SessionState.WARNING

    clock.advance(5 * 60)
    # 剛好到期那一刻仍有效
    assert mirror.current() is not None
    clock.advance(1)
    assert mirror.state() is SessionState.EXPIRED
    assert mirror.current() is None


def test_activity_extends_client_expiry_only():
    clock = FakeClock()
    mirror = _mirror(clock)
    original = mirror.store("tok", "admin", "admin")

    clock.advance(20 * 60)
    extended = mirror.extend("mousemove")
    assert extended is not None
    assert extended.expires_at == clock.now + 30 * 60
    # token 沒變：伺服器端的壽命不會跟著延長
    assert extended.token == original.token
    assert mirror.load().expires_at == extended.expires_at


def test_non_activity_events_and_expired_sessions_are_ignored():
    clock = FakeClock()
    mirror = _mirror(clock)
    mirror.store("tok", "admin", "admin")
    before = mirror.load().expires_at

    assert mirror.extend("resize") is None
    assert mirror.load().expires_at == before

    clock.advance(31 * 60)
    assert mirror.extend("keypress") is None


def test_file_storage_round_trip(tmp_path):
    path = tmp_path / "state" / "session.json"
    mirror = _mirror(storage=FileSessionStorage(path))
    session = mirror.store("tok", "admin", "admin")

    assert path.exists()
    assert (path.stat().st_mode & 0o777) == 0o600

    # 另一個 process 讀同一個檔
    reopened = _mirror(clock=FakeClock(session.login_time), storage=FileSessionStorage(path))
    assert reopened.load() == session

    reopened.clear()
    assert not path.exists()


def test_file_storage_ignores_garbage(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json", encoding="utf-8")
    assert FileSessionStorage(path).get(SESSION_KEY) is None


def test_fingerprint_is_stable_and_sensitive():
    traits = collect_traits("agent/1.0")
    assert set(traits) == {"user_agent", "language", "host", "timezone_offset", "render"}

    fp = compute_fingerprint(traits)
    assert len(fp) == 32
    assert fp == compute_fingerprint(dict(traits))
    assert fp != compute_fingerprint({**traits, "user_agent": "agent/2.0"})


@pytest.mark.anyio
async def test_timer_fires_warning_then_timeout():
    mirror = SessionMirror(fingerprint=lambda: "fp", clock=time.time, timeout_sec=0.2, warning_sec=0.1)
    mirror.store("tok", "admin", "admin")
    events = []

    timer = SessionTimer(mirror, lambda: events.append("warning"), lambda: events.append("timeout"))
    timer.start()
    assert timer.running

    await asyncio.sleep(0.6)
    assert events[0] == "warning"
    assert events[-1] == "timeout" and events.count("timeout") == 1
    assert mirror.state() is SessionState.NONE
    assert not timer.running


@pytest.mark.anyio
async def test_timer_reschedules_when_extended():
    clock = FakeClock()
    mirror = _mirror(clock)
    mirror.store("tok", "admin", "admin")
    timeouts = []

    timer = SessionTimer(mirror, lambda: None, lambda: timeouts.append(True))
    timer.start()
    try:
        clock.advance(29 * 60)
        mirror.extend("keypress")
        clock.advance(60)
        # 原本排定的到期時間到了，但 session 已被延長
        timer._fire_timeout()
        assert timeouts == []
        assert timer.running
        assert mirror.current() is not None

        clock.advance(30 * 60)
        timer._fire_timeout()
        assert timeouts == [True]
        assert mirror.load() is None
    finally:
        timer.cancel()


@pytest.mark.anyio
async def test_timer_without_session_does_nothing():
    timer = SessionTimer(_mirror(), lambda: None, lambda: None)
    timer.start()
    assert not timer.running


def test_fingerprint_ignores_terminal_size(monkeypatch):
    monkeypatch.setenv("COLUMNS", "120")
    monkeypatch.setenv("LINES", "40")
    wide = current_fingerprint()

    monkeypatch.setenv("COLUMNS", "100")
    monkeypatch.setenv("LINES", "30")
    assert current_fingerprint() == wide


def test_file_storage_tightens_existing_file(tmp_path, monkeypatch):
    path = tmp_path / "session.json"
    path.write_text("{}", encoding="utf-8")
    path.chmod(0o644)

    # 權限要在寫入時就設好，不靠事後 chmod
    def _no_chmod(self, mode):
        raise AssertionError("permissions must be set when the file is opened")

    monkeypatch.setattr(Path, "chmod", _no_chmod)
    FileSessionStorage(path).set(SESSION_KEY, "secret-token")

    assert (path.stat().st_mode & 0o777) == 0o600
    assert FileSessionStorage(path).get(SESSION_KEY) == "secret-token"
