# blogsite/client/session_mirror.py
"""
Client 端的 session 鏡像。

只是 UI / 路由用的快取：決定要顯示哪個畫面、何時該重新登入。
它不具任何授權效力，所有需要權限的動作仍然要帶 token 回伺服器驗證。

已知的不對稱（刻意保留，待確認原始意圖）：
使用者活動會在 client 端把 expires_at 往後延，但伺服器發出的 token 壽命是固定的，
所以 client 可能認為 session 仍有效，而下一個 API 呼叫卻拿到 403。
AdminClient 收到 401/403 時會清掉鏡像，讓兩邊重新對齊。
"""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import secrets
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional

from pydantic import BaseModel, ValidationError

from blogsite.client.fingerprint import current_fingerprint

logger = logging.getLogger(__name__)

SESSION_KEY = "auth_session"
FINGERPRINT_KEY = "auth_fingerprint"

SESSION_TIMEOUT_SEC = 30 * 60
WARNING_BEFORE_SEC = 5 * 60

# 會延長 session 的使用者互動事件（pointer / key / scroll / touch）
ACTIVITY_EVENTS = frozenset({"mousedown", "mousemove", "keypress", "scroll", "touchstart"})


class MirroredSession(BaseModel):
    token: str
    username: str
    role: str
    login_time: float
    # client 自己算的到期時間，與 token 的 exp 無關
    expires_at: float
    csrf_token: str


class SessionState(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


# ============================================================
# Storage（類似瀏覽器 localStorage 的 key/value）
# ============================================================

class SessionStorage(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class MemorySessionStorage(SessionStorage):
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileSessionStorage(SessionStorage):
    """單一 JSON 檔；跨行程保存，刪到空就移除檔案。"""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Session storage at %s is unreadable, ignoring it", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        if not data:
            self.path.unlink(missing_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # 建檔當下就是 0600；既有檔案也一併收緊
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(json.dumps(data))

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


# ============================================================
# Mirror
# ============================================================

def generate_csrf_token() -> str:
    return secrets.token_hex(32)


class SessionMirror:
    def __init__(
        self,
        storage: Optional[SessionStorage] = None,
        fingerprint: Callable[[], str] = current_fingerprint,
        clock: Callable[[], float] = time.time,
        timeout_sec: int = SESSION_TIMEOUT_SEC,
        warning_sec: int = WARNING_BEFORE_SEC,
    ) -> None:
        self.storage = storage or MemorySessionStorage()
        self.fingerprint = fingerprint
        self.clock = clock
        self.timeout_sec = timeout_sec
        self.warning_sec = warning_sec

    def store(self, token: str, username: str, role: str) -> MirroredSession:
        """登入成功時建立鏡像。"""
        now = self.clock()
        session = MirroredSession(
            token=token,
            username=username,
            role=role,
            login_time=now,
            expires_at=now + self.timeout_sec,
            csrf_token=generate_csrf_token(),
        )
        self.save(session)
        return session

    def save(self, session: MirroredSession) -> None:
        encoded = base64.b64encode(session.model_dump_json().encode("utf-8")).decode("ascii")
        self.storage.set(SESSION_KEY, encoded)
        self.storage.set(FINGERPRINT_KEY, self.fingerprint())

    def load(self) -> Optional[MirroredSession]:
        """讀出鏡像；指紋不符視為被竄改，直接丟棄。"""
        encoded = self.storage.get(SESSION_KEY)
        if not encoded:
            return None

        if self.storage.get(FINGERPRINT_KEY) != self.fingerprint():
            logger.warning("Session fingerprint mismatch - possible tampering, discarding session")
            self.clear()
            return None

        try:
            return MirroredSession.model_validate_json(base64.b64decode(encoded))
        except (ValueError, ValidationError):
            logger.warning("Stored session is corrupt, discarding it")
            self.clear()
            return None

    def is_valid(self, session: Optional[MirroredSession]) -> bool:
        if session is None or not session.token:
            return False
        return self.clock() <= session.expires_at

    def current(self) -> Optional[MirroredSession]:
        session = self.load()
        return session if self.is_valid(session) else None

    def extend(self, event: str) -> Optional[MirroredSession]:
        """使用者互動時把 client 端到期時間往後延（伺服器端不會跟著延）。"""
        if event not in ACTIVITY_EVENTS:
            return None
        session = self.current()
        if session is None:
            return None
        session.expires_at = self.clock() + self.timeout_sec
        self.save(session)
        return session

    def state(self) -> SessionState:
        session = self.load()
        if session is None:
            return SessionState.NONE
        remaining = session.expires_at - self.clock()
        if remaining < 0:
            return SessionState.EXPIRED
        if remaining <= self.warning_sec:
            return SessionState.WARNING
        return SessionState.ACTIVE

    def clear(self) -> None:
        self.storage.remove(SESSION_KEY)
        self.storage.remove(FINGERPRINT_KEY)


# ============================================================
# Timers
# ============================================================

class SessionTimer:
    """
    以 asyncio call_later 排兩個計時：到期前 warning_sec 發警告、到期時自動登出。
    extend 之後呼叫 restart() 重排。
    """

    def __init__(
        self,
        mirror: SessionMirror,
        on_warning: Callable[[], None],
        on_timeout: Callable[[], None],
    ) -> None:
        self.mirror = mirror
        self.on_warning = on_warning
        self.on_timeout = on_timeout
        self._handles: list = []

    @property
    def running(self) -> bool:
        return bool(self._handles)

    def start(self) -> None:
        self.cancel()
        session = self.mirror.current()
        if session is None:
            return
        loop = asyncio.get_running_loop()
        remaining = max(0.0, session.expires_at - self.mirror.clock())
        self._handles = [
            loop.call_later(max(0.0, remaining - self.mirror.warning_sec), self._fire_warning),
            loop.call_later(remaining, self._fire_timeout),
        ]

    restart = start

    def cancel(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles = []

    def _fire_warning(self) -> None:
        if self.mirror.current() is not None:
            self.on_warning()

    def _fire_timeout(self) -> None:
        self.cancel()
        # 期間內若有人延長過，就重新排程
        session = self.mirror.load()
        if session is not None and session.expires_at > self.mirror.clock():
            self.start()
            return
        logger.info("Client session expired due to inactivity")
        self.mirror.clear()
        self.on_timeout()
