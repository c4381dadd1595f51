# blogsite/client/admin_client.py
import asyncio
import logging
import random
from typing import Any, Callable, Dict, NoReturn, Optional

import httpx

from blogsite.client.fingerprint import DEFAULT_USER_AGENT
from blogsite.client.session_mirror import MirroredSession, SessionMirror, SessionTimer

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


class AdminClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class LoginFailed(AdminClientError):
    pass


class NotAuthenticated(AdminClientError):
    pass


async def secure_delay(min_sec: float = 1.0, max_sec: float = 3.0) -> None:
    """登入失敗後的隨機延遲（1–3 秒），降低以時間差列舉帳號的可能。"""
    await asyncio.sleep(random.uniform(min_sec, max_sec))


def _error_message(resp: httpx.Response, default: str) -> str:
    try:
        return resp.json().get("error") or default
    except ValueError:
        return default


class AdminClient:
    """
    管理後台用的 API client。

    - 登入成功後把 token 放進 SessionMirror（只當 UI 快取）
    - 每個需要權限的呼叫都帶 Bearer token 回伺服器驗證
    - 伺服器回 401/403 時丟掉鏡像，逼使用者重新登入
    """

    def __init__(
        self,
        base_url: str,
        mirror: Optional[SessionMirror] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10.0,
    ) -> None:
        self.mirror = mirror or SessionMirror()
        self.timer: Optional[SessionTimer] = None
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            headers={"User-Agent": user_agent},
        )

    async def __aenter__(self) -> "AdminClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.stop_timers()
        await self._http.aclose()

    # === Auth ===
    async def login(self, username: str, password: str, captcha_response: str) -> MirroredSession:
        if not username or not password:
            await self._fail_login("Please enter both username and password.")
        if not captcha_response:
            await self._fail_login("Please complete the captcha verification.")

        resp = await self._http.post(
            f"{API_PREFIX}/auth/login",
            json={"username": username, "password": password, "h-captcha-response": captcha_response},
        )
        if resp.status_code != 200:
            await self._fail_login(_error_message(resp, "Login failed"), resp)

        data = resp.json()
        user = data["user"]
        return self.mirror.store(data["token"], user["username"], user["role"])

    async def _fail_login(self, message: str, resp: Optional[httpx.Response] = None) -> NoReturn:
        await secure_delay()
        status_code = resp.status_code if resp is not None else None
        payload = None
        if resp is not None:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
        raise LoginFailed(message, status_code, payload)

    async def verify(self) -> Dict[str, Any]:
        resp = await self.request("GET", f"{API_PREFIX}/auth/verify")
        return resp.json()

    async def logout(self) -> Optional[Dict[str, Any]]:
        """通知伺服器撤銷 token；不論結果如何，本地鏡像都會清掉。"""
        session = self.mirror.load()
        try:
            if session is None:
                return None
            resp = await self._http.post(
                f"{API_PREFIX}/auth/logout",
                headers={"Authorization": f"Bearer {session.token}"},
            )
            if resp.status_code != 200:
                logger.info("Server-side logout returned %s", resp.status_code)
                return None
            return resp.json()
        finally:
            self.stop_timers()
            self.mirror.clear()

    async def check_existing_session(self) -> Optional[MirroredSession]:
        """頁面載入時：鏡像仍有效就向伺服器確認，否則清掉。"""
        session = self.mirror.current()
        if session is None:
            self.mirror.clear()
            return None
        try:
            await self.verify()
        except NotAuthenticated:
            return None
        return session

    def touch(self, event: str) -> Optional[MirroredSession]:
        session = self.mirror.extend(event)
        if session is not None and self.timer is not None:
            self.timer.restart()
        return session

    # === Timers（需在 event loop 內呼叫） ===
    def start_timers(self, on_warning: Callable[[], None], on_timeout: Callable[[], None]) -> SessionTimer:
        self.stop_timers()
        self.timer = SessionTimer(self.mirror, on_warning, on_timeout)
        self.timer.start()
        return self.timer

    def stop_timers(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    # === Generic request ===
    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        session = self.mirror.current()
        if session is None:
            raise NotAuthenticated("No active session")

        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {session.token}"
        resp = await self._http.request(method, path, headers=headers, **kwargs)

        if resp.status_code in (401, 403) and self._is_auth_failure(resp):
            # 伺服器才是準：token 失效就丟掉鏡像
            self.mirror.clear()
            raise NotAuthenticated(_error_message(resp, "Session is no longer valid"), resp.status_code)
        return resp

    @staticmethod
    def _is_auth_failure(resp: httpx.Response) -> bool:
        # 角色不足（有 required 欄位）不代表 token 失效
        try:
            return "required" not in resp.json()
        except ValueError:
            return True
