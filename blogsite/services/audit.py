# blogsite/services/audit.py
"""
稽核紀錄（audit_logs）寫入。

以 FastAPI dependency 的形式掛在特定端點上，在 handler 執行前寫入一筆：
actor（可為 None）、固定 action、遮蔽後的 request body、IP、User-Agent。
寫入失敗只記 log，不影響原本的請求。
"""
import json
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Request

from blogsite.core.request_utils import get_client_ip, get_user_agent
from blogsite.db.session import AsyncSessionLocal
from blogsite.models.audit_log import AuditLog
from blogsite.schemas.auth import Identity

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"
SENSITIVE_KEY_PARTS = ("password", "token", "captcha")


def redact(body: Any) -> Dict[str, Any]:
    """敏感欄位換成遮蔽字串（保留 key，方便事後分析），只處理第一層。"""
    if not isinstance(body, dict):
        return {}
    return {
        key: REDACTED if any(part in str(key).lower() for part in SENSITIVE_KEY_PARTS) else value
        for key, value in body.items()
    }


async def _read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return {}


async def write_audit_log(
    action: str,
    user_id: Optional[int],
    details: Dict[str, Any],
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> None:
    # 用獨立 session，避免和端點本身的 transaction 互相牽連
    try:
        async with AsyncSessionLocal() as session:
            session.add(AuditLog(
                user_id=user_id,
                action=action,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
            ))
            await session.commit()
    except Exception:
        logger.exception("Audit log write failed for action=%s, continuing with request", action)


async def no_identity() -> Optional[Identity]:
    return None


def audit_log(action: str, identity_dependency: Callable = no_identity) -> Callable:
    """
    產生 audit dependency。

    需要登入的端點傳入 identity_dependency=authenticate，
    FastAPI 會快取同一請求內的 dependency，不會重複驗證 token。
    """

    async def _audit(
        request: Request,
        identity: Optional[Identity] = Depends(identity_dependency),
    ) -> None:
        body = await _read_json_body(request)
        details = {
            "method": request.method,
            "url": str(request.url.path),
            "body": redact(body),
        }
        await write_audit_log(
            action=action,
            user_id=identity.id if identity else None,
            details=details,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )

    return _audit
