# blogsite/core/deps.py
import logging
from typing import Callable, Optional

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from blogsite.core.config import settings
from blogsite.core.errors import APIError
from blogsite.core.request_utils import get_client_ip
from blogsite.core.security import InvalidToken, verify_access_token
from blogsite.schemas.auth import Identity
from blogsite.services.revocation import RevocationStore

logger = logging.getLogger(__name__)

# auto_error=False：缺 header 時自己回 NO_TOKEN，而不是 FastAPI 預設的 403
bearer_scheme = HTTPBearer(auto_error=False)


def get_revocation_store(request: Request) -> RevocationStore:
    return request.app.state.revocation_store


async def authenticate(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: RevocationStore = Depends(get_revocation_store),
) -> Identity:
    """
    Bearer token 驗證：
      - 沒帶 token → 401 NO_TOKEN
      - 簽章 / 過期 / iss / aud / 已撤銷 → 一律 403 INVALID_TOKEN（不區分原因）
    成功時把身分與原始 token 放到 request.state，logout 需要撤銷「同一顆」token。
    """
    token = credentials.credentials if credentials else None
    if not token:
        raise APIError(status.HTTP_401_UNAUTHORIZED, "Access token required", code="NO_TOKEN")

    try:
        payload = await verify_access_token(token, get_client_ip(request), store)
        identity = Identity(
            id=int(payload["id"]),
            username=payload["username"],
            role=payload["role"],
            exp=int(payload["exp"]),
        )
    except (InvalidToken, KeyError, TypeError, ValueError) as e:
        logger.info("Token verification failed on %s: %s", request.url.path, type(e).__name__)
        raise APIError(
            status.HTTP_403_FORBIDDEN,
            "Invalid or expired token",
            code="INVALID_TOKEN",
            # 只有開發環境才附上原因
            details=str(e) if settings.is_development else None,
        )

    request.state.user = identity
    request.state.token = token
    return identity


def authorize(required: str) -> Callable:
    """
    角色授權；必須排在 authenticate 之後。
    以能力集合判斷（Identity.has），目前唯一設定的角色是 admin。
    """

    async def _authorize(request: Request, identity: Identity = Depends(authenticate)) -> Identity:
        current = getattr(request.state, "user", None) or identity
        if current is None:
            raise APIError(status.HTTP_401_UNAUTHORIZED, "Authentication required")
        if not current.has(required):
            raise APIError(
                status.HTTP_403_FORBIDDEN,
                "Insufficient permissions",
                required=required,
                current=current.role,
            )
        return current

    return _authorize
