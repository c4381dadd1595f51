# blogsite/api/endpoints/auth.py
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from blogsite.core.deps import authenticate, get_revocation_store
from blogsite.core.errors import APIError
from blogsite.core.request_utils import get_client_ip, get_user_agent
from blogsite.core.security import create_access_token, token_expiry, verify_password
from blogsite.db.session import get_db
from blogsite.models.users import User
from blogsite.schemas.auth import Identity, LoginRequest, LoginResponse, LogoutResponse, VerifyResponse
from blogsite.schemas.user import UserPublic, UserSummary
from blogsite.services import lockout
from blogsite.services.audit import audit_log
from blogsite.services.captcha import verify_captcha
from blogsite.services.rate_limit import check_limit_and_hit, reset_success
from blogsite.services.revocation import RevocationStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

INVALID_CREDENTIALS = "Invalid credentials"


# === 登入 ===
@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(audit_log("LOGIN_ATTEMPT"))],
)
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    登入流程：限流 → captcha → 查帳號 → 鎖定檢查 → 比對密碼 → 簽發 token。
    帳號不存在與密碼錯誤回同一個訊息，避免帳號探測。
    """
    ip = get_client_ip(request) or "unknown"
    username = payload.username

    allowed, retry_after = await check_limit_and_hit(ip, username)
    if not allowed:
        raise APIError(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many login attempts, please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    captcha = await verify_captcha(payload.captcha_response, ip)
    if not captcha.success:
        raise APIError(
            status.HTTP_400_BAD_REQUEST,
            "Captcha verification failed. Please try again.",
            details=captcha.error,
        )

    try:
        result = await db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if user is None:
            logger.info("Login failed: unknown username")
            raise APIError(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS)

        # 鎖定中：不做密碼比對
        if lockout.is_locked(user):
            logger.info("Login rejected: account %s is locked", user.username)
            raise APIError(
                status.HTTP_423_LOCKED,
                "Account temporarily locked due to too many failed attempts",
            )

        if not verify_password(payload.password, user.password_hash):
            await lockout.register_failure(db, user)
            logger.info("Login failed: invalid password for %s", user.username)
            raise APIError(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS)

        await lockout.register_success(db, user)
    except SQLAlchemyError:
        logger.exception("Database error during login")
        raise APIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database error")

    await reset_success(ip, username)

    token = create_access_token(user, client_ip=ip, user_agent=get_user_agent(request))
    logger.info("Login successful for %s", user.username)
    return LoginResponse(token=token, user=UserPublic.model_validate(user))


# === 登出：撤銷目前這顆 token ===
@router.post(
    "/logout",
    response_model=LogoutResponse,
    dependencies=[Depends(audit_log("LOGOUT", identity_dependency=authenticate))],
)
async def logout(
    request: Request,
    identity: Identity = Depends(authenticate),
    store: RevocationStore = Depends(get_revocation_store),
):
    token = request.state.token
    # 重複登出同一顆 token 也不會出錯（已撤銷的 token 在 authenticate 就會被擋）
    await store.revoke(token, token_expiry(identity.exp))
    logger.info("Token revoked for %s", identity.username)

    return LogoutResponse(
        timestamp=datetime.now(timezone.utc),
        user=UserSummary(id=identity.id, username=identity.username),
    )


# === 驗證 token ===
@router.get("/verify", response_model=VerifyResponse)
async def verify(request: Request, identity: Identity = Depends(authenticate)):
    return VerifyResponse(
        user=identity.public(),
        timestamp=datetime.now(timezone.utc),
        clientIP=get_client_ip(request),
    )
