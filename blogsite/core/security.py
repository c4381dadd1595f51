# blogsite/core/security.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError
from passlib.context import CryptContext

from blogsite.core.config import settings

logger = logging.getLogger(__name__)

# === Password Hashing ===
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=12,
    # 若密碼超過 72 bytes，不拋錯（與現有流程相容）
    bcrypt__truncate_error=False,
)

def _sanitize_password(p: str) -> str:
    # bcrypt 只吃前 72 bytes，避免極長密碼在某些環境報錯
    return p[:72] if isinstance(p, str) else p

def hash_password(plain: str) -> str:
    return pwd_context.hash(_sanitize_password(plain))

def verify_password(plain: str, password_hash: str) -> bool:
    return pwd_context.verify(_sanitize_password(plain), password_hash)


# === Errors ===
class InvalidToken(Exception):
    """簽章、iss/aud、過期、撤銷……對外一律歸類為 INVALID_TOKEN"""


class TokenRevoked(InvalidToken):
    pass


# === JWT Helpers ===
def _now_utc() -> datetime:
    return datetime.now(timezone.utc)

def _encode(claims: Dict[str, Any]) -> str:
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

def _decode(token: str) -> Dict[str, Any]:
    # jose 會一次檢查簽章 / exp / iss / aud，任何一項不符就拋 JWTError
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )


# === Issue Token ===
def create_access_token(
    user: Any,
    client_ip: Optional[str],
    user_agent: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """
    簽發 Access Token，固定壽命（ACCESS_TOKEN_EXPIRE_MINUTES，預設 30 分鐘），伺服器端不做 sliding。
    user 需具備 id / username / role。
    now 只給測試用來把簽發時間往回撥。
    """
    issued_at = now or _now_utc()
    claims = {
        "sub": str(user.id),
        "id": int(user.id),
        "username": user.username,
        "role": user.role,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)).timestamp()),
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        # 情境 claims：簽發當下的 IP 與截斷後的 UA
        "ip": client_ip,
        "ua": (user_agent or "unknown")[: settings.TOKEN_USER_AGENT_MAX],
    }
    return _encode(claims)


# === Verify / Decode ===
def decode_access_token(token: str) -> Dict[str, Any]:
    """只做密碼學與時效驗證（不查撤銷清單）"""
    try:
        return _decode(token)
    except JWTError as e:
        raise InvalidToken(str(e)) from e


async def verify_access_token(token: str, client_ip: Optional[str], store) -> Dict[str, Any]:
    """
    完整驗證：
      1️⃣ 簽章 / iss / aud / exp
      2️⃣ 撤銷清單（store.is_revoked）
      3️⃣ IP 一致性只記 log，不擋（行動網路 IP 常換）
    """
    payload = decode_access_token(token)

    if await store.is_revoked(token):
        raise TokenRevoked("Token has been revoked")

    if settings.STRICT_IP_CHECK and payload.get("ip") != client_ip:
        logger.warning(
            "IP mismatch for user %s: %s vs %s",
            payload.get("username"), payload.get("ip"), client_ip,
        )

    return payload


def token_expiry(exp: int) -> datetime:
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)
