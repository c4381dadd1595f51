# blogsite/schemas/auth.py
from datetime import datetime
from typing import Annotated, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from blogsite.schemas.user import UserPublic, UserSummary

# 角色 → 能力集合；目前只設定 admin 一種
ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "admin": frozenset({"admin"}),
}


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
    password: Annotated[str, StringConstraints(min_length=1)]
    # 前端表單欄位名稱沿用 hCaptcha 預設
    captcha_response: Optional[str] = Field(default=None, alias="h-captcha-response")


class LoginResponse(BaseModel):
    message: str = "Login successful"
    token: str
    user: UserPublic


class LogoutResponse(BaseModel):
    message: str = "Logout successful"
    timestamp: datetime
    user: Optional[UserSummary] = None


class VerifyResponse(BaseModel):
    valid: bool = True
    user: UserPublic
    timestamp: datetime
    clientIP: Optional[str] = None


class Identity(BaseModel):
    """通過 Authenticate 之後掛在 request 上的身分（來自 token claims）"""

    id: int
    username: str
    role: str
    exp: int

    @property
    def capabilities(self) -> FrozenSet[str]:
        # 未設定的角色退回「角色名稱本身」，等同單純字串比對
        return ROLE_CAPABILITIES.get(self.role, frozenset({self.role}))

    def has(self, capability: str) -> bool:
        return capability in self.capabilities

    def public(self) -> UserPublic:
        return UserPublic(id=self.id, username=self.username, role=self.role)
