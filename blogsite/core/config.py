# blogsite/core/config.py
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # === App Info ===
    APP_NAME: str = "Blogsite API"
    API_PREFIX: str = "/api"
    ENV: str = os.getenv("ENV", "dev")
    DEBUG: bool = False
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # === CORS ===
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return [x.strip() for x in json.loads(s)]
            return [x.strip() for x in s.split(",") if x.strip()]
        return v

    # 反向代理（nginx）後方時才信任 X-Real-IP / X-Forwarded-For
    TRUST_PROXY: bool = False

    # === Database ===
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite+aiosqlite:///./database/blog_system.db",
    )
    DB_ECHO: bool = os.getenv("DB_ECHO", "false").lower() == "true"

    # === Auth / JWT ===
    JWT_SECRET: str = os.getenv("JWT_SECRET", "fallback-development-secret-do-not-use-in-production")
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "blog-system"
    JWT_AUDIENCE: str = "blog-users"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
    TOKEN_USER_AGENT_MAX: int = 100
    # true：IP 不一致時記一筆 warning；無論如何都不會因此拒絕（行動網路會換 IP）
    STRICT_IP_CHECK: bool = os.getenv("STRICT_IP_CHECK", "false").lower() == "true"

    # === Lockout ===
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    # === Revocation registry ===
    REVOCATION_BACKEND: str = os.getenv("REVOCATION_BACKEND", "memory")  # memory / redis
    REVOCATION_CAPACITY: int = 1000
    REVOCATION_EVICTION: str = os.getenv("REVOCATION_EVICTION", "clear")  # clear / expired
    REVOCATION_SWEEP_MINUTES: int = 30

    # === Rate limit / Redis ===
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RATE_LIMIT_WINDOW_SEC: int = int(os.getenv("RATE_LIMIT_WINDOW_SEC", "900"))
    RATE_LIMIT_MAX_PER_IP: int = int(os.getenv("RATE_LIMIT_MAX_PER_IP", "20"))
    RATE_LIMIT_MAX_PER_USER_IP: int = int(os.getenv("RATE_LIMIT_MAX_PER_USER_IP", "10"))

    # 預設行為：若偵測到 pytest，停用限流；
    # 否則依環境變數 RATE_LIMIT_ENABLED 決定。
    RATE_LIMIT_ENABLED: bool = (
        (os.getenv("PYTEST_CURRENT_TEST") is None)
        and os.getenv("RATE_LIMIT_ENABLED", "1").lower() not in ("0", "false", "no")
    )

    # === hCaptcha ===
    HCAPTCHA_SECRET: Optional[str] = os.getenv("HCAPTCHA_SECRET")
    HCAPTCHA_VERIFY_URL: str = "https://hcaptcha.com/siteverify"
    # 這些環境下只要有帶 captcha response 就放行，不打外部 API
    CAPTCHA_BYPASS_ENVS: List[str] = ["dev", "development", "test"]

    # === Admin bootstrap ===
    ADMIN_USERNAME: str = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD: Optional[str] = os.getenv("ADMIN_PASSWORD")
    BOOTSTRAP_ADMIN_ON_STARTUP: bool = False

    # === Observability（Sentry / Monitoring） ===
    SENTRY_DSN: Optional[str] = os.getenv("SENTRY_DSN")
    SENTRY_ENV: str = os.getenv("SENTRY_ENV", "dev")
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return (self.ENV or "").lower() in {"dev", "development", "test"}


@lru_cache
def get_settings() -> Settings:
    """測試環境自動改用 SQLite 測試庫並停用限流"""
    s = Settings()
    if s.ENV == "test":
        if "DATABASE_URL" not in os.environ:
            s.DATABASE_URL = "sqlite+aiosqlite:///./test.db"
        s.RATE_LIMIT_ENABLED = False
    return s


settings = get_settings()
