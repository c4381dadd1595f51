# blogsite/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from blogsite.core.config import settings
from blogsite.core.logging import setup_logging
from blogsite.core.errors import register_error_handlers
from blogsite.api.router import api_router
from blogsite.db.session import engine
from blogsite.services.revocation import build_revocation_store
from blogsite.services.scheduler import lifespan_scheduler  # lifespan（排程）

# Monitoring
import sentry_sdk
from prometheus_fastapi_instrumentator import Instrumentator

logger = setup_logging(settings.LOG_LEVEL)
log = logging.getLogger(__name__)

_DEFAULT_SECRET = "fallback-development-secret-do-not-use-in-production"


def _validate_secrets() -> None:
    """
    部署前安全檢查：prod/staging/preview 不允許空的或太短的 JWT_SECRET（直接啟動失敗）。
    """
    env = (settings.ENV or "").lower()
    weak = not settings.JWT_SECRET or len(settings.JWT_SECRET) < 32 or settings.JWT_SECRET == _DEFAULT_SECRET
    if env in {"prod", "production", "staging", "preview"}:
        if weak:
            raise RuntimeError(
                f"Insecure config for JWT_SECRET in ENV={settings.ENV}. "
                "Please set a strong key via environment variables."
            )
    elif weak:
        log.warning("JWT_SECRET is weak or unset, using a development-only secret")


def create_app() -> FastAPI:
    # 基本安全檢查
    _validate_secrets()

    # 啟用 lifespan（內含 APScheduler：撤銷清單整理排程）
    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan_scheduler,
    )

    # 撤銷清單：單一 app 共用一份，透過 dependency 注入
    app.state.revocation_store = build_revocation_store(settings)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Sentry 初始化（若 .env/SENTRY_DSN 未設定就略過）----
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            environment=settings.SENTRY_ENV,
            send_default_pii=False,
        )

    # ---- Prometheus /metrics ----
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    # 統一錯誤處理
    register_error_handlers(app)

    # === API 路由（/api/...）===
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # 健康檢查（root & ops）
    @app.get("/", summary="Root")
    async def root():
        return {"app": settings.APP_NAME, "env": settings.ENV}

    @app.get("/healthz", tags=["ops"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["ops"])
    async def readyz():
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"ready": True}

    log.info("Application initialized (env=%s)", settings.ENV)
    return app


# Uvicorn 進入點
app = create_app()
