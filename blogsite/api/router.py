# blogsite/api/router.py
from fastapi import APIRouter

from .endpoints import admin, auth, health

# === API 主路由 ===
api_router = APIRouter()

# 系統健康檢查
api_router.include_router(health.router, prefix="/health", tags=["health"])

# 認證 / 登入 / 登出 / 驗證
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# 管理後台（需 admin）
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
