# blogsite/api/endpoints/admin.py
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogsite.core.deps import authorize
from blogsite.db.session import get_db
from blogsite.models.audit_log import AuditLog
from blogsite.models.users import User
from blogsite.schemas.audit import AuditLogRead

router = APIRouter(tags=["admin"])

AUDIT_LOG_PAGE_SIZE = 100


# === 稽核紀錄（最新 100 筆，需 admin） ===
@router.get("/audit-logs", response_model=List[AuditLogRead], dependencies=[Depends(authorize("admin"))])
async def list_audit_logs(db: AsyncSession = Depends(get_db)):
    stmt = (
        select(AuditLog, User.username)
        .outerjoin(User, AuditLog.user_id == User.id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(AUDIT_LOG_PAGE_SIZE)
    )
    rows = (await db.execute(stmt)).all()
    return [
        AuditLogRead(
            id=log.id,
            action=log.action,
            details=log.details,
            ip_address=log.ip_address,
            created_at=log.created_at,
            username=username,
        )
        for log, username in rows
    ]
