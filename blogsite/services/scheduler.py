# blogsite/services/scheduler.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI

from blogsite.core.config import settings
from blogsite.db.session import AsyncSessionLocal
from blogsite.services.bootstrap import ensure_admin_user
from blogsite.services.revocation import RevocationStore

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None


async def run_revocation_sweep(store: RevocationStore) -> int:
    """排程作業：對撤銷清單套用淘汰策略。"""
    try:
        removed = await store.sweep()
        logger.info("Revocation sweep done, removed=%d", removed)
        return removed
    except Exception:
        logger.exception("Revocation sweep failed")
        return 0


async def _bootstrap_admin() -> None:
    if not settings.ADMIN_PASSWORD:
        logger.warning("BOOTSTRAP_ADMIN_ON_STARTUP is set but ADMIN_PASSWORD is empty, skipped")
        return
    async with AsyncSessionLocal() as session:
        await ensure_admin_user(session, settings.ADMIN_USERNAME, settings.ADMIN_PASSWORD)


@asynccontextmanager
async def lifespan_scheduler(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan：啟動 / 關閉 APScheduler，並視設定建立管理員帳號。
    """
    global scheduler
    if settings.BOOTSTRAP_ADMIN_ON_STARTUP:
        await _bootstrap_admin()

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_revocation_sweep,
        IntervalTrigger(minutes=settings.REVOCATION_SWEEP_MINUTES),
        args=[app.state.revocation_store],
    )
    scheduler.start()
    logger.info("APScheduler started: revocation sweep every %d minutes", settings.REVOCATION_SWEEP_MINUTES)
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            logger.info("APScheduler shutdown")
