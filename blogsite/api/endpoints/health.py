# blogsite/api/endpoints/health.py
from fastapi import APIRouter, Depends

from blogsite.core.config import settings
from blogsite.core.deps import get_revocation_store
from blogsite.services.revocation import RevocationStore

router = APIRouter()


@router.get("/", summary="Health check")
async def health_root(store: RevocationStore = Depends(get_revocation_store)):
    return {
        "status": "ok",
        "env": settings.ENV,
        "revocation": {"backend": type(store).__name__, "size": await store.size()},
    }
