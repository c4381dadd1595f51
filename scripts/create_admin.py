# scripts/create_admin.py
import asyncio
import sys

from blogsite.core.config import settings
from blogsite.db.session import AsyncSessionLocal
from blogsite.services.bootstrap import ensure_admin_user


async def main() -> int:
    if not settings.ADMIN_PASSWORD:
        print("ADMIN_PASSWORD is not set; refusing to create an admin with an empty password.")
        return 1
    async with AsyncSessionLocal() as session:
        created = await ensure_admin_user(session, settings.ADMIN_USERNAME, settings.ADMIN_PASSWORD)
    print({"username": settings.ADMIN_USERNAME, "created": created})
    return 0

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
