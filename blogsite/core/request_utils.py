"""Request helpers shared by the auth endpoints and the audit writer."""

import ipaddress
import logging
from typing import Optional

from fastapi import Request

from blogsite.core.config import settings

logger = logging.getLogger(__name__)


def _is_valid_ip(ip_str: str) -> bool:
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> Optional[str]:
    """
    取得 client IP。

    TRUST_PROXY 開啟時（部署在 nginx 後方）依序採用 X-Real-IP、X-Forwarded-For 第一跳；
    否則只相信直接連線的位址，避免被偽造 header 繞過。
    """
    if settings.TRUST_PROXY:
        real_ip = (request.headers.get("X-Real-IP") or "").strip()
        if real_ip:
            if _is_valid_ip(real_ip):
                return real_ip
            logger.warning("Invalid X-Real-IP: %s", real_ip)

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if _is_valid_ip(first_hop):
                return first_hop
            logger.warning("Invalid X-Forwarded-For: %s", forwarded)

    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("User-Agent")
