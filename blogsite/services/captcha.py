# blogsite/services/captcha.py
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from blogsite.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CaptchaResult:
    success: bool
    error: Optional[str] = None
    details: Optional[List[str]] = None


async def verify_captcha(
    token: Optional[str],
    client_ip: Optional[str],
    client: Optional[httpx.AsyncClient] = None,
) -> CaptchaResult:
    """
    驗證 hCaptcha response。
      - 沒帶 token：一律失敗
      - dev / test：有帶就放行，不打外部 API
      - 其他環境：POST siteverify，任何錯誤都視為失敗（fail closed）
    """
    if not token:
        return CaptchaResult(False, "Captcha token missing")

    if (settings.ENV or "").lower() in settings.CAPTCHA_BYPASS_ENVS:
        logger.debug("Captcha verification bypassed in ENV=%s", settings.ENV)
        return CaptchaResult(True)

    if not settings.HCAPTCHA_SECRET:
        logger.error("HCAPTCHA_SECRET not set in ENV=%s", settings.ENV)
        return CaptchaResult(False, "Captcha service not configured")

    data = {"secret": settings.HCAPTCHA_SECRET, "response": token}
    if client_ip:
        data["remoteip"] = client_ip

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10.0)
    try:
        resp = await client.post(settings.HCAPTCHA_VERIFY_URL, data=data)
        if resp.status_code >= 400:
            logger.error("hCaptcha API error: %s", resp.status_code)
            return CaptchaResult(False, "hCaptcha API error")
        payload = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("Captcha verification error: %s", e)
        return CaptchaResult(False, "Captcha verification error")
    finally:
        if owns_client:
            await client.aclose()

    if payload.get("success"):
        return CaptchaResult(True)

    codes = payload.get("error-codes") or []
    logger.info("Captcha verification failed: %s", codes)
    return CaptchaResult(False, "Captcha verification failed", codes)
