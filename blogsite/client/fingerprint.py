# blogsite/client/fingerprint.py
"""
環境指紋：只是「session 有沒有被搬家 / 竄改」的粗略訊號，不是安全邊界。
真正的驗證永遠在伺服器端。
"""
import hashlib
import locale
import platform
import sys
from datetime import datetime
from typing import Dict

DEFAULT_USER_AGENT = f"blogsite-admin-client/1.0 python/{platform.python_version()}"

_RENDER_PROBE = "Security fingerprint"


def _language() -> str:
    lang, _ = locale.getlocale()
    return lang or "C"


def _host() -> str:
    # 終端機大小會變動，不列入指紋
    return platform.node() or "unknown-host"


def _timezone_offset() -> int:
    # 與瀏覽器 getTimezoneOffset() 同號：UTC+8 → -480
    offset = datetime.now().astimezone().utcoffset()
    return -int(offset.total_seconds() // 60) if offset is not None else 0


def _render_hash() -> str:
    # 以執行環境渲染同一段探針字串後取 hash
    rendered = "|".join([
        _RENDER_PROBE,
        platform.system(),
        platform.machine(),
        platform.python_implementation(),
        sys.getfilesystemencoding(),
    ])
    return hashlib.sha256(rendered.encode("utf-8")).hexdigest()


def collect_traits(user_agent: str = DEFAULT_USER_AGENT) -> Dict[str, str]:
    return {
        "user_agent": user_agent,
        "language": _language(),
        "host": _host(),
        "timezone_offset": str(_timezone_offset()),
        "render": _render_hash(),
    }


def compute_fingerprint(traits: Dict[str, str]) -> str:
    joined = "|".join(traits[k] for k in ("user_agent", "language", "host", "timezone_offset", "render"))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:32]


def current_fingerprint(user_agent: str = DEFAULT_USER_AGENT) -> str:
    return compute_fingerprint(collect_traits(user_agent))
