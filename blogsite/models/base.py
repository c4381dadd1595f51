# blogsite/models/base.py
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """DB 內一律存 naive UTC（SQLite 不保留 tzinfo）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
