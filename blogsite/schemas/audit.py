# blogsite/schemas/audit.py
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class AuditLogRead(BaseModel):
    id: int
    action: str
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime
    username: Optional[str] = None
