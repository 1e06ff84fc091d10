from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class AuditEntry(DBSerializableModel):
    """
    Structured audit entry persisted to DB and mirrored to the file log.
    """

    collection_name: ClassVar[str] = "audit_logs"

    id: Optional[str] = Field(default=None)
    user_id: Optional[str] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
