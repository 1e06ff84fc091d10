from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from ..db.base import BaseDBManager
from ..models.audit import AuditEntry

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Structured audit logger that writes to the database and a file.

    File logging is append-only, line-delimited JSON for easier ingestion
    by log aggregators. Both sinks are best-effort: an audit failure is
    logged and never propagates to the operation being audited.
    """

    def __init__(self, db: BaseDBManager, file_path: Path) -> None:
        self._db = db
        self._file_path = file_path
        self._file_path.parent.mkdir(parents=True, exist_ok=True)

    async def log(
        self,
        action: str,
        user_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            action=action,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            payload=payload or {},
        )

        try:
            entry = await self._db.add_audit_entry(entry)
        except Exception:
            logger.exception("Audit entry could not be persisted: %s", action)

        try:
            line = json.dumps(entry.serialize_for_db(), default=str)
            with self._file_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            logger.warning("Audit file %s is not writable", self._file_path)

        return entry

    async def credit_deducted(
        self,
        user_id: str,
        previous_credits: int,
        new_credits: int,
        document_id: Optional[str] = None,
    ) -> AuditEntry:
        return await self.log(
            "credit_deducted",
            user_id=user_id,
            resource_type="credit",
            resource_id=document_id,
            payload={
                "previousCredits": previous_credits,
                "newCredits": new_credits,
                "documentId": document_id,
            },
        )

    async def document_authorized(
        self,
        user_id: str,
        plan: str,
        document_id: Optional[str] = None,
        free_trial_count: Optional[int] = None,
    ) -> AuditEntry:
        payload: dict[str, Any] = {"plan": plan}
        if free_trial_count is not None:
            payload["freeTrialCount"] = free_trial_count
        return await self.log(
            "document_authorized",
            user_id=user_id,
            resource_type="document",
            resource_id=document_id,
            payload=payload,
        )
