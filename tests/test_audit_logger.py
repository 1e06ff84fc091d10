from __future__ import annotations

import json

import pytest

from termyx.config import Settings
from termyx.db.factory import create_db_manager
from termyx.db.memory import InMemoryDBManager
from termyx.logging.audit_logger import AuditLogger


@pytest.mark.asyncio
async def test_audit_entry_goes_to_db_and_file(db, tmp_path):
    path = tmp_path / "nested" / "audit.log"
    audit = AuditLogger(db=db, file_path=path)

    entry = await audit.credit_deducted("user-1", previous_credits=3, new_credits=2, document_id="d1")

    assert entry.id is not None
    [stored] = await db.get_audit_entries("user-1")
    assert stored.resource_type == "credit"

    [line] = path.read_text(encoding="utf-8").splitlines()
    record = json.loads(line)
    assert record["action"] == "credit_deducted"
    assert record["payload"]["newCredits"] == 2


@pytest.mark.asyncio
async def test_audit_failure_never_propagates(tmp_path, caplog):
    class BrokenDB(InMemoryDBManager):
        async def add_audit_entry(self, entry):
            raise ConnectionError("db down")

    audit = AuditLogger(db=BrokenDB(), file_path=tmp_path / "audit.log")

    entry = await audit.document_authorized("user-1", "free", free_trial_count=1)

    assert entry.payload == {"plan": "free", "freeTrialCount": 1}
    assert "Audit entry could not be persisted" in caplog.text
    assert (tmp_path / "audit.log").exists()


def test_factory_without_mongo_uses_memory():
    assert isinstance(create_db_manager(Settings(MONGO_URI=None)), InMemoryDBManager)
