from __future__ import annotations

import pytest

from termyx.cache.memory import InMemoryAsyncCache
from termyx.db.memory import InMemoryDBManager
from termyx.logging.audit_logger import AuditLogger
from termyx.services.plan_service import PlanService


@pytest.fixture
def db():
    return InMemoryDBManager()


@pytest.fixture
def audit(db, tmp_path):
    return AuditLogger(db=db, file_path=tmp_path / "audit.log")


@pytest.fixture
def plans(db):
    return PlanService(db=db, cache=InMemoryAsyncCache())
