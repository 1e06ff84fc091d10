from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..cache.base import AsyncCacheBackend
from ..cache.memory import InMemoryAsyncCache
from ..config import Settings
from ..db.base import BaseDBManager
from ..logging.audit_logger import AuditLogger
from .credit_service import CreditService
from .document_gate import DocumentGate
from .fraud_service import FraudService
from .plan_service import PlanService
from .rate_limiter import RateLimiter
from .trial_service import TrialService


@dataclass
class Services:
    """Everything a request handler needs, wired once per application."""

    settings: Settings
    db: BaseDBManager
    cache: AsyncCacheBackend
    audit: AuditLogger
    plans: PlanService
    fraud: FraudService
    trials: TrialService
    credits: CreditService
    documents: DocumentGate
    rate_limiter: RateLimiter

    @classmethod
    def build(
        cls,
        settings: Settings,
        db: BaseDBManager,
        cache: Optional[AsyncCacheBackend] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> "Services":
        cache = cache or InMemoryAsyncCache()
        audit = AuditLogger(db=db, file_path=Path(settings.AUDIT_LOG_PATH))
        plans = PlanService(db=db, cache=cache, cache_ttl=settings.PLAN_CACHE_TTL_SECONDS)
        fraud = FraudService(
            db=db,
            cache=cache,
            ip_signup_limit=settings.IP_SIGNUP_LIMIT,
            ip_window_hours=settings.IP_SIGNUP_WINDOW_HOURS,
            blocklist_cache_ttl=settings.BLOCKLIST_CACHE_TTL_SECONDS,
        )
        trials = TrialService(db=db, plans=plans, trial_limit=settings.FREE_TRIAL_LIMIT)
        credits = CreditService(db=db, plans=plans, audit=audit)
        documents = DocumentGate(
            db=db, plans=plans, trials=trials, credits=credits, audit=audit
        )
        return cls(
            settings=settings,
            db=db,
            cache=cache,
            audit=audit,
            plans=plans,
            fraud=fraud,
            trials=trials,
            credits=credits,
            documents=documents,
            rate_limiter=rate_limiter or RateLimiter(),
        )
