from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .transaction import CreditTransaction


class DenialCode(str, Enum):
    BLOCKED_EMAIL = "BLOCKED_EMAIL"
    FINGERPRINT_USED = "FINGERPRINT_USED"
    IP_ABUSE = "IP_ABUSE"
    TRIAL_EXHAUSTED = "TRIAL_EXHAUSTED"
    NO_CREDITS = "NO_CREDITS"


class GateResult(BaseModel):
    """
    Outcome of an admission gate.

    A policy denial always carries a `code`. A denial without a code means
    the gate could not be evaluated and failed closed.
    """

    allowed: bool
    reason: Optional[str] = None
    code: Optional[DenialCode] = None

    @classmethod
    def allow(cls) -> "GateResult":
        return cls(allowed=True)

    @classmethod
    def deny(cls, code: DenialCode, reason: str) -> "GateResult":
        return cls(allowed=False, code=code, reason=reason)

    @classmethod
    def unavailable(cls, reason: str) -> "GateResult":
        return cls(allowed=False, reason=reason)


class CreditCheckResult(BaseModel):
    has_credits: bool
    credits: int
    plan: str
    plan_name: str


class DeductResult(BaseModel):
    success: bool
    new_balance: int
    previous_balance: int
    code: Optional[DenialCode] = None


class AddCreditsResult(BaseModel):
    success: bool
    new_balance: int


class TrialUsage(BaseModel):
    documents_used: int
    documents_remaining: int
    limit: int
    exhausted: bool


class DocumentAuthorization(GateResult):
    plan: Optional[str] = None
    trial: Optional[TrialUsage] = None
    new_balance: Optional[int] = None


class RateLimitResult(BaseModel):
    success: bool
    limit: int
    remaining: int
    reset: float = Field(description="Epoch seconds at which the window ends.")


class CreditStats(BaseModel):
    total_earned: int = 0
    total_spent: int = 0
    transaction_count: int = 0


class Pagination(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class CreditHistory(BaseModel):
    balance: int
    stats: CreditStats
    transactions: List[CreditTransaction] = Field(default_factory=list)
    pagination: Pagination
