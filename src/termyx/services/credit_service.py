from __future__ import annotations

import logging
import math
from typing import Optional

from ..db.base import BaseDBManager
from ..errors import InsufficientCreditsError, ValidationError
from ..logging.audit_logger import AuditLogger
from ..models.results import (
    AddCreditsResult,
    CreditCheckResult,
    CreditHistory,
    CreditStats,
    DeductResult,
    DenialCode,
    Pagination,
)
from ..models.transaction import CREDIT_GRANT_TYPES, TransactionType
from ..models.user import FREE_PLAN_NAME, FREE_PLAN_SLUG
from .gate import SPENDING_POLICY, run_gate
from .plan_service import PlanService

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

NO_CREDITS_RESULT = CreditCheckResult(
    has_credits=False, credits=0, plan=FREE_PLAN_SLUG, plan_name=FREE_PLAN_NAME
)


class CreditService:
    """
    Credit ledger: gates and meters paid document actions.

    Every balance mutation goes through an atomic primitive of the DB layer;
    this class never computes a new balance itself. Reads fail closed.
    """

    def __init__(
        self,
        db: BaseDBManager,
        plans: PlanService,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._db = db
        self._plans = plans
        self._audit = audit

    async def check_credits(self, user_id: str) -> CreditCheckResult:
        if not user_id:
            raise ValidationError("user_id is required")
        return await run_gate(
            "check_credits",
            self.read_credits(user_id),
            policy=SPENDING_POLICY,
            fallback=NO_CREDITS_RESULT,
        )

    async def read_credits(self, user_id: str) -> CreditCheckResult:
        """Ungated balance read; storage errors propagate to the caller."""
        user = await self._db.get_user(user_id)
        if user is None:
            logger.warning("Credit check for unknown user %s", user_id)
            return NO_CREDITS_RESULT
        slug, name = await self._plans.resolve(user)
        return CreditCheckResult(
            has_credits=user.credits > 0,
            credits=user.credits,
            plan=slug,
            plan_name=name,
        )

    async def can_create_document(self, user_id: str) -> bool:
        return (await self.check_credits(user_id)).has_credits

    async def deduct_credit(
        self,
        user_id: str,
        document_id: str | None = None,
    ) -> DeductResult:
        """
        Spend one credit through the atomic `deduct_credit` primitive.

        On any failure the reported balance is the pre-operation one and the
        caller must not adjust credits locally.
        """
        if not user_id:
            raise ValidationError("user_id is required")

        try:
            previous = await self._db.get_user_credits(user_id)
        except Exception:
            logger.exception("Could not read balance for user %s", user_id)
            return DeductResult(success=False, new_balance=0, previous_balance=0)

        if previous <= 0:
            return DeductResult(
                success=False,
                new_balance=0,
                previous_balance=0,
                code=DenialCode.NO_CREDITS,
            )

        try:
            new_balance = await self._db.deduct_credit(
                user_id, description=f"document:{document_id}" if document_id else None
            )
        except InsufficientCreditsError:
            logger.info("Deduction refused for user %s: insufficient credits", user_id)
            return DeductResult(
                success=False,
                new_balance=0,
                previous_balance=previous,
                code=DenialCode.NO_CREDITS,
            )
        except Exception:
            logger.exception("Deduct credit error for user %s", user_id)
            return DeductResult(
                success=False, new_balance=previous, previous_balance=previous
            )

        if self._audit:
            await self._audit.credit_deducted(
                user_id=user_id,
                previous_credits=previous,
                new_credits=new_balance,
                document_id=document_id,
            )

        return DeductResult(
            success=True, new_balance=new_balance, previous_balance=previous
        )

    async def add_credits(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType | str,
        description: str,
    ) -> AddCreditsResult:
        if not user_id:
            raise ValidationError("user_id is required")
        if amount <= 0:
            raise ValidationError("amount must be positive")
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise ValidationError(f"unknown credit type {transaction_type!r}") from None
        if transaction_type not in CREDIT_GRANT_TYPES:
            raise ValidationError("credit type must be one of purchase, bonus, refund")

        try:
            new_balance = await self._db.add_credits(
                user_id, amount, transaction_type, description
            )
        except Exception:
            logger.exception("Add credits error for user %s", user_id)
            return AddCreditsResult(success=False, new_balance=0)

        logger.info(
            "Added %s credits (%s) to user %s; balance %s",
            amount,
            transaction_type.value,
            user_id,
            new_balance,
        )
        return AddCreditsResult(success=True, new_balance=new_balance)

    async def get_credit_history(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> CreditHistory:
        """
        Balance plus a page of transactions (newest first). The earned/spent
        totals cover the returned page only.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        offset = (page - 1) * limit

        balance = await self._db.get_user_credits(user_id)
        transactions = await self._db.get_transactions(user_id, limit=limit, offset=offset)
        total_count = await self._db.count_transactions(user_id)

        total_earned = sum(t.amount for t in transactions if t.amount > 0)
        total_spent = abs(sum(t.amount for t in transactions if t.amount < 0))
        total_pages = math.ceil(total_count / limit)

        return CreditHistory(
            balance=balance,
            stats=CreditStats(
                total_earned=total_earned,
                total_spent=total_spent,
                transaction_count=total_count,
            ),
            transactions=transactions,
            pagination=Pagination(
                page=page,
                limit=limit,
                total_count=total_count,
                total_pages=total_pages,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
        )
