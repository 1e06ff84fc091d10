from __future__ import annotations

import logging
from typing import Optional

from ..db.base import BaseDBManager
from ..errors import TrialExhaustedError, UserNotFoundError, ValidationError
from ..logging.audit_logger import AuditLogger
from ..models.results import DenialCode, DocumentAuthorization, TrialUsage
from ..models.user import FREE_PLAN_SLUG
from .credit_service import CreditService
from .gate import SPENDING_POLICY, run_gate
from .plan_service import PlanService
from .trial_service import TrialService, trial_exhausted_message

logger = logging.getLogger(__name__)

NO_CREDITS_MESSAGE = "Creditos insuficientes. Faca upgrade do seu plano."
UNAVAILABLE_MESSAGE = "Nao foi possivel verificar seu saldo. Tente novamente."


class DocumentGate:
    """
    Admission for creating one document.

    Free plan: trial eligibility, then the atomic trial increment.
    Paid plans: credit check, then the atomic credit deduction.
    Fails closed when the checks cannot be evaluated.
    """

    def __init__(
        self,
        db: BaseDBManager,
        plans: PlanService,
        trials: TrialService,
        credits: CreditService,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._db = db
        self._plans = plans
        self._trials = trials
        self._credits = credits
        self._audit = audit

    async def authorize(
        self, user_id: str, document_id: str | None = None
    ) -> DocumentAuthorization:
        if not user_id:
            raise ValidationError("user_id is required")
        return await run_gate(
            "document_authorize",
            self._authorize(user_id, document_id),
            policy=SPENDING_POLICY,
            fallback=DocumentAuthorization(allowed=False, reason=UNAVAILABLE_MESSAGE),
        )

    async def _authorize(
        self, user_id: str, document_id: str | None
    ) -> DocumentAuthorization:
        user = await self._db.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        slug, _ = await self._plans.resolve(user)

        if slug == FREE_PLAN_SLUG:
            return await self._authorize_trial(user_id, slug, document_id)
        return await self._authorize_paid(user_id, slug, document_id)

    async def _authorize_trial(
        self, user_id: str, slug: str, document_id: str | None
    ) -> DocumentAuthorization:
        limit = self._trials.trial_limit
        eligibility = await self._trials.check_free_trial_eligibility(user_id)
        if not eligibility.allowed:
            return DocumentAuthorization(**eligibility.model_dump(), plan=slug)

        try:
            used = await self._trials.increment_free_trial_count(user_id)
        except TrialExhaustedError:
            # Lost the race for the last trial slot
            return DocumentAuthorization(
                allowed=False,
                code=DenialCode.TRIAL_EXHAUSTED,
                reason=trial_exhausted_message(limit),
                plan=slug,
            )

        if self._audit:
            await self._audit.document_authorized(
                user_id, slug, document_id=document_id, free_trial_count=used
            )

        return DocumentAuthorization(
            allowed=True,
            plan=slug,
            trial=TrialUsage(
                documents_used=used,
                documents_remaining=max(0, limit - used),
                limit=limit,
                exhausted=used >= limit,
            ),
        )

    async def _authorize_paid(
        self, user_id: str, slug: str, document_id: str | None
    ) -> DocumentAuthorization:
        check = await self._credits.read_credits(user_id)
        if not check.has_credits:
            return DocumentAuthorization(
                allowed=False,
                code=DenialCode.NO_CREDITS,
                reason=NO_CREDITS_MESSAGE,
                plan=slug,
            )

        deduction = await self._credits.deduct_credit(user_id, document_id=document_id)
        if not deduction.success:
            if deduction.code is DenialCode.NO_CREDITS:
                return DocumentAuthorization(
                    allowed=False,
                    code=DenialCode.NO_CREDITS,
                    reason=NO_CREDITS_MESSAGE,
                    plan=slug,
                )
            return DocumentAuthorization(
                allowed=False, reason=UNAVAILABLE_MESSAGE, plan=slug
            )

        if self._audit:
            await self._audit.document_authorized(user_id, slug, document_id=document_id)

        return DocumentAuthorization(
            allowed=True, plan=slug, new_balance=deduction.new_balance
        )
