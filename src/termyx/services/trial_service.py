from __future__ import annotations

import logging

from ..db.base import BaseDBManager
from ..errors import UserNotFoundError, ValidationError
from ..models.results import DenialCode, GateResult
from ..models.user import FREE_PLAN_SLUG
from .plan_service import PlanService

logger = logging.getLogger(__name__)

FREE_TRIAL_LIMIT = 2


def trial_exhausted_message(limit: int) -> str:
    return (
        f"Voce ja utilizou seus {limit} documentos gratuitos. "
        "Assine um plano para continuar."
    )


class TrialService:
    """
    Free-tier document allowance. Paid plans bypass it entirely.
    """

    def __init__(
        self,
        db: BaseDBManager,
        plans: PlanService,
        trial_limit: int = FREE_TRIAL_LIMIT,
    ) -> None:
        self._db = db
        self._plans = plans
        self._trial_limit = trial_limit

    @property
    def trial_limit(self) -> int:
        return self._trial_limit

    async def check_free_trial_eligibility(self, user_id: str) -> GateResult:
        if not user_id:
            raise ValidationError("user_id is required")

        user = await self._db.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        slug, _ = await self._plans.resolve(user)
        if slug != FREE_PLAN_SLUG:
            return GateResult.allow()

        if user.free_trial_documents_count >= self._trial_limit:
            logger.info(
                "Free trial exhausted for user %s (%s documents)",
                user_id,
                user.free_trial_documents_count,
            )
            return GateResult.deny(
                DenialCode.TRIAL_EXHAUSTED, trial_exhausted_message(self._trial_limit)
            )

        return GateResult.allow()

    async def increment_free_trial_count(self, user_id: str) -> int:
        """
        Atomically count one more trial document and return the new count.

        Raises `TrialExhaustedError` if a concurrent request already used the
        last slot.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        return await self._db.increment_free_trial_count(user_id, self._trial_limit)
