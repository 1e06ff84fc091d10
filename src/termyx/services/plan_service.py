from __future__ import annotations

from typing import Optional

from ..cache.base import AsyncCacheBackend
from ..db.base import BaseDBManager
from ..models.user import FREE_PLAN_NAME, FREE_PLAN_SLUG, Plan, UserAccount


class PlanService:
    """
    Resolves a user's plan, caching plan rows since they rarely change.
    A user without a plan, or pointing at a missing one, is on the free tier.
    """

    def __init__(
        self,
        db: BaseDBManager,
        cache: Optional[AsyncCacheBackend] = None,
        cache_ttl: int = 300,
    ) -> None:
        self._db = db
        self._cache = cache
        self._cache_ttl = cache_ttl

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        if self._cache:
            cached = await self._cache.get(self._plan_cache_key(plan_id))
            if isinstance(cached, Plan):
                return cached
        plan = await self._db.get_plan(plan_id)
        if plan is not None and self._cache:
            await self._cache.set(self._plan_cache_key(plan_id), plan, ttl_seconds=self._cache_ttl)
        return plan

    async def resolve(self, user: UserAccount) -> tuple[str, str]:
        """Return `(slug, name)` of the user's plan."""
        if user.plan_id is None:
            return FREE_PLAN_SLUG, FREE_PLAN_NAME
        plan = await self.get_plan(user.plan_id)
        if plan is None:
            return FREE_PLAN_SLUG, FREE_PLAN_NAME
        return plan.slug, plan.name

    @staticmethod
    def _plan_cache_key(plan_id: str) -> str:
        return f"plan:{plan_id}"
