from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel

FREE_PLAN_SLUG = "free"
FREE_PLAN_NAME = "Free"


class Plan(DBSerializableModel):
    """
    Commercial plan a user is subscribed to. Only `slug` drives gating.
    """

    collection_name: ClassVar[str] = "plans"

    id: Optional[str] = Field(default=None)
    slug: str
    name: str


class UserAccount(DBSerializableModel):
    """
    The slice of the Termyx user row the gates read and mutate.

    `credits` is the source of truth for the balance; credit transactions are
    an audit trail only.
    """

    collection_name: ClassVar[str] = "users"

    id: Optional[str] = Field(default=None)
    email: Optional[str] = None
    credits: int = Field(default=0, ge=0)
    plan_id: Optional[str] = Field(
        default=None,
        description="Reference to `plans`; no plan means the free tier.",
    )
    free_trial_used: bool = False
    free_trial_documents_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
