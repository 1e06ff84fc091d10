from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    BONUS = "bonus"
    REFUND = "refund"
    USAGE = "usage"


# Types accepted by CreditService.add_credits
CREDIT_GRANT_TYPES = frozenset(
    {TransactionType.PURCHASE, TransactionType.BONUS, TransactionType.REFUND}
)


class CreditTransaction(DBSerializableModel):
    """
    Audit record of a balance change. `amount` is signed: grants are
    positive, usage is negative.
    """

    collection_name: ClassVar[str] = "credit_transactions"

    id: Optional[str] = Field(default=None)
    user_id: str
    amount: int
    balance_after: int
    transaction_type: TransactionType
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
