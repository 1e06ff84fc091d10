from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional

from ..models.audit import AuditEntry
from ..models.fraud import BlockedEmailDomain, DeviceFingerprint, IPSignupRecord
from ..models.transaction import CreditTransaction, TransactionType
from ..models.user import Plan, UserAccount


class BaseDBManager(ABC):
    """
    DB-agnostic async manager interface.

    Plain reads and inserts are not coordinated across requests. The three
    balance/counter mutations (`deduct_credit`, `add_credits`,
    `increment_free_trial_count`) are the atomic server-side primitives:
    implementations must apply the check and the write as one operation.
    """

    @abstractmethod
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Provide an atomic transaction context if the backend supports it.
        """
        yield

    # User operations
    @abstractmethod
    async def add_user(self, user: UserAccount) -> UserAccount: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserAccount]: ...

    @abstractmethod
    async def update_user(self, user: UserAccount) -> UserAccount: ...

    @abstractmethod
    async def get_user_credits(self, user_id: str) -> int:
        """Current balance; raises `UserNotFoundError` for unknown users."""
        ...

    # Plans
    @abstractmethod
    async def add_plan(self, plan: Plan) -> Plan: ...

    @abstractmethod
    async def get_plan(self, plan_id: str) -> Optional[Plan]: ...

    # Atomic primitives
    @abstractmethod
    async def deduct_credit(self, user_id: str, description: str | None = None) -> int:
        """
        Decrement the balance by one and log a usage transaction. The log
        write is best-effort and never fails a committed decrement.

        Returns the new balance. Raises `InsufficientCreditsError` if the
        balance is already <= 0, leaving it untouched.
        """
        ...

    @abstractmethod
    async def add_credits(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str | None = None,
    ) -> int:
        """Add `amount` to the balance, log the transaction, return the new balance."""
        ...

    @abstractmethod
    async def increment_free_trial_count(self, user_id: str, limit: int) -> int:
        """
        Increment `free_trial_documents_count` if it is below `limit` and set
        `free_trial_used` to `new_count >= limit`.

        Returns the new count. Raises `TrialExhaustedError` when the count has
        already reached `limit`.
        """
        ...

    # Credit transactions
    @abstractmethod
    async def get_transactions(
        self, user_id: str, limit: int, offset: int = 0
    ) -> List[CreditTransaction]:
        """Transactions for a user, newest first."""
        ...

    @abstractmethod
    async def count_transactions(self, user_id: str) -> int: ...

    # Fraud prevention
    @abstractmethod
    async def get_blocked_email_domain(self, domain: str) -> Optional[BlockedEmailDomain]: ...

    @abstractmethod
    async def upsert_blocked_email_domain(self, entry: BlockedEmailDomain) -> bool:
        """Insert the domain unless it exists. Returns True if inserted."""
        ...

    @abstractmethod
    async def find_device_fingerprint(
        self, fingerprint_hash: str, exclude_user_id: str | None = None
    ) -> Optional[DeviceFingerprint]:
        """Any record with this hash, optionally ignoring one user's records."""
        ...

    @abstractmethod
    async def add_device_fingerprint(self, fingerprint: DeviceFingerprint) -> DeviceFingerprint: ...

    @abstractmethod
    async def add_ip_signup(self, record: IPSignupRecord) -> IPSignupRecord: ...

    @abstractmethod
    async def count_ip_signups_since(self, ip_address: str, since: datetime) -> int: ...

    # Audit
    @abstractmethod
    async def add_audit_entry(self, entry: AuditEntry) -> AuditEntry: ...

    @abstractmethod
    async def get_audit_entries(self, user_id: str) -> List[AuditEntry]: ...
