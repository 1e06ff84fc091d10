from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from .base import BaseDBManager
from ..errors import InsufficientCreditsError, TrialExhaustedError, UserNotFoundError
from ..models.audit import AuditEntry
from ..models.fraud import BlockedEmailDomain, DeviceFingerprint, IPSignupRecord
from ..models.transaction import CreditTransaction, TransactionType
from ..models.user import Plan, UserAccount

logger = logging.getLogger(__name__)


class InMemoryDBManager(BaseDBManager):
    """
    Simple in-memory implementation used for tests and local development.
    NOT suitable for production, but exercises the abstraction and services.

    The atomic primitives serialize on a single asyncio lock, which plays the
    role of the row lock a stored procedure would take.
    """

    def __init__(self) -> None:
        self._users: Dict[str, UserAccount] = {}
        self._plans: Dict[str, Plan] = {}
        self._transactions: List[CreditTransaction] = []
        self._blocked_domains: Dict[str, BlockedEmailDomain] = {}
        self._fingerprints: List[DeviceFingerprint] = []
        self._ip_signups: List[IPSignupRecord] = []
        self._audit: List[AuditEntry] = []
        self._lock = asyncio.Lock()
        self._id_counter: int = 0

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        # In-memory backend cannot provide real rollback; this is a no-op.
        yield

    def _require_user(self, user_id: str) -> UserAccount:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        if user.id is None:
            user.id = self._next_id()
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        return self._users.get(user_id)

    async def update_user(self, user: UserAccount) -> UserAccount:
        if user.id is None:
            raise ValueError("User must have id to be updated")
        user.updated_at = datetime.utcnow()
        self._users[user.id] = user
        return user

    async def get_user_credits(self, user_id: str) -> int:
        return self._require_user(user_id).credits

    # Plans
    async def add_plan(self, plan: Plan) -> Plan:
        if plan.id is None:
            plan.id = self._next_id()
        self._plans[plan.id] = plan
        return plan

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get(plan_id)

    # Atomic primitives
    async def deduct_credit(self, user_id: str, description: str | None = None) -> int:
        async with self._lock:
            user = self._require_user(user_id)
            if user.credits <= 0:
                raise InsufficientCreditsError(user_id)
            user.credits -= 1
            user.updated_at = datetime.utcnow()
            self._try_log_transaction(
                user_id, -1, user.credits, TransactionType.USAGE, description
            )
            return user.credits

    async def add_credits(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str | None = None,
    ) -> int:
        async with self._lock:
            user = self._require_user(user_id)
            user.credits += amount
            user.updated_at = datetime.utcnow()
            self._try_log_transaction(
                user_id, amount, user.credits, transaction_type, description
            )
            return user.credits

    async def increment_free_trial_count(self, user_id: str, limit: int) -> int:
        async with self._lock:
            user = self._require_user(user_id)
            if user.free_trial_documents_count >= limit:
                raise TrialExhaustedError(user_id, limit)
            user.free_trial_documents_count += 1
            user.free_trial_used = user.free_trial_documents_count >= limit
            user.updated_at = datetime.utcnow()
            return user.free_trial_documents_count

    def _log_transaction(
        self,
        user_id: str,
        amount: int,
        balance_after: int,
        transaction_type: TransactionType,
        description: str | None,
    ) -> None:
        self._transactions.append(
            CreditTransaction(
                id=self._next_id(),
                user_id=user_id,
                amount=amount,
                balance_after=balance_after,
                transaction_type=transaction_type,
                description=description,
            )
        )

    def _try_log_transaction(
        self,
        user_id: str,
        amount: int,
        balance_after: int,
        transaction_type: TransactionType,
        description: str | None,
    ) -> None:
        # The balance is already committed; the log is audit-only
        try:
            self._log_transaction(
                user_id, amount, balance_after, transaction_type, description
            )
        except Exception:
            logger.exception("Transaction log failed for user %s (amount %s)", user_id, amount)

    # Credit transactions
    async def get_transactions(
        self, user_id: str, limit: int, offset: int = 0
    ) -> List[CreditTransaction]:
        user_txs = [t for t in reversed(self._transactions) if t.user_id == user_id]
        return user_txs[offset : offset + limit]

    async def count_transactions(self, user_id: str) -> int:
        return sum(1 for t in self._transactions if t.user_id == user_id)

    # Fraud prevention
    async def get_blocked_email_domain(self, domain: str) -> Optional[BlockedEmailDomain]:
        return self._blocked_domains.get(domain)

    async def upsert_blocked_email_domain(self, entry: BlockedEmailDomain) -> bool:
        if entry.domain in self._blocked_domains:
            return False
        if entry.id is None:
            entry.id = self._next_id()
        self._blocked_domains[entry.domain] = entry
        return True

    async def find_device_fingerprint(
        self, fingerprint_hash: str, exclude_user_id: str | None = None
    ) -> Optional[DeviceFingerprint]:
        for fp in self._fingerprints:
            if fp.fingerprint_hash != fingerprint_hash:
                continue
            if exclude_user_id is not None and fp.user_id == exclude_user_id:
                continue
            return fp
        return None

    async def add_device_fingerprint(self, fingerprint: DeviceFingerprint) -> DeviceFingerprint:
        if fingerprint.id is None:
            fingerprint.id = self._next_id()
        self._fingerprints.append(fingerprint)
        return fingerprint

    async def add_ip_signup(self, record: IPSignupRecord) -> IPSignupRecord:
        if record.id is None:
            record.id = self._next_id()
        self._ip_signups.append(record)
        return record

    async def count_ip_signups_since(self, ip_address: str, since: datetime) -> int:
        return sum(
            1
            for r in self._ip_signups
            if r.ip_address == ip_address and r.created_at >= since
        )

    # Audit
    async def add_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        if entry.id is None:
            entry.id = self._next_id()
        self._audit.append(entry)
        return entry

    async def get_audit_entries(self, user_id: str) -> List[AuditEntry]:
        return [e for e in self._audit if e.user_id == user_id]
