from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..cache.base import AsyncCacheBackend
from ..db.base import BaseDBManager
from ..errors import ValidationError
from ..models.fraud import DeviceFingerprint, IPSignupRecord
from ..models.results import DenialCode, GateResult
from .gate import SIGNUP_ADMISSION_POLICY, run_gate

logger = logging.getLogger(__name__)

BLOCKED_EMAIL_MESSAGE = (
    "Este provedor de email nao e permitido. Use um email pessoal ou corporativo."
)
FINGERPRINT_USED_MESSAGE = "Este dispositivo ja foi usado para criar uma conta."
IP_ABUSE_MESSAGE = "Muitas contas criadas deste endereco. Tente novamente mais tarde."


def extract_email_domain(email: str) -> str:
    """
    Lowercased part after the `@`. Raises ValidationError unless there is
    exactly one `@` with text on both sides, so `a@b@host` has no ambiguous domain.
    """
    email = (email or "").strip()
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain or "@" in domain:
        raise ValidationError("invalid email address")
    return domain.lower()


class FraudService:
    """
    Signup fraud gate and the recorder that feeds it.

    Checks are read-only. Recording happens after the account exists and is
    not atomic with the checks: two concurrent signups from a fresh IP can
    both pass the IP count before either is recorded.
    """

    def __init__(
        self,
        db: BaseDBManager,
        cache: Optional[AsyncCacheBackend] = None,
        ip_signup_limit: int = 3,
        ip_window_hours: int = 24,
        blocklist_cache_ttl: int = 600,
    ) -> None:
        self._db = db
        self._cache = cache
        self._ip_signup_limit = ip_signup_limit
        self._ip_window_hours = ip_window_hours
        self._blocklist_cache_ttl = blocklist_cache_ttl

    async def is_email_blocked(self, email: str) -> bool:
        domain = extract_email_domain(email)
        if self._cache:
            cached = await self._cache.get(self._blocked_domain_cache_key(domain))
            if isinstance(cached, bool):
                return cached
        blocked = await self._db.get_blocked_email_domain(domain) is not None
        if self._cache:
            await self._cache.set(
                self._blocked_domain_cache_key(domain),
                blocked,
                ttl_seconds=self._blocklist_cache_ttl,
            )
        return blocked

    async def is_device_fingerprint_used(
        self, fingerprint_hash: str, exclude_user_id: str | None = None
    ) -> bool:
        found = await self._db.find_device_fingerprint(
            fingerprint_hash, exclude_user_id=exclude_user_id
        )
        return found is not None

    async def count_signups_from_ip(
        self, ip_address: str, hours: int | None = None, now: datetime | None = None
    ) -> int:
        hours = self._ip_window_hours if hours is None else hours
        cutoff = (now or datetime.utcnow()) - timedelta(hours=hours)
        return await self._db.count_ip_signups_since(ip_address, cutoff)

    async def check_signup_fraud(
        self,
        email: str,
        ip_address: str | None = None,
        fingerprint_hash: str | None = None,
        user_id: str | None = None,
    ) -> GateResult:
        """
        Run the signup checks in order; the first failing one decides.

        `user_id` is only known when re-checking an existing account; its own
        fingerprint records never count against it.
        """
        if await self.is_email_blocked(email):
            logger.info("Signup denied: blocked email domain")
            return GateResult.deny(DenialCode.BLOCKED_EMAIL, BLOCKED_EMAIL_MESSAGE)

        if fingerprint_hash and await self.is_device_fingerprint_used(
            fingerprint_hash, exclude_user_id=user_id
        ):
            logger.info("Signup denied: device fingerprint already in use")
            return GateResult.deny(DenialCode.FINGERPRINT_USED, FINGERPRINT_USED_MESSAGE)

        if ip_address:
            signups = await self.count_signups_from_ip(ip_address)
            if signups >= self._ip_signup_limit:
                logger.info(
                    "Signup denied: %s signups from %s in %sh",
                    signups,
                    ip_address,
                    self._ip_window_hours,
                )
                return GateResult.deny(DenialCode.IP_ABUSE, IP_ABUSE_MESSAGE)

        return GateResult.allow()

    async def check_signup_fraud_safely(
        self,
        email: str,
        ip_address: str | None = None,
        fingerprint_hash: str | None = None,
        user_id: str | None = None,
    ) -> GateResult:
        """
        `check_signup_fraud` under the signup admission policy (fail open).
        """
        return await run_gate(
            "signup_fraud",
            self.check_signup_fraud(email, ip_address, fingerprint_hash, user_id),
            policy=SIGNUP_ADMISSION_POLICY,
            fallback=GateResult.allow(),
        )

    async def record_ip_signup(self, ip_address: str, user_id: str) -> IPSignupRecord:
        return await self._db.add_ip_signup(
            IPSignupRecord(ip_address=ip_address, user_id=user_id)
        )

    async def record_device_fingerprint(
        self,
        user_id: str,
        fingerprint_hash: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> DeviceFingerprint:
        return await self._db.add_device_fingerprint(
            DeviceFingerprint(
                user_id=user_id,
                fingerprint_hash=fingerprint_hash,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

    async def record_signup(
        self,
        user_id: str,
        ip_address: str | None = None,
        fingerprint_hash: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """
        Persist signup evidence. Each write is independent and best-effort;
        failures are logged and never reach the caller.
        """
        if not user_id:
            raise ValidationError("user_id is required")

        if ip_address:
            try:
                await self.record_ip_signup(ip_address, user_id)
            except Exception:
                logger.exception("Error recording IP signup for user %s", user_id)

        if fingerprint_hash:
            try:
                await self.record_device_fingerprint(
                    user_id, fingerprint_hash, ip_address, user_agent
                )
            except Exception:
                logger.exception("Error recording device fingerprint for user %s", user_id)

    @staticmethod
    def _blocked_domain_cache_key(domain: str) -> str:
        return f"fraud:blocked_domain:{domain}"
