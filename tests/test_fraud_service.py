from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from termyx.cache.memory import InMemoryAsyncCache
from termyx.db.memory import InMemoryDBManager
from termyx.db.seeds import seed_blocked_email_domains
from termyx.errors import ValidationError
from termyx.models.fraud import DeviceFingerprint, IPSignupRecord
from termyx.models.results import DenialCode
from termyx.services.fraud_service import FraudService, extract_email_domain


class ExplodingDB:
    """Stands in for an unreachable database."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise ConnectionError("database unreachable")

        return fail


@pytest.mark.asyncio
async def test_blocked_domain_is_denied(db):
    await seed_blocked_email_domains(db)
    service = FraudService(db=db, cache=InMemoryAsyncCache())

    result = await service.check_signup_fraud(email="user@mailinator.com")

    assert result.allowed is False
    assert result.code == DenialCode.BLOCKED_EMAIL
    assert result.reason


@pytest.mark.asyncio
async def test_domain_match_is_exact_and_case_insensitive(db):
    await seed_blocked_email_domains(db, ["mailinator.com"])
    service = FraudService(db=db)

    upper = await service.check_signup_fraud(email="User@MAILINATOR.COM")
    assert upper.code == DenialCode.BLOCKED_EMAIL

    # Subdomains and look-alikes are not on the list
    sub = await service.check_signup_fraud(email="user@eu.mailinator.com")
    assert sub.allowed is True
    lookalike = await service.check_signup_fraud(email="user@mailinator.com.br")
    assert lookalike.allowed is True


@pytest.mark.asyncio
async def test_clean_signup_is_allowed(db):
    await seed_blocked_email_domains(db)
    service = FraudService(db=db)

    result = await service.check_signup_fraud(email="user@gmail.com")

    assert result.allowed is True
    assert result.code is None


@pytest.mark.asyncio
async def test_fingerprint_used_by_another_user_is_denied(db):
    service = FraudService(db=db)
    await service.record_device_fingerprint("user-1", "fp-abc")

    result = await service.check_signup_fraud(
        email="someone@gmail.com", fingerprint_hash="fp-abc"
    )
    assert result.code == DenialCode.FINGERPRINT_USED

    other = await service.check_signup_fraud(
        email="someone@gmail.com", fingerprint_hash="fp-other"
    )
    assert other.allowed is True


@pytest.mark.asyncio
async def test_own_fingerprint_does_not_deny(db):
    service = FraudService(db=db)
    await service.record_device_fingerprint("user-1", "fp-abc")

    result = await service.check_signup_fraud(
        email="me@gmail.com", fingerprint_hash="fp-abc", user_id="user-1"
    )
    assert result.allowed is True

    await service.record_device_fingerprint("user-2", "fp-abc")
    result = await service.check_signup_fraud(
        email="me@gmail.com", fingerprint_hash="fp-abc", user_id="user-1"
    )
    assert result.code == DenialCode.FINGERPRINT_USED


@pytest.mark.asyncio
@pytest.mark.parametrize("existing, allowed", [(0, True), (2, True), (3, False), (5, False)])
async def test_ip_threshold(db, existing, allowed):
    service = FraudService(db=db)
    for i in range(existing):
        await service.record_ip_signup("10.0.0.1", f"user-{i}")

    result = await service.check_signup_fraud(email="new@gmail.com", ip_address="10.0.0.1")

    assert result.allowed is allowed
    if not allowed:
        assert result.code == DenialCode.IP_ABUSE


@pytest.mark.asyncio
async def test_ip_records_older_than_window_do_not_count(db):
    service = FraudService(db=db)
    stale = datetime.utcnow() - timedelta(hours=25)
    for i in range(5):
        await db.add_ip_signup(
            IPSignupRecord(ip_address="10.0.0.2", user_id=f"old-{i}", created_at=stale)
        )
    await service.record_ip_signup("10.0.0.2", "fresh")

    assert await service.count_signups_from_ip("10.0.0.2") == 1
    result = await service.check_signup_fraud(email="new@gmail.com", ip_address="10.0.0.2")
    assert result.allowed is True


@pytest.mark.asyncio
async def test_first_failing_check_wins(db):
    await seed_blocked_email_domains(db, ["yopmail.com"])
    service = FraudService(db=db)
    await service.record_device_fingerprint("user-1", "fp-abc")
    for i in range(3):
        await service.record_ip_signup("10.0.0.3", f"user-{i}")

    blocked = await service.check_signup_fraud(
        email="x@yopmail.com", ip_address="10.0.0.3", fingerprint_hash="fp-abc"
    )
    assert blocked.code == DenialCode.BLOCKED_EMAIL

    fingerprint = await service.check_signup_fraud(
        email="x@gmail.com", ip_address="10.0.0.3", fingerprint_hash="fp-abc"
    )
    assert fingerprint.code == DenialCode.FINGERPRINT_USED


@pytest.mark.asyncio
@pytest.mark.parametrize("email", ["", "no-at-sign", "@gmail.com", "user@", "a@b@mailinator.com"])
async def test_malformed_email_is_rejected_before_data_access(email):
    service = FraudService(db=ExplodingDB())

    with pytest.raises(ValidationError):
        await service.check_signup_fraud(email=email)
    with pytest.raises(ValidationError):
        await service.check_signup_fraud_safely(email=email)


@pytest.mark.asyncio
async def test_safe_check_fails_open_on_infrastructure_error():
    service = FraudService(db=ExplodingDB())

    result = await service.check_signup_fraud_safely(
        email="user@gmail.com", ip_address="10.0.0.4", fingerprint_hash="fp"
    )

    assert result.allowed is True


@pytest.mark.asyncio
async def test_record_signup_is_best_effort(caplog):
    service = FraudService(db=ExplodingDB())

    await service.record_signup(
        user_id="user-1", ip_address="10.0.0.5", fingerprint_hash="fp", user_agent="ua"
    )

    assert "Error recording IP signup" in caplog.text
    assert "Error recording device fingerprint" in caplog.text


@pytest.mark.asyncio
async def test_record_signup_persists_both_records(db):
    service = FraudService(db=db)

    await service.record_signup(
        user_id="user-1", ip_address="10.0.0.6", fingerprint_hash="fp-1", user_agent="ua"
    )

    assert await service.count_signups_from_ip("10.0.0.6") == 1
    fp = await db.find_device_fingerprint("fp-1")
    assert fp is not None
    assert fp.ip_address == "10.0.0.6"
    assert fp.user_agent == "ua"


@pytest.mark.asyncio
async def test_blocklist_lookups_are_cached(db):
    cache = InMemoryAsyncCache()
    service = FraudService(db=db, cache=cache)

    assert await service.is_email_blocked("a@late-addition.com") is False
    await seed_blocked_email_domains(db, ["late-addition.com"])
    # Cached negative answer until the entry expires
    assert await service.is_email_blocked("a@late-addition.com") is False
    await cache.delete("fraud:blocked_domain:late-addition.com")
    assert await service.is_email_blocked("a@late-addition.com") is True


def test_extract_email_domain():
    assert extract_email_domain("  Foo@Example.COM ") == "example.com"
    with pytest.raises(ValueError):
        extract_email_domain("nope")


@pytest.mark.asyncio
async def test_seeding_is_idempotent(db):
    first = await seed_blocked_email_domains(db)
    second = await seed_blocked_email_domains(db)

    assert first > 0
    assert second == 0


class CorruptFingerprintDB(InMemoryDBManager):
    async def find_device_fingerprint(self, fingerprint_hash, exclude_user_id=None):
        return DeviceFingerprint.model_validate({"fingerprint_hash": fingerprint_hash})


@pytest.mark.asyncio
async def test_safe_check_fails_open_on_malformed_row():
    service = FraudService(db=CorruptFingerprintDB())

    result = await service.check_signup_fraud_safely(
        email="a@gmail.com", fingerprint_hash="h"
    )

    assert result.allowed is True
