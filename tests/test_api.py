from __future__ import annotations

import httpx
import pytest

from termyx.app import create_app
from termyx.config import Settings
from termyx.db.seeds import seed_blocked_email_domains
from termyx.models.user import Plan, UserAccount
from termyx.services.rate_limiter import RateLimiter


@pytest.fixture
def settings(tmp_path):
    return Settings(AUDIT_LOG_PATH=str(tmp_path / "audit.log"), SEED_BLOCKED_DOMAINS=False)


@pytest.fixture
def limiter():
    return RateLimiter()


@pytest.fixture
def client(settings, db, limiter):
    # ASGITransport does not run the lifespan; tests seed the DB themselves
    app = create_app(settings=settings, db=db, rate_limiter=limiter)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health_skips_rate_limit(client):
    async with client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert "X-RateLimit-Limit" not in response.headers


@pytest.mark.asyncio
async def test_fraud_check_blocks_disposable_email(client, db):
    await seed_blocked_email_domains(db, ["mailinator.com"])

    async with client:
        response = await client.post(
            "/api/fraud-check",
            json={"email": "user@mailinator.com"},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )

    assert response.status_code == 403
    body = response.json()
    assert body["allowed"] is False
    assert body["code"] == "BLOCKED_EMAIL"
    assert body["reason"]


@pytest.mark.asyncio
async def test_fraud_check_allows_clean_signup(client):
    async with client:
        response = await client.post("/api/fraud-check", json={"email": "user@gmail.com"})

    assert response.status_code == 200
    assert response.json() == {"allowed": True}
    assert response.headers["X-RateLimit-Limit"] == "60"


@pytest.mark.asyncio
async def test_fraud_check_validates_email(client):
    async with client:
        missing = await client.post("/api/fraud-check", json={})
        malformed = await client.post("/api/fraud-check", json={"email": "not-an-email"})

    assert missing.status_code == 400
    assert missing.json() == {"error": "Email is required", "allowed": False}
    assert malformed.status_code == 400
    assert malformed.json()["allowed"] is False


@pytest.mark.asyncio
async def test_fraud_check_is_rate_limited_per_ip(client):
    headers = {"X-Real-IP": "198.51.100.9"}
    async with client:
        statuses = [
            (await client.post("/api/fraud-check", json={"email": "a@gmail.com"}, headers=headers)).status_code
            for _ in range(6)
        ]
        other_ip = await client.post(
            "/api/fraud-check", json={"email": "a@gmail.com"}, headers={"X-Real-IP": "198.51.100.10"}
        )

    assert statuses == [200] * 5 + [429]
    assert other_ip.status_code == 200


@pytest.mark.asyncio
async def test_fraud_record_then_check_denies_same_ip(client):
    headers = {"X-Forwarded-For": "192.0.2.44", "User-Agent": "pytest"}
    async with client:
        missing = await client.post("/api/fraud-record", json={}, headers=headers)
        for i in range(3):
            recorded = await client.post(
                "/api/fraud-record", json={"userId": f"user-{i}"}, headers=headers
            )
            assert recorded.json() == {"success": True}
        denied = await client.post(
            "/api/fraud-check", json={"email": "new@gmail.com"}, headers=headers
        )

    assert missing.status_code == 400
    assert denied.status_code == 403
    assert denied.json()["code"] == "IP_ABUSE"


@pytest.mark.asyncio
async def test_user_credits_requires_identity(client):
    async with client:
        response = await client.get("/api/user/credits")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_user_credits_history(client, db):
    user = await db.add_user(UserAccount(credits=3))
    await db.deduct_credit(user.id, description="document:doc-1")

    async with client:
        response = await client.get(
            "/api/user/credits", params={"limit": 10}, headers={"X-User-Id": user.id}
        )
        unknown = await client.get("/api/user/credits", headers={"X-User-Id": "ghost"})

    assert response.status_code == 200
    body = response.json()
    assert body["balance"] == 2
    assert body["stats"] == {"totalEarned": 0, "totalSpent": 1, "transactionCount": 1}
    assert body["transactions"][0]["transaction_type"] == "usage"
    assert body["pagination"]["limit"] == 10
    assert body["pagination"]["hasNextPage"] is False
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_deduct_endpoint(client, db):
    user = await db.add_user(UserAccount(credits=1))

    async with client:
        ok = await client.post(
            "/api/credits/deduct", json={"documentId": "doc-1"}, headers={"X-User-Id": user.id}
        )
        empty = await client.post("/api/credits/deduct", headers={"X-User-Id": user.id})
        unknown = await client.post("/api/credits/deduct", headers={"X-User-Id": "ghost"})

    assert ok.status_code == 200
    assert ok.json() == {"success": True, "newBalance": 0, "previousBalance": 1}
    assert empty.status_code == 402
    assert empty.json() == {"error": "Creditos insuficientes", "code": "NO_CREDITS", "credits": 0}
    assert unknown.status_code == 404

    [entry] = await db.get_audit_entries(user.id)
    assert entry.action == "credit_deducted"


@pytest.mark.asyncio
async def test_validate_eligibility(client, db):
    pro = await db.add_plan(Plan(slug="pro", name="Pro"))
    rich = await db.add_user(UserAccount(credits=4, plan_id=pro.id))
    broke = await db.add_user(UserAccount(credits=0))

    async with client:
        can = await client.get(
            "/api/documents/validate-eligibility", headers={"X-User-Id": rich.id}
        )
        cannot = await client.get(
            "/api/documents/validate-eligibility", headers={"X-User-Id": broke.id}
        )

    assert can.json() == {"canCreate": True, "credits": 4, "plan": "pro", "planName": "Pro"}
    assert cannot.json() == {
        "canCreate": False,
        "credits": 0,
        "plan": "free",
        "planName": "Free",
        "reason": "NO_CREDITS",
    }


@pytest.mark.asyncio
async def test_authorize_free_trial_until_exhausted(client, db):
    user = await db.add_user(UserAccount())
    headers = {"X-User-Id": user.id}

    async with client:
        first = await client.post("/api/documents/authorize", json={"documentId": "d1"}, headers=headers)
        second = await client.post("/api/documents/authorize", json={"documentId": "d2"}, headers=headers)
        third = await client.post("/api/documents/authorize", json={"documentId": "d3"}, headers=headers)

    assert first.status_code == 200
    assert first.json() == {
        "success": True,
        "plan": "free",
        "trial": {"documentsUsed": 1, "documentsRemaining": 1, "limit": 2, "exhausted": False},
    }
    assert first.headers["X-RateLimit-Limit"] == "20"
    assert second.json()["trial"]["exhausted"] is True
    assert third.status_code == 402
    assert third.json()["code"] == "TRIAL_EXHAUSTED"
    assert third.json()["trialLimit"] == 2


@pytest.mark.asyncio
async def test_authorize_paid_and_unknown_user(client, db):
    pro = await db.add_plan(Plan(slug="pro", name="Pro"))
    user = await db.add_user(UserAccount(credits=2, plan_id=pro.id))

    async with client:
        ok = await client.post("/api/documents/authorize", headers={"X-User-Id": user.id})
        unknown = await client.post("/api/documents/authorize", headers={"X-User-Id": "ghost"})

    assert ok.json() == {"success": True, "plan": "pro", "newBalance": 1}
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_middleware_rejects_over_standard_limit(client, limiter):
    for _ in range(60):
        limiter.standard("192.0.2.1")

    async with client:
        response = await client.post(
            "/api/fraud-check",
            json={"email": "a@gmail.com"},
            headers={"X-Forwarded-For": "192.0.2.1"},
        )
        health = await client.get("/api/health", headers={"X-Forwarded-For": "192.0.2.1"})

    assert response.status_code == 429
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert health.status_code == 200


@pytest.mark.asyncio
async def test_direct_clients_get_separate_signup_buckets(settings, db, limiter):
    app = create_app(settings=settings, db=db, rate_limiter=limiter)
    first = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app, client=("1.1.1.1", 5000)),
        base_url="http://test",
    )
    second = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app, client=("2.2.2.2", 5000)),
        base_url="http://test",
    )

    async with first, second:
        statuses = [
            (await first.post("/api/fraud-check", json={"email": "a@gmail.com"})).status_code
            for _ in range(6)
        ]
        other = await second.post("/api/fraud-check", json={"email": "b@gmail.com"})

    assert statuses == [200] * 5 + [429]
    assert other.status_code == 200
