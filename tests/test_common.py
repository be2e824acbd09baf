import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from libs.common import auth
from libs.common.audit import AuditLogger, AuditQuery, InMemoryAuditLogStore, get_audit_logger
from libs.common.cache import Cache, CacheKeys, InMemoryBackend
from libs.common.errors import ServiceError, forbidden, to_http_exception
from libs.common.mailer import Mailer
from libs.common.qr import (
    CODE_ALPHABET,
    coupon_verification_url,
    generate_coupon_code,
    generate_invite_code,
    generate_public_user_id,
    render_qr_png,
    sign_payload,
    verify_signature,
)
from libs.common.ratelimit import RateLimit
from libs.common.slug import slugify
from libs.common.timezone import add_months, ensure_utc, first_of_next_month, month_key
from libs.schemas import AuditAction, AuditSeverity


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _FailingStore:
    async def insert_many(self, entries) -> None:
        raise RuntimeError("database is down")

    async def query(self, filters):
        return []


def test_cache_round_trips_json_and_expires() -> None:
    clock = _Clock()
    cache = Cache(InMemoryBackend(clock=clock))

    async def scenario():
        await cache.set("k", {"a": 1}, ttl=10)
        first = await cache.get("k")
        clock.now += 11
        second = await cache.get("k")
        return first, second

    first, second = asyncio.run(scenario())
    assert first == {"a": 1}
    assert second is None


def test_cache_invalidate_by_pattern(cache: Cache) -> None:
    async def scenario():
        await cache.set(CacheKeys.merchant_discounts(1), [1])
        await cache.set(CacheKeys.merchant_discounts(2), [2])
        await cache.set(CacheKeys.coupon_code("ABCD2345"), {"x": 1})
        await cache.invalidate("merchant:*")
        return (
            await cache.get(CacheKeys.merchant_discounts(1)),
            await cache.get(CacheKeys.merchant_discounts(2)),
            await cache.get(CacheKeys.coupon_code("ABCD2345")),
        )

    assert asyncio.run(scenario()) == (None, None, {"x": 1})


def test_cache_get_or_set_calls_fetcher_once(cache: Cache) -> None:
    calls = []

    async def fetch():
        calls.append(1)
        return {"value": 42}

    async def scenario():
        a = await cache.get_or_set("key", fetch)
        b = await cache.get_or_set("key", fetch)
        return a, b

    assert asyncio.run(scenario()) == ({"value": 42}, {"value": 42})
    assert len(calls) == 1


def test_cache_incr_resets_after_window() -> None:
    clock = _Clock()
    cache = Cache(InMemoryBackend(clock=clock))

    async def scenario():
        counts = [await cache.incr("hits", ttl=60) for _ in range(3)]
        clock.now += 61
        counts.append(await cache.incr("hits", ttl=60))
        return counts

    assert asyncio.run(scenario()) == [1, 2, 3, 1]


def test_rate_limit_unknown_config() -> None:
    with pytest.raises(KeyError):
        RateLimit("nope")


def test_rate_limit_blocks_after_limit(cache: Cache, audit: AuditLogger) -> None:
    app = FastAPI()

    @app.post("/login", dependencies=[Depends(RateLimit("auth", cache=cache))])
    def login():
        return {"ok": True}

    app.dependency_overrides[get_audit_logger] = lambda: audit
    client = TestClient(app)

    for i in range(5):
        response = client.post("/login")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == str(4 - i)

    blocked = client.post("/login")
    assert blocked.status_code == 429
    assert blocked.json()["detail"]["code"] == "ERR-RATE-LIMITED"
    assert blocked.json()["detail"]["retryAfter"] == 900
    assert blocked.headers["Retry-After"] == "900"
    assert [e.action for e in audit.pending] == [AuditAction.RATE_LIMITED]


def test_rate_limit_counts_callers_separately(cache: Cache, audit: AuditLogger) -> None:
    app = FastAPI()

    @app.get("/claim", dependencies=[Depends(RateLimit("couponClaim", cache=cache))])
    def claim():
        return {"ok": True}

    app.dependency_overrides[get_audit_logger] = lambda: audit
    client = TestClient(app)

    for _ in range(5):
        client.get("/claim", headers={"Authorization": "Bearer one"})
    assert client.get("/claim", headers={"Authorization": "Bearer one"}).status_code == 429
    assert client.get("/claim", headers={"Authorization": "Bearer two"}).status_code == 200


def test_signature_detects_tampering() -> None:
    payload = {"type": "coupon", "code": "ABCD2345", "employeeId": 1}
    signature = sign_payload(payload)
    assert len(signature) == 16
    assert verify_signature(payload, signature)
    assert not verify_signature({**payload, "employeeId": 2}, signature)
    assert not verify_signature(payload, "")


def test_generated_codes_use_unambiguous_alphabet() -> None:
    code = generate_coupon_code()
    invite = generate_invite_code()
    public_id = generate_public_user_id()

    assert len(code) == 8 and set(code) <= set(CODE_ALPHABET)
    assert len(invite) == 9 and invite[4] == "-"
    assert public_id.startswith("CB-") and len(public_id) == 9
    for ambiguous in "01IO":
        assert ambiguous not in code


def test_coupon_verification_url_uses_app_url(monkeypatch) -> None:
    monkeypatch.setenv("APP_URL", "https://example.test/")
    assert coupon_verification_url("ABCD2345") == "https://example.test/verify/coupon/ABCD2345"


def test_render_qr_png() -> None:
    assert render_qr_png("https://corbez.com/verify/coupon/ABCD2345").startswith(b"\x89PNG")


def test_month_helpers() -> None:
    assert month_key(datetime(2024, 3, 9, 23, 59, tzinfo=timezone.utc)) == "2024-03"
    assert first_of_next_month(datetime(2024, 12, 15, tzinfo=timezone.utc)) == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 1, 31, tzinfo=timezone.utc), 1) == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert add_months(datetime(2023, 11, 15, tzinfo=timezone.utc), 3) == datetime(2024, 2, 15, tzinfo=timezone.utc)


def test_ensure_utc_tags_naive_values() -> None:
    naive = datetime(2024, 5, 1, 12, 0)
    assert ensure_utc(naive) == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert ensure_utc(None) is None


def test_slugify() -> None:
    assert slugify("Joe's Pizza & Grill") == "joe-s-pizza-grill"
    assert slugify("  ") == "item"


def test_audit_batches_until_critical() -> None:
    store = InMemoryAuditLogStore()
    audit = AuditLogger(store).with_user(7, "ops@corbez.com", "PLATFORM_ADMIN")

    async def scenario():
        await audit.info(AuditAction.LOGIN, "Logged in")
        assert store.entries == []
        await audit.critical(AuditAction.API_ERROR, "Boom", error=ValueError("bad"))

    asyncio.run(scenario())
    assert [e.action for e in store.entries] == [AuditAction.LOGIN, AuditAction.API_ERROR]
    assert store.entries[0].userId == 7
    assert store.entries[1].severity == AuditSeverity.CRITICAL
    assert store.entries[1].errorMessage == "bad"
    assert "errorStack" in store.entries[1].metadata


def test_audit_requeues_batch_when_store_fails() -> None:
    audit = AuditLogger(_FailingStore())

    async def scenario():
        await audit.warn(AuditAction.RATE_LIMITED, "slow down")
        await audit.flush()

    asyncio.run(scenario())
    assert len(audit.pending) == 1

    recovered = InMemoryAuditLogStore()
    audit.use_store(recovered)
    asyncio.run(audit.flush())
    assert audit.pending == []
    assert recovered.entries[0].logId == 1


def test_audit_query_filters(audit: AuditLogger) -> None:
    async def scenario():
        await audit.with_user(1).info(AuditAction.LOGIN, "a")
        await audit.with_user(2).info(AuditAction.LOGIN, "b")
        await audit.log_change(AuditAction.MERCHANT_UPDATED, "Merchant", 9, "edit", {"x": 1}, {"x": 2})
        await audit.flush()
        return await audit.query(AuditQuery(userId=2)), await audit.query(AuditQuery(resource="Merchant"))

    by_user, by_resource = asyncio.run(scenario())
    assert [e.description for e in by_user] == ["b"]
    assert by_resource[0].resourceId == "9"
    assert by_resource[0].changes == {"before": {"x": 1}, "after": {"x": 2}}


def test_service_error_maps_to_http() -> None:
    exc = to_http_exception(ServiceError("ERR-PAYMENT-REQUIRED", "Subscription required", redirectTo="/billing"))
    assert exc.status_code == 402
    assert exc.detail == {"code": "ERR-PAYMENT-REQUIRED", "message": "Subscription required", "redirectTo": "/billing"}
    assert ServiceError("ERR-SOMETHING-NEW").status_code == 400
    assert forbidden().detail == {"code": "ERR-FORBIDDEN"}


def test_tokens_round_trip_and_reject_wrong_type() -> None:
    tokens = auth.issue_tokens("merchant", 12)
    assert auth.verify_access_token(tokens.access_token) == ("merchant", 12)
    assert auth.verify_refresh_token(tokens.refresh_token) == ("merchant", 12)

    with pytest.raises(auth.AuthError) as err:
        auth.verify_refresh_token(tokens.access_token)
    assert err.value.code == "ERR-UNAUTHORIZED"
    with pytest.raises(auth.AuthError):
        auth.verify_access_token(tokens.refresh_token)


def test_expired_access_token_is_rejected() -> None:
    secret, algorithm = auth.get_jwt_config()
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    token = jwt.encode(
        {"sub_type": "employee", "sub_id": 1, "iat": int(issued.timestamp()),
         "exp": int((issued + timedelta(minutes=30)).timestamp()), "type": "access"},
        secret,
        algorithm=algorithm,
    )
    with pytest.raises(auth.AuthError):
        auth.verify_access_token(token)


def test_subject_for_role() -> None:
    assert auth.subject_for_role("EMPLOYEE") == "employee"
    assert auth.subject_for_role("PLATFORM_ADMIN") == "platform_admin"


def test_mailer_without_key_is_dev_mode() -> None:
    result = asyncio.run(Mailer(api_key="").send_welcome_email("a@b.com", "Ann", "EMPLOYEE"))
    assert result.success and result.id == "dev-mode"


def test_mailer_posts_to_resend() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "em_1"})

    mailer = Mailer(api_key="re_test", transport=httpx.MockTransport(handler))
    result = asyncio.run(mailer.send_verification_email("a@b.com", "tok123", "Ann"))

    assert result.success and result.id == "em_1"
    assert seen[0].headers["Authorization"] == "Bearer re_test"
    assert b"tok123" in seen[0].content


def test_mailer_reports_provider_error() -> None:
    mailer = Mailer(api_key="re_test", transport=httpx.MockTransport(lambda r: httpx.Response(422, text="bad from")))
    result = asyncio.run(mailer.send("a@b.com", "Hi", "<p>x</p>"))
    assert not result.success
    assert result.error == "bad from"
