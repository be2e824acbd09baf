import asyncio
import re
from datetime import timedelta

import pytest

from libs.common import auth
from libs.common.cache import CacheKeys
from libs.common.timezone import month_key, now_utc
from libs.schemas import (
    AuditAction,
    CouponStatus,
    DiscountType,
    EmployeeStatus,
    MerchantLocation,
    MerchantStatus,
    PassStatus,
)

from services.coupon.app.core import ClaimService as claim_module
from services.coupon.app.core.ClaimService import (
    ClaimService,
    CouponError,
    best_discount_for,
    haversine_miles,
    is_expired,
    usage_status,
)
from services.coupon.app.core.IdentityService import IdentityError, IdentityService, company_name_from_email
from services.coupon.app.core.QrCodeService import QrCodeService
from services.coupon.app.core.RedeemService import RedeemError, RedeemService, applied_percentage, savings_for
from services.coupon.app.storage.FileStorage import FileStorage

from tests.fakes import (
    FakeCompanyRepository,
    FakeCouponRepository,
    FakeDiscountRepository,
    FakeEmployeeRepository,
    FakeMerchantRepository,
    FakePassRepository,
    FakeUserRepository,
    StubReferralService,
    StubUserService,
    make_company,
    make_coupon,
    make_discount,
    make_employee,
    make_merchant,
    make_user,
    utc,
)

EMPLOYEE_USER = 1
MERCHANT_USER = 5


def _location(lat=None, lng=None) -> MerchantLocation:
    return MerchantLocation(address="1 Main St", city="Austin", state="TX", zipCode="78701", latitude=lat, longitude=lng)


def test_usage_status_resets_in_a_new_month() -> None:
    coupon = make_coupon(usageThisMonth=2, lastResetMonth="2024-01")
    discount = make_discount(monthlyUsageLimit=3)

    january = usage_status(coupon, discount, utc(2024, 1, 20))
    assert january["usedThisMonth"] == 2 and january["remaining"] == 1 and january["canUseNow"]

    february = usage_status(coupon, discount, utc(2024, 2, 3))
    assert february["usedThisMonth"] == 0 and february["remaining"] == 3
    assert february["resetsOn"] == utc(2024, 3, 1)

    unlimited = usage_status(coupon, make_discount(), utc(2024, 1, 20))
    assert unlimited["remaining"] is None and unlimited["canUseNow"]


def test_is_expired() -> None:
    now = utc(2024, 6, 1)
    assert not is_expired(make_coupon(), now)
    assert is_expired(make_coupon(expiresAt=utc(2024, 5, 31)), now)
    assert not is_expired(make_coupon(expiresAt=utc(2024, 6, 2)), now)


def test_haversine_miles() -> None:
    new_york_to_la = haversine_miles(40.7128, -74.0060, 34.0522, -118.2437)
    assert new_york_to_la == pytest.approx(2445, rel=0.01)
    assert haversine_miles(30.0, -97.0, 30.0, -97.0) == 0


def test_best_discount_for_company() -> None:
    discounts = [
        make_discount(1, percentage=10),
        make_discount(2, type=DiscountType.COMPANY, companyName="acme", percentage=15),
        make_discount(3, type=DiscountType.COMPANY, companyId=200, companyName="Acme", percentage=30),
        make_discount(4, type=DiscountType.SPEND_THRESHOLD, minSpend=20, percentage=50),
    ]
    acme = make_company()
    assert best_discount_for(discounts, acme).discountId == 2
    assert best_discount_for(discounts, make_company(200, "Globex")).discountId == 3
    assert best_discount_for(discounts, None).discountId == 1

    private = make_company(300, "Initech", settings={"allowPublicDeals": False})
    assert best_discount_for(discounts, private) is None


class _Coupons:
    def __init__(self, tmp_path, audit, coupons=(), employee=None, merchants=None, discounts=None, company=None):
        self.coupons = FakeCouponRepository(coupons)
        self.employees = FakeEmployeeRepository([employee or make_employee()], {10: "jane@acme.com"})
        self.companies = FakeCompanyRepository([company or make_company()])
        self.merchants = FakeMerchantRepository(merchants or [make_merchant()])
        self.discounts = FakeDiscountRepository(discounts or [make_discount()])
        self.user_service = StubUserService()
        self.qr = QrCodeService(self.coupons, FileStorage(str(tmp_path)))
        self.service = ClaimService(
            self.coupons, self.employees, self.companies, self.merchants, self.discounts,
            self.user_service, self.qr, audit,
        )

    def claim(self, merchant_id=50, discount_id=70):
        return asyncio.run(self.service.claim(EMPLOYEE_USER, merchant_id, discount_id))


def test_claim_creates_coupon_with_qr(tmp_path, audit) -> None:
    ctx = _Coupons(tmp_path, audit)

    coupon = ctx.claim()

    assert coupon.status == CouponStatus.ACTIVE
    assert coupon.lastResetMonth == month_key()
    assert ctx.qr.file_storage.file_exists(coupon.qrCodeUrl)
    assert ctx.coupons.coupons[coupon.couponId].qrCodeUrl == coupon.qrCodeUrl
    assert ctx.user_service.steps == [(EMPLOYEE_USER, "firstDiscountClaimed")]
    assert audit.pending[-1].action == AuditAction.COUPON_CLAIMED


@pytest.mark.parametrize(
    "setup, merchant_id, discount_id, code",
    [
        ({}, None, 70, "ERR-IVD-PARAM"),
        ({}, 50, 71, "ERR-NOT-FOUND"),
        ({"discounts": [make_discount(70, merchant_id=51)]}, 50, 70, "ERR-NOT-FOUND"),
        ({"discounts": [make_discount(isActive=False)]}, 50, 70, "ERR-NOT-FOUND"),
        ({"merchants": [make_merchant(status=MerchantStatus.PENDING)]}, 50, 70, "ERR-IVD-VALUE"),
        ({"employee": make_employee(status=EmployeeStatus.SUSPENDED)}, 50, 70, "ERR-ACCESS-DENIED"),
        ({"coupons": [make_coupon(discountId=69)]}, 50, 70, "ERR-DUP-VALUE"),
        ({"coupons": [make_coupon(status=CouponStatus.CANCELLED)]}, 50, 70, "ERR-ALREADY-USED"),
    ],
)
def test_claim_rejections(tmp_path, audit, setup, merchant_id, discount_id, code) -> None:
    ctx = _Coupons(tmp_path, audit, **setup)
    with pytest.raises(CouponError) as err:
        ctx.claim(merchant_id, discount_id)
    assert err.value.code == code


def test_claim_gives_up_after_repeated_code_collisions(tmp_path, audit, monkeypatch) -> None:
    ctx = _Coupons(tmp_path, audit)
    ctx.coupons.taken_codes.add("TAKEN234")
    monkeypatch.setattr(claim_module, "generate_coupon_code", lambda: "TAKEN234")

    with pytest.raises(CouponError) as err:
        ctx.claim()
    assert err.value.code == "ERR-INTERNAL"


def test_wallet_skips_expired(tmp_path, audit) -> None:
    ctx = _Coupons(tmp_path, audit, coupons=[
        make_coupon(1, "ABCD2345", discountId=70),
        make_coupon(2, "WXYZ6789", discountId=71, expiresAt=now_utc() - timedelta(days=1)),
        make_coupon(3, "PQRS2345", discountId=72, status=CouponStatus.CANCELLED),
    ])

    wallet = asyncio.run(ctx.service.wallet(EMPLOYEE_USER))

    assert [item["coupon"].uniqueCode for item in wallet] == ["ABCD2345"]
    assert wallet[0]["merchant"]["businessName"] == "Joe's Pizza"
    assert wallet[0]["discount"]["percentage"] == 10


def test_coupon_detail_is_owner_only(tmp_path, audit) -> None:
    ctx = _Coupons(tmp_path, audit, coupons=[make_coupon(employeeId=11)])
    with pytest.raises(CouponError) as err:
        asyncio.run(ctx.service.coupon_detail(EMPLOYEE_USER, "ABCD2345"))
    assert err.value.code == "ERR-NOT-FOUND"


def test_explore_sorts_by_distance(tmp_path, audit) -> None:
    merchants = [
        make_merchant(50, 5, businessName="Far Diner", locations=[_location(30.60, -97.70)]),
        make_merchant(51, 6, businessName="Near Cafe", locations=[_location(30.27, -97.74)]),
        make_merchant(52, 7, businessName="Nowhere Grill"),
        make_merchant(53, 8, businessName="Pending Bistro", status=MerchantStatus.PENDING),
    ]
    discounts = [
        make_discount(70, 50),
        make_discount(71, 51, type=DiscountType.COMPANY, companyId=100, companyName="Acme", percentage=25),
    ]
    ctx = _Coupons(tmp_path, audit, merchants=merchants, discounts=discounts,
                   coupons=[make_coupon(merchantId=51, discountId=71)])

    items = asyncio.run(ctx.service.explore_merchants(EMPLOYEE_USER, lat=30.27, lng=-97.74))

    assert [i["businessName"] for i in items] == ["Near Cafe", "Far Diner", "Nowhere Grill"]
    assert items[0]["distance"] == 0 and items[0]["isNegotiated"] and items[0]["hasClaimed"]
    assert items[1]["discount"]["percentage"] == 10 and not items[1]["hasClaimed"]
    assert items[2]["distance"] is None and items[2]["discount"] is None


def test_explore_hides_public_deals_when_disabled(tmp_path, audit) -> None:
    ctx = _Coupons(tmp_path, audit, company=make_company(settings={"allowPublicDeals": False}))

    items = asyncio.run(ctx.service.explore_merchants(EMPLOYEE_USER, search="joe"))

    assert len(items) == 1
    assert items[0]["discount"] is None
    assert "distance" not in items[0]


def test_applied_percentage_and_savings() -> None:
    assert applied_percentage(10, first_time=True) == 15
    assert applied_percentage(10, first_time=False) == 10
    assert applied_percentage(98, first_time=True) == 100
    assert savings_for(40, 15) == 6.0
    assert savings_for(None, 15) is None


class _Redeem:
    def __init__(self, cache, audit, coupon=None, discount=None, employee=None, merchant=None):
        self.coupons = FakeCouponRepository([coupon or make_coupon()])
        self.employees = FakeEmployeeRepository([employee or make_employee()])
        self.companies = FakeCompanyRepository([make_company()])
        self.merchants = FakeMerchantRepository([merchant or make_merchant(), make_merchant(51, 6)])
        self.discounts = FakeDiscountRepository([discount or make_discount()])
        self.user_service = StubUserService()
        self.referrals = StubReferralService()
        self.service = RedeemService(
            self.coupons, self.employees, self.companies, self.merchants, self.discounts,
            self.user_service, self.referrals, cache=cache, audit=audit,
        )

    def redeem(self, code="ABCD2345", user_id=MERCHANT_USER, **kwargs):
        return asyncio.run(self.service.redeem(user_id, code, **kwargs))


def test_first_redemption_gets_bonus(cache, audit) -> None:
    ctx = _Redeem(cache, audit)

    first = ctx.redeem(" abcd2345 ", notes="table 4", order_amount=40)

    assert first["appliedPercentage"] == 15 and first["isFirstTimeBonus"]
    assert first["savings"] == 6.0 and first["usageRemaining"] is None
    assert ctx.user_service.steps == [(EMPLOYEE_USER, "firstDiscountUsed")]
    assert ctx.referrals.completed == [EMPLOYEE_USER]

    stored = ctx.coupons.coupons[1]
    assert stored.status == CouponStatus.ACTIVE
    assert stored.usageThisMonth == 1 and stored.usageHistory[0].notes == "table 4"

    second = ctx.redeem()
    assert second["appliedPercentage"] == 10 and not second["isFirstTimeBonus"]
    assert ctx.coupons.coupons[1].usageThisMonth == 2
    assert ctx.referrals.completed == [EMPLOYEE_USER]
    assert audit.pending[-1].action == AuditAction.COUPON_REDEEMED


def test_monthly_limit(cache, audit) -> None:
    ctx = _Redeem(cache, audit, discount=make_discount(monthlyUsageLimit=2))
    ctx.coupons.prior_usage.add(10)

    assert ctx.redeem()["usageRemaining"] == 1
    assert ctx.redeem()["usageRemaining"] == 0
    with pytest.raises(RedeemError) as err:
        ctx.redeem()
    assert err.value.code == "ERR-LIMIT-REACHED"


def test_counter_from_an_earlier_month_is_reset(cache, audit) -> None:
    ctx = _Redeem(
        cache, audit,
        coupon=make_coupon(usageThisMonth=5, lastResetMonth="2020-01"),
        discount=make_discount(monthlyUsageLimit=1),
    )
    ctx.coupons.prior_usage.add(10)

    result = ctx.redeem()

    assert result["usageRemaining"] == 0
    assert ctx.coupons.coupons[1].lastResetMonth == month_key()
    assert ctx.coupons.coupons[1].usageThisMonth == 1


def test_concurrent_redemption_conflicts(cache, audit) -> None:
    ctx = _Redeem(cache, audit)
    stale = ctx.coupons.coupons[1]
    # another till redeems between our read and our write
    ctx.coupons.coupons[1] = stale.model_copy(update={"usageThisMonth": 1})

    async def read_stale(code):
        return stale

    ctx.coupons.find_by_code = read_stale

    with pytest.raises(RedeemError) as err:
        ctx.redeem()
    assert err.value.code == "ERR-CONFLICT"
    assert ctx.user_service.steps == []


@pytest.mark.parametrize(
    "setup, user_id, code",
    [
        ({}, 6, "ERR-FORBIDDEN"),
        ({"merchant": make_merchant(status=MerchantStatus.SUSPENDED)}, MERCHANT_USER, "ERR-FORBIDDEN"),
        ({"coupon": make_coupon(status=CouponStatus.CANCELLED)}, MERCHANT_USER, "ERR-IVD-VALUE"),
        ({"employee": make_employee(status=EmployeeStatus.BANNED)}, MERCHANT_USER, "ERR-ACCESS-DENIED"),
        ({}, 99, "ERR-NOT-FOUND"),
    ],
)
def test_redeem_rejections(cache, audit, setup, user_id, code) -> None:
    ctx = _Redeem(cache, audit, **setup)
    with pytest.raises(RedeemError) as err:
        ctx.redeem(user_id=user_id)
    assert err.value.code == code


def test_redeem_expired_coupon_marks_it_expired(cache, audit) -> None:
    ctx = _Redeem(cache, audit, coupon=make_coupon(expiresAt=now_utc() - timedelta(minutes=1)))
    with pytest.raises(RedeemError) as err:
        ctx.redeem()
    assert err.value.code == "ERR-EXPIRED"
    assert ctx.coupons.coupons[1].status == CouponStatus.EXPIRED


def test_preview(cache, audit) -> None:
    ctx = _Redeem(cache, audit)

    result = asyncio.run(ctx.service.preview(MERCHANT_USER, "abcd2345"))

    assert result["result"] == "VALID"
    assert result["employee"] == {"name": "Jane Doe", "company": "Acme"}
    assert result["discount"]["firstTimeBonus"] == 5
    assert asyncio.run(cache.get(CacheKeys.coupon_code("ABCD2345")))["uniqueCode"] == "ABCD2345"

    ctx.redeem()
    assert asyncio.run(cache.get(CacheKeys.coupon_code("ABCD2345"))) is None
    again = asyncio.run(ctx.service.preview(MERCHANT_USER, "ABCD2345"))
    assert again["discount"]["firstTimeBonus"] is None
    assert again["usageStatus"]["usedThisMonth"] == 1


@pytest.mark.parametrize(
    "setup, code, result",
    [
        ({"coupon": make_coupon(code="ZZZZ2345")}, "ABCD2345", "NOT_FOUND"),
        ({"coupon": make_coupon(merchantId=51)}, "ABCD2345", "INVALID_DATA"),
        ({"coupon": make_coupon(status=CouponStatus.CANCELLED)}, "ABCD2345", "CANCELLED"),
        ({"coupon": make_coupon(status=CouponStatus.REDEEMED)}, "ABCD2345", "ALREADY_REDEEMED"),
        ({"coupon": make_coupon(expiresAt=utc(2020, 1, 1))}, "ABCD2345", "EXPIRED"),
        ({"employee": make_employee(status=EmployeeStatus.PENDING)}, "ABCD2345", "EMPLOYEE_INACTIVE"),
    ],
)
def test_preview_results(cache, audit, setup, code, result) -> None:
    ctx = _Redeem(cache, audit, **setup)
    with pytest.raises(RedeemError) as err:
        asyncio.run(ctx.service.preview(MERCHANT_USER, code))
    assert err.value.extra["result"] == result


class _Identity:
    def __init__(self, employee=None, user=None, companies=None, ttl=10, discounts=()):
        self.employees = FakeEmployeeRepository([employee or make_employee()], {10: "jane@acme.com"})
        self.users = FakeUserRepository([user or make_user()])
        self.companies = FakeCompanyRepository([make_company()] if companies is None else companies)
        self.passes = FakePassRepository()
        self.merchants = FakeMerchantRepository([make_merchant()])
        self.discounts = FakeDiscountRepository(discounts)
        self.user_service = StubUserService()
        self.service = IdentityService(
            self.employees,
            self.companies,
            self.users,
            self.passes,
            self.merchants,
            self.discounts,
            self.user_service,
            token_ttl_minutes=ttl,
        )

    def token(self):
        return asyncio.run(self.service.create_verification_token(EMPLOYEE_USER))["token"]


def test_verification_token_round_trip(monkeypatch) -> None:
    monkeypatch.setenv("APP_URL", "https://corbez.test")
    ctx = _Identity()

    issued = asyncio.run(ctx.service.create_verification_token(EMPLOYEE_USER))
    assert issued["qrUrl"] == f"https://corbez.test/verify/{issued['token']}"

    verified = asyncio.run(ctx.service.verify_token(issued["token"]))
    assert verified == {
        "verified": True,
        "employeeName": "Jane Doe",
        "companyName": "Acme",
        "email": "jane@acme.com",
        "discount": {"percentage": 0, "name": "No discount configured", "type": "NONE"},
    }


def test_verification_falls_back_to_email_domain() -> None:
    ctx = _Identity(user=make_user(email="jane@globex.io"), companies=[])
    assert asyncio.run(ctx.service.verify_token(ctx.token()))["companyName"] == "Globex"
    assert company_name_from_email("nobody") is None


def test_verification_attaches_the_merchant_discount() -> None:
    ctx = _Identity(
        discounts=[
            make_discount(1, percentage=10),
            make_discount(2, type=DiscountType.COMPANY, companyName="Acme", percentage=20, priority=5),
            make_discount(3, merchant_id=51, type=DiscountType.COMPANY, companyName="Acme", percentage=30),
        ]
    )

    verified = asyncio.run(ctx.service.verify_token(ctx.token(), merchant_user_id=MERCHANT_USER))
    assert verified["email"] == "jane@acme.com"
    assert verified["discount"] == {"percentage": 20, "name": "Lunch deal", "type": "COMPANY"}

    unknown = asyncio.run(ctx.service.verify_token(ctx.token(), merchant_user_id=99))
    assert unknown["discount"]["type"] == "NONE"

    base_only = _Identity(companies=[make_company(name="Globex")], discounts=[make_discount(1, percentage=10)])
    fallback = asyncio.run(base_only.service.verify_token(base_only.token(), merchant_user_id=MERCHANT_USER))
    assert fallback["discount"] == {"percentage": 10, "name": "Lunch deal", "type": "BASE"}


def test_verification_token_rejections() -> None:
    expired = _Identity(ttl=-1)
    with pytest.raises(IdentityError) as err:
        asyncio.run(expired.service.verify_token(expired.token()))
    assert err.value.code == "ERR-EXPIRED"

    ctx = _Identity()
    access_token = auth.issue_tokens("employee", EMPLOYEE_USER).access_token
    with pytest.raises(IdentityError) as err:
        asyncio.run(ctx.service.verify_token(access_token))
    assert err.value.code == "ERR-IVD-VALUE"

    unverified = _Identity(user=make_user(emailVerified=False))
    with pytest.raises(IdentityError) as err:
        asyncio.run(unverified.service.verify_token(unverified.token()))
    assert err.value.code == "ERR-FORBIDDEN"

    suspended = _Identity(employee=make_employee(status=EmployeeStatus.SUSPENDED, suspensionReason="Abuse"))
    with pytest.raises(IdentityError) as err:
        asyncio.run(suspended.service.verify_token(suspended.token()))
    assert err.value.code == "ERR-ACCESS-DENIED"
    assert "Abuse" in err.value.message


def test_employee_pass_lifecycle() -> None:
    ctx = _Identity()

    created = asyncio.run(ctx.service.get_or_create_pass(EMPLOYEE_USER))
    again = asyncio.run(ctx.service.get_or_create_pass(EMPLOYEE_USER))
    employee_pass = created["pass"]

    assert re.fullmatch(r"PASS-10-[0-9a-f]{6}", employee_pass.passId)
    assert again["pass"].passId == employee_pass.passId
    assert ctx.user_service.steps == [(EMPLOYEE_USER, "walletPassAdded")] * 2

    payload = created["qrPayload"]
    verified = asyncio.run(ctx.service.verify_pass(payload["passId"], payload["signature"]))
    assert verified["pass"].usageCount == 1
    assert verified["companyName"] == "Acme"

    with pytest.raises(IdentityError) as err:
        asyncio.run(ctx.service.verify_pass(payload["passId"], "0" * 16))
    assert err.value.code == "ERR-IVD-VALUE"

    asyncio.run(ctx.service.revoke_pass(EMPLOYEE_USER))
    assert ctx.passes.passes[employee_pass.passId].status == PassStatus.REVOKED
    with pytest.raises(IdentityError) as err:
        asyncio.run(ctx.service.verify_pass(payload["passId"], payload["signature"]))
    assert err.value.code == "ERR-NOT-FOUND"
    with pytest.raises(IdentityError) as err:
        asyncio.run(ctx.service.verify_pass(None, None))
    assert err.value.code == "ERR-IVD-PARAM"


def test_pass_of_inactive_employee_is_denied() -> None:
    ctx = _Identity()
    payload = asyncio.run(ctx.service.get_or_create_pass(EMPLOYEE_USER))["qrPayload"]
    ctx.employees.employees[10] = make_employee(status=EmployeeStatus.INACTIVE)

    with pytest.raises(IdentityError) as err:
        asyncio.run(ctx.service.verify_pass(payload["passId"], payload["signature"]))
    assert err.value.code == "ERR-ACCESS-DENIED"


def test_qr_regenerate_replaces_stored_image(tmp_path) -> None:
    coupons = FakeCouponRepository([make_coupon()])
    storage = FileStorage(str(tmp_path))
    service = QrCodeService(coupons, storage)

    first = asyncio.run(service.regenerate(coupons.coupons[1]))
    second = asyncio.run(service.regenerate(first))

    assert not storage.file_exists(first.qrCodeUrl)
    assert storage.file_exists(second.qrCodeUrl)
    assert coupons.coupons[1].qrCodeUrl == second.qrCodeUrl
    assert service.image(second).startswith(b"\x89PNG")


def test_qr_image_renders_when_file_is_missing(tmp_path) -> None:
    service = QrCodeService(FakeCouponRepository(), FileStorage(str(tmp_path)))
    coupon = make_coupon(qrCodeUrl="8d3a2f3e-2f7e-4a8f-9b55-0c1c2b5d3e11")
    assert service.image(coupon).startswith(b"\x89PNG")
    assert FileStorage(str(tmp_path)).get_file_path("../../etc/passwd") is None
