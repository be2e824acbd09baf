import asyncio
from datetime import timedelta

import pytest

from libs.common.cache import CacheKeys
from libs.common.timezone import ensure_utc, now_utc
from libs.schemas import (
    AppealStatus,
    CompanyStatus,
    CouponStatus,
    DurationUnit,
    EmployeeStatus,
    MerchantStatus,
    ModerationActionType,
    ModerationDuration,
    ModerationReason,
    ModerationTarget,
)

from services.admin.app.core.MerchantReviewService import (
    MerchantReviewError,
    MerchantReviewService,
    verification_flags,
)
from services.admin.app.core.ModerationService import ModerationError, ModerationService, duration_expiry

from tests.fakes import (
    FakeCompanyRepository,
    FakeCouponRepository,
    FakeDiscountRepository,
    FakeEmployeeRepository,
    FakeMailer,
    FakeMerchantRepository,
    FakeModerationRepository,
    FakeUserRepository,
    make_company,
    make_coupon,
    make_discount,
    make_employee,
    make_merchant,
    make_user,
    utc,
)

ADMIN = 99
EMPLOYEE_USER = 1
MERCHANT_USER = 5


@pytest.mark.parametrize(
    "duration, expected",
    [
        (ModerationDuration(value=6, unit=DurationUnit.HOURS), utc(2024, 1, 31, 6)),
        (ModerationDuration(value=7, unit=DurationUnit.DAYS), utc(2024, 2, 7)),
        (ModerationDuration(value=2, unit=DurationUnit.WEEKS), utc(2024, 2, 14)),
        (ModerationDuration(value=1, unit=DurationUnit.MONTHS), utc(2024, 2, 29)),
        (ModerationDuration(value=3, unit=DurationUnit.PERMANENT), None),
        (ModerationDuration(value=0, unit=DurationUnit.DAYS), None),
        (None, None),
    ],
)
def test_duration_expiry(duration, expected) -> None:
    assert duration_expiry(duration, utc(2024, 1, 31)) == expected


class _Moderation:
    def __init__(self, cache, audit, employees=None, coupons=(), discounts=()):
        self.actions = FakeModerationRepository()
        self.employees = FakeEmployeeRepository(employees or [make_employee()])
        self.merchants = FakeMerchantRepository([make_merchant()])
        self.discounts = FakeDiscountRepository(discounts)
        self.companies = FakeCompanyRepository([make_company()])
        self.coupons = FakeCouponRepository(coupons)
        self.cache = cache
        self.service = ModerationService(
            self.actions, self.employees, self.merchants, self.discounts, self.companies, self.coupons,
            cache=cache, audit=audit,
        )

    def run(self, coro):
        return asyncio.run(coro)

    @property
    def employee(self):
        return self.employees.employees[10]


def test_third_warning_suspends_for_a_week(cache, audit) -> None:
    ctx = _Moderation(cache, audit, coupons=[make_coupon()])

    for _ in range(2):
        ctx.run(ctx.service.warn_employee(ADMIN, 10, ModerationReason.COUPON_ABUSE))
    assert ctx.employee.status == EmployeeStatus.ACTIVE
    assert ctx.employee.warningCount == 2

    ctx.run(ctx.service.warn_employee(ADMIN, 10, ModerationReason.COUPON_ABUSE, "third strike"))

    assert ctx.employee.warningCount == 3
    assert ctx.employee.status == EmployeeStatus.SUSPENDED
    until = ensure_utc(ctx.employee.suspendedUntil)
    assert timedelta(days=6, hours=23) < until - now_utc() <= timedelta(days=7)
    assert ctx.coupons.coupons[1].status == CouponStatus.CANCELLED

    assert len(ctx.actions.of_type(ModerationActionType.WARNING_ISSUED)) == 3
    [suspension] = ctx.actions.of_type(ModerationActionType.SUSPENDED)
    assert suspension.appealable
    assert suspension.reason == ModerationReason.TERMS_VIOLATION
    assert suspension.newState["cancelledCoupons"] == 1
    deadline = ensure_utc(suspension.appealDeadline)
    assert timedelta(days=13) < deadline - now_utc() <= timedelta(days=14)


def test_ban_cancels_open_coupons(cache, audit) -> None:
    coupons = [
        make_coupon(1, "AAAA2345"),
        make_coupon(2, "BBBB2345", discountId=71, status=CouponStatus.EXPIRED),
        make_coupon(3, "CCCC2345", discountId=72, status=CouponStatus.CANCELLED),
    ]
    ctx = _Moderation(cache, audit, coupons=coupons)

    action = ctx.run(ctx.service.ban_employee(ADMIN, 10, ModerationReason.FRAUD, "stolen card"))

    assert ctx.employee.status == EmployeeStatus.BANNED
    assert ctx.employee.banReason == "stolen card"
    assert action.newState["cancelledCoupons"] == 2
    assert action.duration.unit == DurationUnit.PERMANENT
    deadline = ensure_utc(action.appealDeadline)
    assert timedelta(days=29) < deadline - now_utc() <= timedelta(days=30)

    for attempt in (
        ctx.service.ban_employee(ADMIN, 10, ModerationReason.FRAUD),
        ctx.service.suspend_employee(ADMIN, 10, ModerationReason.FRAUD),
        ctx.service.warn_employee(ADMIN, 10, ModerationReason.FRAUD),
    ):
        with pytest.raises(ModerationError) as err:
            ctx.run(attempt)
        assert err.value.code == "ERR-IVD-VALUE"


def test_unsuspend_requires_suspension(cache, audit) -> None:
    ctx = _Moderation(cache, audit)
    with pytest.raises(ModerationError):
        ctx.run(ctx.service.unsuspend_employee(ADMIN, 10))
    with pytest.raises(ModerationError) as err:
        ctx.run(ctx.service.suspend_employee(ADMIN, 404, ModerationReason.OTHER))
    assert err.value.code == "ERR-NOT-FOUND"


def test_appeal_flow_reverses_employee_suspension(cache, audit) -> None:
    ctx = _Moderation(cache, audit)
    action = ctx.run(ctx.service.suspend_employee(
        ADMIN, 10, ModerationReason.COUPON_ABUSE, duration=ModerationDuration(value=3, unit=DurationUnit.DAYS)
    ))

    with pytest.raises(ModerationError) as err:
        ctx.run(ctx.service.submit_appeal(2, action.actionId, "not me"))
    assert err.value.code == "ERR-NOT-FOUND"
    with pytest.raises(ModerationError) as err:
        ctx.run(ctx.service.submit_appeal(EMPLOYEE_USER, action.actionId, "  "))
    assert err.value.code == "ERR-IVD-PARAM"

    appealed = ctx.run(ctx.service.submit_appeal(EMPLOYEE_USER, action.actionId, " It was a mistake "))
    assert appealed.appealStatus == AppealStatus.PENDING
    assert appealed.appealMessage == "It was a mistake"
    assert [a.actionId for a in ctx.run(ctx.service.pending_appeals())] == [action.actionId]

    with pytest.raises(ModerationError) as err:
        ctx.run(ctx.service.submit_appeal(EMPLOYEE_USER, action.actionId, "again"))
    assert err.value.code == "ERR-ALREADY-USED"

    resolved = ctx.run(ctx.service.resolve_appeal(ADMIN, action.actionId, approve=True))

    assert resolved.appealStatus == AppealStatus.APPROVED
    assert ctx.employee.status == EmployeeStatus.ACTIVE
    assert ctx.employee.suspendedUntil is None and ctx.employee.suspensionReason is None
    assert len(ctx.actions.of_type(ModerationActionType.ACTIVATED)) == 1

    with pytest.raises(ModerationError) as err:
        ctx.run(ctx.service.resolve_appeal(ADMIN, action.actionId, approve=False))
    assert err.value.code == "ERR-IVD-VALUE"


def test_rejected_appeal_keeps_ban(cache, audit) -> None:
    ctx = _Moderation(cache, audit)
    action = ctx.run(ctx.service.ban_employee(ADMIN, 10, ModerationReason.FRAUD))
    ctx.run(ctx.service.submit_appeal(EMPLOYEE_USER, action.actionId, "please"))

    resolved = ctx.run(ctx.service.resolve_appeal(ADMIN, action.actionId, approve=False))

    assert resolved.appealStatus == AppealStatus.REJECTED
    assert ctx.employee.status == EmployeeStatus.BANNED


def test_appeal_rules(cache, audit) -> None:
    ctx = _Moderation(cache, audit)
    warning = ctx.run(ctx.service.warn_employee(ADMIN, 10, ModerationReason.OTHER))
    with pytest.raises(ModerationError) as err:
        ctx.run(ctx.service.submit_appeal(EMPLOYEE_USER, warning.actionId, "unfair"))
    assert err.value.code == "ERR-IVD-VALUE"

    suspension = ctx.run(ctx.service.suspend_employee(ADMIN, 10, ModerationReason.OTHER))
    ctx.actions.actions[suspension.actionId] = suspension.model_copy(
        update={"appealDeadline": now_utc() - timedelta(minutes=1)}
    )
    with pytest.raises(ModerationError) as err:
        ctx.run(ctx.service.submit_appeal(EMPLOYEE_USER, suspension.actionId, "late"))
    assert err.value.code == "ERR-EXPIRED"


def test_merchant_suspension_and_appeal(cache, audit) -> None:
    ctx = _Moderation(cache, audit, discounts=[make_discount(1), make_discount(2, isActive=False)])
    asyncio.run(cache.set(CacheKeys.merchant_discounts(50), [1]))

    action = ctx.run(ctx.service.suspend_merchant(ADMIN, 50, ModerationReason.PAYMENT_ISSUE))

    assert ctx.merchants.merchants[50].status == MerchantStatus.SUSPENDED
    assert not ctx.discounts.discounts[1].isActive
    assert action.newState["deactivatedDiscounts"] == 1
    assert asyncio.run(cache.get(CacheKeys.merchant_discounts(50))) is None
    with pytest.raises(ModerationError):
        ctx.run(ctx.service.suspend_merchant(ADMIN, 50, ModerationReason.PAYMENT_ISSUE))

    ctx.run(ctx.service.submit_appeal(MERCHANT_USER, action.actionId, "paid now"))
    ctx.run(ctx.service.resolve_appeal(ADMIN, action.actionId, approve=True))

    assert ctx.merchants.merchants[50].status == MerchantStatus.ACTIVE
    history = ctx.run(ctx.service.history(ModerationTarget.MERCHANT, 50))
    assert [a.actionType for a in history] == [ModerationActionType.ACTIVATED, ModerationActionType.SUSPENDED]


def test_company_suspension_is_not_appealable(cache, audit) -> None:
    ctx = _Moderation(cache, audit, employees=[
        make_employee(10),
        make_employee(11, user_id=2),
        make_employee(12, user_id=3, company_id=200),
    ])
    asyncio.run(cache.set(CacheKeys.company_stats(100), {"total": 2}))

    action = ctx.run(ctx.service.suspend_company(ADMIN, 100, ModerationReason.PAYMENT_ISSUE))

    assert not action.appealable
    assert action.newState["deactivatedEmployees"] == 2
    assert ctx.companies.companies[100].status == CompanyStatus.SUSPENDED
    assert ctx.employees.employees[12].status == EmployeeStatus.ACTIVE
    assert asyncio.run(cache.get(CacheKeys.company_stats(100))) is None
    with pytest.raises(ModerationError):
        ctx.run(ctx.service.suspend_company(ADMIN, 100, ModerationReason.PAYMENT_ISSUE))


def test_expired_suspensions_are_lifted(cache, audit) -> None:
    now = now_utc()
    ctx = _Moderation(cache, audit, employees=[
        make_employee(10, status=EmployeeStatus.SUSPENDED, suspendedUntil=now - timedelta(hours=1)),
        make_employee(11, user_id=2, status=EmployeeStatus.SUSPENDED, suspendedUntil=now + timedelta(days=1)),
        make_employee(12, user_id=3, status=EmployeeStatus.SUSPENDED),
    ])

    assert ctx.run(ctx.service.process_expired_suspensions(now)) == 1

    assert ctx.employees.employees[10].status == EmployeeStatus.ACTIVE
    assert ctx.employees.employees[11].status == EmployeeStatus.SUSPENDED
    assert ctx.employees.employees[12].status == EmployeeStatus.SUSPENDED
    [lifted] = ctx.actions.of_type(ModerationActionType.UNSUSPENDED)
    assert lifted.performedBy is None and lifted.performedByRole == "SYSTEM"
    assert ctx.run(ctx.service.process_expired_suspensions(now)) == 0


def test_verification_flags() -> None:
    now = utc(2024, 6, 10)
    fresh = make_merchant(contactEmail="owner@tempmail.com", createdAt=utc(2024, 6, 8), website="https://joe.test")
    flags = verification_flags(fresh, now)
    assert flags == {"hasWebsite": True, "hasMultipleLocations": False, "recentSignup": True, "suspiciousEmail": True}

    old = make_merchant(createdAt=utc(2024, 1, 1))
    assert verification_flags(old, now)["recentSignup"] is False
    assert verification_flags(old, now)["suspiciousEmail"] is False


class _Review:
    def __init__(self, audit, merchants):
        self.merchants = FakeMerchantRepository(merchants)
        self.users = FakeUserRepository([make_user(6, "owner@tacotown.com", role="MERCHANT")])
        self.mailer = FakeMailer()
        self.service = MerchantReviewService(self.merchants, self.users, self.mailer, audit)


def test_list_merchants_by_status(audit) -> None:
    ctx = _Review(audit, [
        make_merchant(50, 5, status=MerchantStatus.PENDING),
        make_merchant(51, 6),
        make_merchant(52, 7, status=MerchantStatus.SUSPENDED),
    ])

    pending = asyncio.run(ctx.service.list_merchants(None))
    assert [item["merchant"].merchantId for item in pending] == [50]
    assert "verification" in pending[0]
    assert len(asyncio.run(ctx.service.list_merchants("ALL"))) == 3
    assert [i["merchant"].merchantId for i in asyncio.run(ctx.service.list_merchants("suspended"))] == [52]

    with pytest.raises(MerchantReviewError) as err:
        asyncio.run(ctx.service.list_merchants("archived"))
    assert err.value.code == "ERR-IVD-VALUE"


def test_approve_merchant(audit) -> None:
    ctx = _Review(audit, [make_merchant(status=MerchantStatus.PENDING)])

    approved = asyncio.run(ctx.service.approve(50))

    assert approved.status == MerchantStatus.ACTIVE and approved.verifiedAt is not None
    assert ctx.mailer.sent == [("send_merchant_approved_email", "joe@joespizza.com")]
    with pytest.raises(MerchantReviewError) as err:
        asyncio.run(ctx.service.approve(50))
    assert err.value.code == "ERR-IVD-VALUE"
    with pytest.raises(MerchantReviewError) as err:
        asyncio.run(ctx.service.approve(404))
    assert err.value.code == "ERR-NOT-FOUND"


def test_reject_merchant_requires_reason(audit) -> None:
    ctx = _Review(audit, [make_merchant(51, 6, status=MerchantStatus.PENDING, contactEmail=None)])

    with pytest.raises(MerchantReviewError) as err:
        asyncio.run(ctx.service.reject(51, "  "))
    assert err.value.code == "ERR-IVD-PARAM"

    rejected = asyncio.run(ctx.service.reject(51, "Could not verify the business"))

    assert rejected.status == MerchantStatus.SUSPENDED
    assert ctx.mailer.sent == [("send_merchant_rejected_email", "owner@tacotown.com")]
    assert audit.pending[-1].metadata["reason"] == "Could not verify the business"
