import asyncio
from datetime import timedelta

import pytest

from libs.common.cache import CacheKeys
from libs.common.timezone import now_utc
from libs.schemas import (
    AuditAction,
    DiscountType,
    MerchantReferralStatus,
    MerchantStatus,
    SubscriptionStatus,
)

from services.merchant.app.core.BillingService import (
    BILLING_PATH,
    BillingError,
    BillingService,
    check_subscription,
    map_stripe_status,
)
from services.merchant.app.core.DiscountService import (
    DiscountError,
    DiscountService,
    calculate_discount,
    select_applicable_discount,
)
from services.merchant.app.core.MerchantReferralService import (
    MerchantReferralError,
    MerchantReferralService,
    referral_stats,
)
from services.merchant.app.core.MerchantService import MerchantError, MerchantService

from tests.fakes import (
    FakeDiscountRepository,
    FakeGateway,
    FakeMailer,
    FakeMerchantReferralRepository,
    FakeMerchantRepository,
    FakeUserRepository,
    make_discount,
    make_merchant,
    make_merchant_referral,
    make_user,
)

MERCHANT_USER = 5


def _discounts():
    return [
        make_discount(1, percentage=10),
        make_discount(2, type=DiscountType.COMPANY, companyId=100, companyName="Acme Corp", percentage=20, priority=5),
        make_discount(3, type=DiscountType.SPEND_THRESHOLD, minSpend=50, percentage=15, priority=10),
        make_discount(4, type=DiscountType.COMPANY, companyId=200, companyName="Globex", percentage=40, isActive=False),
    ]


def test_select_applicable_discount_picks_highest_percentage() -> None:
    discounts = _discounts()
    assert select_applicable_discount(discounts).discountId == 1
    assert select_applicable_discount(discounts, company_id=100).discountId == 2
    assert select_applicable_discount(discounts, order_amount=60).discountId == 3
    assert select_applicable_discount(discounts, company_id=100, order_amount=60).discountId == 2
    assert select_applicable_discount(discounts, company_id=200).discountId == 1
    assert select_applicable_discount([]) is None


def test_select_applicable_discount_ties_go_to_priority() -> None:
    discounts = [
        make_discount(1, percentage=15),
        make_discount(2, type=DiscountType.SPEND_THRESHOLD, minSpend=10, percentage=15, priority=10),
    ]
    assert select_applicable_discount(discounts, order_amount=20).discountId == 2


def test_calculate_discount_precedence() -> None:
    discounts = _discounts()

    threshold = calculate_discount(discounts, "acme", 80)
    assert threshold["discount"].discountId == 3
    assert threshold["savings"] == 12.0 and threshold["finalAmount"] == 68.0

    company = calculate_discount(discounts, "ACME CORP INC", 20)
    assert company["discount"].discountId == 2
    assert company["percentage"] == 20

    # a larger company deal beats a reached threshold
    larger = calculate_discount(discounts, "Acme Corp", 80)
    assert larger["discount"].discountId == 2
    assert larger["savings"] == 16.0

    # the discount's company name must be part of the employee's, not the reverse
    shorter = calculate_discount(discounts, "Acme", None)
    assert shorter["discount"].discountId == 1
    assert shorter["percentage"] == 10

    base = calculate_discount(discounts, "Globex", None)
    assert base["discount"].discountId == 1
    assert base["savings"] is None and base["finalAmount"] is None

    assert calculate_discount([], None, 10)["percentage"] == 0


class _Discounts:
    def __init__(self, cache, audit, discounts=()):
        self.merchants = FakeMerchantRepository([make_merchant()])
        self.discounts = FakeDiscountRepository(discounts)
        self.service = DiscountService(self.discounts, self.merchants, cache, audit)

    def create(self, **data):
        return asyncio.run(self.service.create_discount(MERCHANT_USER, data))


def test_create_discount_sets_priority_by_type(cache, audit) -> None:
    ctx = _Discounts(cache, audit)

    base = ctx.create(type="BASE", name="Everyday", percentage=10)
    company = ctx.create(type="COMPANY", name="Acme deal", percentage=15, companyName=" Acme ", companyId=100)
    threshold = ctx.create(type="SPEND_THRESHOLD", name="Big order", percentage=20, minSpend="50", monthlyUsageLimit=4)

    assert (base.priority, company.priority, threshold.priority) == (0, 5, 10)
    assert company.companyName == "Acme" and company.companyId == 100
    assert threshold.minSpend == 50.0 and threshold.monthlyUsageLimit == 4
    assert audit.pending[-1].action == AuditAction.DISCOUNT_CREATED


@pytest.mark.parametrize(
    "data, code",
    [
        ({"type": "BASE", "name": "Again", "percentage": 5}, "ERR-DUP-VALUE"),
        ({"type": "COMPANY", "name": "No company", "percentage": 5}, "ERR-IVD-VALUE"),
        ({"type": "COMPANY", "name": "Dup", "percentage": 5, "companyName": "acme"}, "ERR-DUP-VALUE"),
        ({"type": "SPEND_THRESHOLD", "name": "No min", "percentage": 5}, "ERR-IVD-VALUE"),
        ({"type": "SPEND_THRESHOLD", "name": "Zero min", "percentage": 5, "minSpend": 0}, "ERR-IVD-VALUE"),
        ({"type": "BASE", "name": "Too much", "percentage": 120}, "ERR-IVD-VALUE"),
        ({"type": "BASE", "name": "Limit", "percentage": 5, "monthlyUsageLimit": 101}, "ERR-IVD-VALUE"),
        ({"type": "BASE", "name": "Limit", "percentage": 5, "monthlyUsageLimit": 0}, "ERR-IVD-VALUE"),
        ({"type": "WEEKEND", "name": "Nope", "percentage": 5}, "ERR-IVD-VALUE"),
        ({"type": "BASE", "name": " ", "percentage": 5}, "ERR-IVD-PARAM"),
        ({"type": "BASE", "name": "No pct"}, "ERR-IVD-PARAM"),
    ],
)
def test_create_discount_validation(cache, audit, data, code) -> None:
    ctx = _Discounts(cache, audit, [
        make_discount(1),
        make_discount(2, type=DiscountType.COMPANY, companyName="Acme", companyId=100),
    ])
    with pytest.raises(DiscountError) as err:
        ctx.create(**data)
    assert err.value.code == code


def test_discount_changes_invalidate_cached_list(cache, audit) -> None:
    ctx = _Discounts(cache, audit, [make_discount(1)])

    listed = asyncio.run(ctx.service.list_discounts(MERCHANT_USER))
    assert [d.discountId for d in listed] == [1]
    assert asyncio.run(cache.get(CacheKeys.merchant_discounts(50))) is not None

    toggled = asyncio.run(ctx.service.toggle_discount(MERCHANT_USER, 1))
    assert toggled.isActive is False
    assert asyncio.run(cache.get(CacheKeys.merchant_discounts(50))) is None

    updated = asyncio.run(ctx.service.update_discount(MERCHANT_USER, 1, {"percentage": 12, "monthlyUsageLimit": None}))
    assert updated.percentage == 12 and updated.monthlyUsageLimit is None

    asyncio.run(ctx.service.delete_discount(MERCHANT_USER, 1))
    assert asyncio.run(ctx.service.list_discounts(MERCHANT_USER)) == []


def test_other_merchants_discounts_are_not_found(cache, audit) -> None:
    ctx = _Discounts(cache, audit, [make_discount(9, merchant_id=51)])
    with pytest.raises(DiscountError) as err:
        asyncio.run(ctx.service.delete_discount(MERCHANT_USER, 9))
    assert err.value.code == "ERR-NOT-FOUND"


def test_applicable_resolves_by_id_or_by_name(cache, audit) -> None:
    ctx = _Discounts(cache, audit, _discounts())

    by_id = asyncio.run(ctx.service.applicable(MERCHANT_USER, company_id=100, order_amount=40))
    assert by_id["discount"].discountId == 2
    assert by_id["percentage"] == 20

    by_name = asyncio.run(ctx.service.applicable(MERCHANT_USER, company_name="acme corp", order_amount=40))
    assert by_name["discount"].discountId == 2

    with pytest.raises(DiscountError):
        asyncio.run(ctx.service.applicable(MERCHANT_USER, order_amount=-1))


def test_check_subscription() -> None:
    check_subscription(make_merchant(subscriptionStatus=SubscriptionStatus.ACTIVE))
    check_subscription(make_merchant(subscriptionStatus=SubscriptionStatus.TRIALING))

    with pytest.raises(BillingError) as err:
        check_subscription(make_merchant(subscriptionStatus=SubscriptionStatus.TRIALING), allow_trial=False)
    assert err.value.code == "ERR-PAYMENT-REQUIRED"
    assert err.value.extra == {"subscriptionStatus": "TRIALING", "redirectTo": BILLING_PATH, "requiresPayment": True}

    with pytest.raises(BillingError) as err:
        check_subscription(make_merchant(subscriptionStatus=SubscriptionStatus.PAST_DUE))
    assert "past due" in err.value.message

    with pytest.raises(BillingError) as err:
        check_subscription(make_merchant(status=MerchantStatus.SUSPENDED, subscriptionStatus=SubscriptionStatus.ACTIVE))
    assert err.value.code == "ERR-FORBIDDEN"


def test_map_stripe_status() -> None:
    assert map_stripe_status("trialing") == SubscriptionStatus.TRIALING
    assert map_stripe_status("incomplete_expired") == SubscriptionStatus.CANCELED
    assert map_stripe_status("incomplete") == SubscriptionStatus.NONE
    assert map_stripe_status(None) == SubscriptionStatus.NONE


class _Billing:
    def __init__(self, audit, event=None, merchants=None, referrals=()):
        self.merchants = FakeMerchantRepository(merchants or [make_merchant(subscriptionStatus=SubscriptionStatus.NONE)])
        self.referrals = FakeMerchantReferralRepository(referrals)
        self.gateway = FakeGateway(event)
        self.service = BillingService(self.merchants, self.referrals, self.gateway, audit)

    def webhook(self, signature="valid"):
        return asyncio.run(self.service.handle_webhook(b"{}", signature))


def test_webhook_requires_valid_signature(audit) -> None:
    ctx = _Billing(audit)
    with pytest.raises(BillingError) as err:
        ctx.webhook(signature=None)
    assert err.value.code == "ERR-IVD-PARAM"
    with pytest.raises(BillingError) as err:
        ctx.webhook(signature="forged")
    assert err.value.code == "ERR-IVD-VALUE"


def test_checkout_completed_starts_trial_and_advances_referral(audit) -> None:
    referral = make_merchant_referral(referrer_merchant_id=60, referredEmail="joe@joespizza.com",
                                      status=MerchantReferralStatus.REGISTERED)
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1", "metadata": {"merchantId": "50"}}},
    }
    ctx = _Billing(audit, event, referrals=[referral])

    assert ctx.webhook() == {"received": True}

    merchant = ctx.merchants.merchants[50]
    assert merchant.subscriptionStatus == SubscriptionStatus.TRIALING
    assert merchant.stripeCustomerId == "cus_1" and merchant.stripeSubscriptionId == "sub_1"
    stored = ctx.referrals.referrals[1]
    assert stored.status == MerchantReferralStatus.TRIAL_ACTIVE
    assert stored.referredMerchantId == 50


def test_subscription_update_found_by_customer(audit) -> None:
    event = {
        "type": "customer.subscription.updated",
        "data": {"object": {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "past_due",
            "cancel_at_period_end": True,
            "items": {"data": [{"current_period_end": 1735689600}]},
        }},
    }
    ctx = _Billing(audit, event, merchants=[make_merchant(stripeCustomerId="cus_1")])

    ctx.webhook()

    merchant = ctx.merchants.merchants[50]
    assert merchant.subscriptionStatus == SubscriptionStatus.PAST_DUE
    assert merchant.subscriptionCancelAtPeriodEnd is True
    assert merchant.subscriptionCurrentPeriodEnd.year == 2025
    assert audit.pending[-1].action == AuditAction.SUBSCRIPTION_UPDATED


def test_converted_referral_is_never_downgraded(audit) -> None:
    referral = make_merchant_referral(referredMerchantId=50, status=MerchantReferralStatus.CONVERTED)

    def event(status):
        return {
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1", "customer": "cus_1", "status": status, "metadata": {"merchantId": "50"}}},
        }

    ctx = _Billing(audit, event("trialing"), referrals=[referral])
    ctx.webhook()
    assert ctx.referrals.referrals[1].status == MerchantReferralStatus.CONVERTED


def test_active_subscription_converts_referral(audit) -> None:
    referral = make_merchant_referral(referredMerchantId=50, status=MerchantReferralStatus.TRIAL_ACTIVE)
    event = {
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_1", "customer": "cus_1", "status": "active", "metadata": {"merchantId": "50"}}},
    }
    ctx = _Billing(audit, event, referrals=[referral])
    ctx.webhook()
    assert ctx.referrals.referrals[1].status == MerchantReferralStatus.CONVERTED


def test_unknown_events_are_acknowledged(audit) -> None:
    ctx = _Billing(audit, {"type": "invoice.paid", "data": {"object": {}}})
    assert ctx.webhook() == {"received": True}


def test_checkout_stores_customer(audit) -> None:
    ctx = _Billing(audit)
    session = asyncio.run(ctx.service.checkout(MERCHANT_USER))
    assert session["url"].endswith("cus_50")
    assert ctx.merchants.merchants[50].stripeCustomerId == "cus_50"

    ctx.gateway._configured = False
    with pytest.raises(BillingError) as err:
        asyncio.run(ctx.service.checkout(MERCHANT_USER))
    assert err.value.code == "ERR-UNAVAILABLE"


class _Referrals:
    def __init__(self, audit, referrals=(), merchant=None):
        self.merchant = merchant or make_merchant(stripeSubscriptionId="sub_1")
        self.merchants = FakeMerchantRepository([self.merchant, make_merchant(51, 6, contactEmail="owner@taken.com")])
        self.referrals = FakeMerchantReferralRepository(referrals)
        self.users = FakeUserRepository([make_user(MERCHANT_USER, "joe.owner@gmail.com")])
        self.gateway = FakeGateway()
        self.mailer = FakeMailer()
        self.service = MerchantReferralService(
            self.referrals, self.merchants, self.users, self.gateway, self.mailer, audit
        )

    def create(self, **data):
        payload = {"referredBusinessName": "Taco Town", "referredEmail": "owner@tacotown.com"}
        payload.update(data)
        return asyncio.run(self.service.create_referral(self.merchant, payload))


def test_create_merchant_referral(audit) -> None:
    ctx = _Referrals(audit)

    referral = ctx.create(referredEmail=" Owner@TacoTown.com ", referredState="tx")

    assert referral.referredEmail == "owner@tacotown.com"
    assert referral.referredState == "TX"
    assert referral.referrerRewardMonths == 3 and referral.refereeRewardMonths == 9
    assert ctx.mailer.sent == [("send_merchant_referral_invitation_email", "owner@tacotown.com")]


@pytest.mark.parametrize(
    "data, code",
    [
        ({"referredBusinessName": "T"}, "ERR-IVD-VALUE"),
        ({"referredEmail": "nope"}, "ERR-IVD-VALUE"),
        ({"referredEmail": "owner@taken.com"}, "ERR-DUP-VALUE"),
        ({"referredEmail": "joe@joespizza.com"}, "ERR-DUP-VALUE"),
        ({"referredEmail": "joe.owner@gmail.com"}, "ERR-IVD-VALUE"),
    ],
)
def test_create_merchant_referral_validation(audit, data, code) -> None:
    ctx = _Referrals(audit)
    with pytest.raises(MerchantReferralError) as err:
        ctx.create(**data)
    assert err.value.code == code


def test_referral_daily_cap(audit) -> None:
    existing = [
        make_merchant_referral(i, referredEmail=f"r{i}@food.com")
        for i in range(1, 11)
    ]
    ctx = _Referrals(audit, existing)
    with pytest.raises(MerchantReferralError) as err:
        ctx.create()
    assert err.value.code == "ERR-RATE-LIMITED"


def test_claim_reward_extends_trial(audit) -> None:
    ctx = _Referrals(audit, [make_merchant_referral(status=MerchantReferralStatus.CONVERTED)])

    result = asyncio.run(ctx.service.claim_reward(ctx.merchant, 1))

    assert result["monthsApplied"] == 3
    assert ctx.gateway.extended == [("sub_1", 3)]
    assert ctx.referrals.referrals[1].referrerRewardClaimed is True
    assert ctx.merchants.merchants[50].subscriptionTrialEnd is not None

    with pytest.raises(MerchantReferralError) as err:
        asyncio.run(ctx.service.claim_reward(ctx.merchant, 1))
    assert err.value.code == "ERR-ALREADY-USED"


def test_claim_reward_rules(audit) -> None:
    claimed = [
        make_merchant_referral(i, referredEmail=f"r{i}@food.com", status=MerchantReferralStatus.CONVERTED,
                               referrerRewardClaimed=True, referrerRewardClaimedAt=now_utc() - timedelta(days=30))
        for i in range(1, 5)
    ]
    pending = make_merchant_referral(5, referredEmail="r5@food.com")
    converted = make_merchant_referral(6, referredEmail="r6@food.com", status=MerchantReferralStatus.CONVERTED)
    ctx = _Referrals(audit, [*claimed, pending, converted])

    with pytest.raises(MerchantReferralError) as err:
        asyncio.run(ctx.service.claim_reward(ctx.merchant, 5))
    assert err.value.code == "ERR-IVD-VALUE"

    with pytest.raises(MerchantReferralError) as err:
        asyncio.run(ctx.service.claim_reward(ctx.merchant, 6))
    assert err.value.code == "ERR-LIMIT-REACHED"

    other = _Referrals(audit, [converted], merchant=make_merchant())
    with pytest.raises(MerchantReferralError) as err:
        asyncio.run(other.service.claim_reward(other.merchant, 6))
    assert err.value.message == "No subscription found"


def test_referral_stats_and_delete(audit) -> None:
    referrals = [
        make_merchant_referral(1, status=MerchantReferralStatus.CONVERTED),
        make_merchant_referral(2, referredEmail="b@food.com", status=MerchantReferralStatus.TRIAL_ACTIVE),
        make_merchant_referral(3, referredEmail="c@food.com"),
        make_merchant_referral(4, referredEmail="d@food.com"),
    ]
    stats = referral_stats(referrals)
    assert stats["totalRegistered"] == 2
    assert stats["availableMonths"] == 3
    assert stats["conversionRate"] == 25.0

    ctx = _Referrals(audit, referrals)
    asyncio.run(ctx.service.delete_referral(ctx.merchant, 3))
    assert 3 not in ctx.referrals.referrals
    with pytest.raises(MerchantReferralError):
        asyncio.run(ctx.service.delete_referral(ctx.merchant, 1))


def test_onboarding_wizard(audit) -> None:
    merchants = FakeMerchantRepository([make_merchant(status=MerchantStatus.PENDING)])
    service = MerchantService(merchants, audit)

    async def scenario():
        await service.save_step(MERCHANT_USER, 1, {"businessName": "Joe's Slice", "description": "Pizza"})
        await service.save_step(MERCHANT_USER, 2, {
            "address": "1 Main St", "city": "Austin", "state": "tx", "zipCode": "78701",
            "latitude": 30.27, "longitude": -97.74,
        })
        with pytest.raises(MerchantError):
            await service.complete_onboarding(MERCHANT_USER, True)
        await service.save_step(MERCHANT_USER, 3, {
            "avgOrderValue": "18.5", "priceTier": "$$", "seatingCapacity": "SMALL",
        })
        with pytest.raises(MerchantError):
            await service.complete_onboarding(MERCHANT_USER, False)
        return await service.complete_onboarding(MERCHANT_USER, True)

    merchant = asyncio.run(scenario())
    assert merchant.slug == "joe-s-slice"
    assert merchant.locations[0].state == "TX"
    assert merchant.businessMetrics.avgOrderValue == 18.5
    assert merchant.onboardingCompleted and merchant.securityTermsVersion == "1.0"


def test_onboarding_rejects_bad_location(audit) -> None:
    service = MerchantService(FakeMerchantRepository([make_merchant()]), audit)
    with pytest.raises(MerchantError) as err:
        asyncio.run(service.save_step(MERCHANT_USER, 2, {"address": "1 Main", "city": "Austin", "state": "Texas", "zipCode": "1"}))
    assert err.value.message == "State must be 2 letters"
    with pytest.raises(MerchantError):
        asyncio.run(service.save_step(MERCHANT_USER, 4, {}))
