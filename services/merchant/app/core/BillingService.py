import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Protocol

import stripe

from libs.common import AuditLogger, ServiceError, audit_logger
from libs.common.qr import app_url
from libs.schemas import (
    AuditAction,
    Merchant,
    MerchantReferral,
    MerchantReferralStatus,
    MerchantStatus,
    SubscriptionStatus,
)

from services.merchant.app.db.repositories.merchant_referrals import MerchantReferralRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

SUBSCRIPTION_PRICE_CENTS = 999
TRIAL_DAYS = 180
BILLING_PATH = "/dashboard/merchant/billing"

STATUS_BY_STRIPE = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
}

PAYMENT_REQUIRED_MESSAGES = {
    SubscriptionStatus.PAST_DUE: "Your payment is past due. Please update your payment method.",
    SubscriptionStatus.UNPAID: "Your subscription is unpaid. Please update your payment method.",
    SubscriptionStatus.CANCELED: "Your subscription has been canceled. Reactivate to continue.",
}
DEFAULT_PAYMENT_REQUIRED_MESSAGE = "Active subscription required. Start your free trial to continue."

# merchant referral progress driven by the referred merchant's subscription
REFERRAL_STATUS_BY_SUBSCRIPTION = {
    SubscriptionStatus.TRIALING: MerchantReferralStatus.TRIAL_ACTIVE,
    SubscriptionStatus.ACTIVE: MerchantReferralStatus.CONVERTED,
}


class BillingError(ServiceError):
    pass


class PaymentGatewayError(Exception):
    """Payment provider call failed."""


class WebhookSignatureError(Exception):
    pass


def map_stripe_status(value: str | None) -> SubscriptionStatus:
    return STATUS_BY_STRIPE.get(value or "", SubscriptionStatus.NONE)


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def check_subscription(merchant: Merchant, allow_trial: bool = True) -> None:
    """
    Gate for paid merchant features.

    Raises:
        BillingError: ERR-FORBIDDEN for a suspended account, ERR-PAYMENT-REQUIRED
            (with subscriptionStatus, redirectTo and requiresPayment) when the
            subscription does not allow access
    """
    if merchant.status not in (MerchantStatus.ACTIVE, MerchantStatus.PENDING):
        raise BillingError("ERR-FORBIDDEN", "Your merchant account is not active")

    allowed = {SubscriptionStatus.ACTIVE}
    if allow_trial:
        allowed.add(SubscriptionStatus.TRIALING)
    if merchant.subscriptionStatus in allowed:
        return

    raise BillingError(
        "ERR-PAYMENT-REQUIRED",
        PAYMENT_REQUIRED_MESSAGES.get(merchant.subscriptionStatus, DEFAULT_PAYMENT_REQUIRED_MESSAGE),
        subscriptionStatus=merchant.subscriptionStatus.value,
        redirectTo=BILLING_PATH,
        requiresPayment=True,
    )


class PaymentGatewayPort(Protocol):
    @property
    def configured(self) -> bool: ...

    async def get_or_create_customer(self, email: str, name: str, merchant_id: int) -> str: ...

    async def create_checkout_session(self, customer_id: str, merchant_id: int) -> Dict[str, Any]: ...

    async def create_portal_session(self, customer_id: str) -> str: ...

    async def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Dict[str, Any]: ...

    async def extend_trial(self, subscription_id: str, months: int) -> datetime: ...

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]: ...


class StripeGateway:
    """
    Stripe calls for the merchant subscription.

    The SDK is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, secret_key: str = "", price_id: str = "", webhook_secret: str = ""):
        self.secret_key = secret_key
        self.price_id = price_id
        self.webhook_secret = webhook_secret

    @property
    def configured(self) -> bool:
        return bool(self.secret_key and self.price_id)

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, api_key=self.secret_key, **kwargs)
        except stripe.StripeError as e:
            logger.error("[Stripe] %s failed: %s", getattr(func, "__qualname__", func), e)
            raise PaymentGatewayError(str(e)) from e

    async def get_or_create_customer(self, email: str, name: str, merchant_id: int) -> str:
        existing = await self._call(stripe.Customer.list, email=email, limit=1)
        if existing.data:
            return existing.data[0].id
        customer = await self._call(
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"merchantId": str(merchant_id)},
        )
        return customer.id

    async def create_checkout_session(self, customer_id: str, merchant_id: int) -> Dict[str, Any]:
        base = app_url()
        session = await self._call(
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": self.price_id, "quantity": 1}],
            subscription_data={
                "trial_period_days": TRIAL_DAYS,
                "metadata": {"merchantId": str(merchant_id)},
            },
            success_url=f"{base}{BILLING_PATH}?success=true",
            cancel_url=f"{base}{BILLING_PATH}?canceled=true",
            metadata={"merchantId": str(merchant_id)},
        )
        return {"sessionId": session.id, "url": session.url}

    async def create_portal_session(self, customer_id: str) -> str:
        session = await self._call(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=f"{app_url()}{BILLING_PATH}",
        )
        return session.url

    async def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Dict[str, Any]:
        subscription = await self._call(stripe.Subscription.modify, subscription_id, cancel_at_period_end=cancel)
        return subscription.to_dict()

    async def extend_trial(self, subscription_id: str, months: int) -> datetime:
        """Push the trial end `months` x 30 days past the later of now and the current trial end."""
        subscription = await self._call(stripe.Subscription.retrieve, subscription_id)
        now = int(datetime.now(timezone.utc).timestamp())
        start = max(now, int(getattr(subscription, "trial_end", None) or 0))
        trial_end = start + months * 30 * 24 * 60 * 60
        await self._call(
            stripe.Subscription.modify,
            subscription_id,
            trial_end=trial_end,
            proration_behavior="none",
        )
        return _timestamp(trial_end)

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError(str(e)) from e
        return event.to_dict()


class BillingService:
    def __init__(
        self,
        merchant_repository: MerchantRepositoryPort,
        referral_repository: MerchantReferralRepositoryPort,
        gateway: PaymentGatewayPort,
        audit: AuditLogger | None = None,
    ):
        self.merchant_repository = merchant_repository
        self.referral_repository = referral_repository
        self.gateway = gateway
        self.audit = audit or audit_logger

    async def get_merchant(self, user_id: int) -> Merchant:
        merchant = await self.merchant_repository.find_by_user_id(user_id)
        if merchant is None:
            raise BillingError("ERR-NOT-FOUND", "Merchant profile not found")
        return merchant

    async def require_subscription(self, user_id: int, allow_trial: bool = True) -> Merchant:
        merchant = await self.get_merchant(user_id)
        check_subscription(merchant, allow_trial)
        return merchant

    def _require_configured(self) -> None:
        if not self.gateway.configured:
            raise BillingError("ERR-UNAVAILABLE", "Billing is not configured")

    async def checkout(self, user_id: int, email: str | None = None) -> Dict[str, Any]:
        """
        Start a subscription checkout with the free trial.

        Returns:
            {"url": hosted checkout url, "sessionId": checkout session id}
        """
        self._require_configured()
        merchant = await self.get_merchant(user_id)
        customer_email = merchant.contactEmail or email
        if not customer_email:
            raise BillingError("ERR-IVD-VALUE", "A contact email is required for billing")

        try:
            customer_id = merchant.stripeCustomerId or await self.gateway.get_or_create_customer(
                customer_email, merchant.businessName, merchant.merchantId
            )
            if customer_id != merchant.stripeCustomerId:
                await self.merchant_repository.update_fields(merchant.merchantId, {"stripeCustomerId": customer_id})
            return await self.gateway.create_checkout_session(customer_id, merchant.merchantId)
        except PaymentGatewayError as e:
            raise BillingError("ERR-INTERNAL", "Failed to create checkout session") from e

    async def portal(self, user_id: int) -> str:
        self._require_configured()
        merchant = await self.get_merchant(user_id)
        if not merchant.stripeCustomerId:
            raise BillingError("ERR-IVD-VALUE", "No billing account found")
        try:
            return await self.gateway.create_portal_session(merchant.stripeCustomerId)
        except PaymentGatewayError as e:
            raise BillingError("ERR-INTERNAL", "Failed to open billing portal") from e

    async def subscription(self, user_id: int) -> Dict[str, Any]:
        merchant = await self.get_merchant(user_id)
        return {
            "subscriptionStatus": merchant.subscriptionStatus.value,
            "stripeCustomerId": merchant.stripeCustomerId,
            "stripeSubscriptionId": merchant.stripeSubscriptionId,
            "currentPeriodEnd": merchant.subscriptionCurrentPeriodEnd,
            "trialEnd": merchant.subscriptionTrialEnd,
            "cancelAtPeriodEnd": merchant.subscriptionCancelAtPeriodEnd,
            "monthlyPrice": SUBSCRIPTION_PRICE_CENTS / 100,
            "trialDays": TRIAL_DAYS,
            "hasActiveSubscription": merchant.subscriptionStatus
            in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING),
        }

    async def set_cancel_at_period_end(self, user_id: int, cancel: bool, audit: AuditLogger | None = None) -> Merchant:
        self._require_configured()
        merchant = await self.get_merchant(user_id)
        if not merchant.stripeSubscriptionId:
            raise BillingError("ERR-IVD-VALUE", "No subscription found")
        try:
            await self.gateway.set_cancel_at_period_end(merchant.stripeSubscriptionId, cancel)
        except PaymentGatewayError as e:
            raise BillingError("ERR-INTERNAL", "Failed to update subscription") from e

        updated = await self.merchant_repository.update_fields(
            merchant.merchantId, {"subscriptionCancelAtPeriodEnd": cancel}
        )
        await (audit or self.audit).info(
            AuditAction.SUBSCRIPTION_UPDATED,
            "Subscription set to cancel at period end" if cancel else "Subscription resumed",
            resource="Merchant",
            resource_id=merchant.merchantId,
            metadata={"cancelAtPeriodEnd": cancel},
        )
        return updated

    async def handle_webhook(self, payload: bytes, signature: str | None) -> Dict[str, Any]:
        """
        Verify and apply a payment provider event.

        Raises:
            BillingError: ERR-IVD-PARAM without a signature, ERR-IVD-VALUE when
                the signature does not verify
        """
        if not signature:
            raise BillingError("ERR-IVD-PARAM", "Missing stripe-signature header")
        try:
            event = self.gateway.construct_event(payload, signature)
        except WebhookSignatureError as e:
            logger.warning("[Stripe] webhook signature verification failed: %s", e)
            raise BillingError("ERR-IVD-VALUE", "Webhook signature verification failed") from e

        event_type = event.get("type")
        data = (event.get("data") or {}).get("object") or {}
        if event_type == "checkout.session.completed":
            await self._checkout_completed(data)
        elif event_type in (
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ):
            await self._subscription_changed(data)
        else:
            logger.info("[Stripe] unhandled event type: %s", event_type)
        return {"received": True}

    async def _checkout_completed(self, session: Dict[str, Any]) -> None:
        merchant_id = (session.get("metadata") or {}).get("merchantId")
        if not merchant_id:
            logger.error("[Stripe] checkout session %s has no merchantId", session.get("id"))
            return
        merchant = await self.merchant_repository.find_by_id(int(merchant_id))
        if merchant is None:
            logger.error("[Stripe] merchant %s not found for checkout", merchant_id)
            return

        fields: Dict[str, Any] = {"stripeCustomerId": session.get("customer")}
        if session.get("subscription"):
            fields["stripeSubscriptionId"] = session["subscription"]
            fields["subscriptionStatus"] = SubscriptionStatus.TRIALING.value
        await self.merchant_repository.update_fields(merchant.merchantId, fields)
        logger.info("[Stripe] checkout completed for merchant %s", merchant.merchantId)
        if "subscriptionStatus" in fields:
            await self._advance_referral(merchant, SubscriptionStatus.TRIALING)

    async def _subscription_changed(self, subscription: Dict[str, Any]) -> None:
        merchant = None
        merchant_id = (subscription.get("metadata") or {}).get("merchantId")
        if merchant_id:
            merchant = await self.merchant_repository.find_by_id(int(merchant_id))
        if merchant is None and subscription.get("customer"):
            merchant = await self.merchant_repository.find_by_stripe_customer(subscription["customer"])
        if merchant is None:
            logger.error("[Stripe] merchant not found for subscription %s", subscription.get("id"))
            return

        status = map_stripe_status(subscription.get("status"))
        # newer API versions report the period on the subscription item
        period_end = subscription.get("current_period_end")
        if period_end is None:
            items = (subscription.get("items") or {}).get("data") or []
            period_end = items[0].get("current_period_end") if items else None

        await self.merchant_repository.update_fields(
            merchant.merchantId,
            {
                "stripeCustomerId": subscription.get("customer"),
                "stripeSubscriptionId": subscription.get("id"),
                "subscriptionStatus": status.value,
                "subscriptionCurrentPeriodEnd": _timestamp(period_end),
                "subscriptionTrialEnd": _timestamp(subscription.get("trial_end")),
                "subscriptionCancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end")),
            },
        )
        logger.info("[Stripe] merchant %s subscription is now %s", merchant.merchantId, status.value)
        await self.audit.info(
            AuditAction.SUBSCRIPTION_UPDATED,
            f"Subscription status {status.value}",
            resource="Merchant",
            resource_id=merchant.merchantId,
            metadata={"stripeStatus": subscription.get("status")},
        )
        await self._advance_referral(merchant, status)

    async def _find_referral(self, merchant: Merchant) -> MerchantReferral | None:
        referral = await self.referral_repository.find_by_referred_merchant(merchant.merchantId)
        if referral is None and merchant.contactEmail:
            referral = await self.referral_repository.find_unlinked_by_email(merchant.contactEmail)
        return referral

    async def _advance_referral(self, merchant: Merchant, status: SubscriptionStatus) -> None:
        target = REFERRAL_STATUS_BY_SUBSCRIPTION.get(status)
        if target is None:
            return
        referral = await self._find_referral(merchant)
        if referral is None or referral.status in (target, MerchantReferralStatus.CONVERTED):
            return

        await self.referral_repository.update_fields(
            referral.referralId,
            {"status": target.value, "referredMerchantId": merchant.merchantId},
        )
        logger.info("[Stripe] merchant referral %s is now %s", referral.referralId, target.value)
