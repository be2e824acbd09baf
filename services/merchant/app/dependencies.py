from functools import lru_cache
from typing import Tuple

from fastapi import Depends

from libs.common import SUBJECT_MERCHANT, Mailer, ServiceError, forbidden, get_current_user, to_http_exception
from libs.schemas import Merchant

from services.auth.app.db.repositories.users import SQLAlchemyUserRepository
from services.merchant.app.core.BillingService import BillingService, StripeGateway
from services.merchant.app.core.DiscountService import DiscountService
from services.merchant.app.core.MerchantReferralService import MerchantReferralService
from services.merchant.app.core.MerchantService import MerchantService
from services.merchant.app.db.connection import settings
from services.merchant.app.db.repositories.discounts import SQLAlchemyDiscountRepository
from services.merchant.app.db.repositories.merchant_referrals import SQLAlchemyMerchantReferralRepository
from services.merchant.app.db.repositories.merchants import SQLAlchemyMerchantRepository


@lru_cache
def _merchant_repository() -> SQLAlchemyMerchantRepository:
    return SQLAlchemyMerchantRepository()


@lru_cache
def _discount_repository() -> SQLAlchemyDiscountRepository:
    return SQLAlchemyDiscountRepository()


@lru_cache
def _referral_repository() -> SQLAlchemyMerchantReferralRepository:
    return SQLAlchemyMerchantReferralRepository()


@lru_cache
def _gateway() -> StripeGateway:
    return StripeGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        price_id=settings.STRIPE_PRICE_ID,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )


@lru_cache
def get_merchant_service() -> MerchantService:
    return MerchantService(merchant_repository=_merchant_repository())


@lru_cache
def get_discount_service() -> DiscountService:
    return DiscountService(
        discount_repository=_discount_repository(),
        merchant_repository=_merchant_repository(),
    )


@lru_cache
def get_billing_service() -> BillingService:
    return BillingService(
        merchant_repository=_merchant_repository(),
        referral_repository=_referral_repository(),
        gateway=_gateway(),
    )


@lru_cache
def get_merchant_referral_service() -> MerchantReferralService:
    return MerchantReferralService(
        referral_repository=_referral_repository(),
        merchant_repository=_merchant_repository(),
        user_repository=SQLAlchemyUserRepository(),
        gateway=_gateway(),
        mailer=Mailer(api_key=settings.RESEND_API_KEY, from_email=settings.EMAIL_FROM),
    )


def merchant_only(current_user: Tuple[str, int] = Depends(get_current_user)) -> Tuple[str, int]:
    subject_type, _ = current_user
    if subject_type != SUBJECT_MERCHANT:
        raise forbidden("Forbidden - Merchant access only")
    return current_user


async def get_subscribed_merchant(
    current_user: Tuple[str, int] = Depends(merchant_only),
    billing_service: BillingService = Depends(get_billing_service),
) -> Merchant:
    """
    Subscription guard for paid merchant features.

    Returns the caller's merchant when its subscription is ACTIVE or TRIALING,
    otherwise 402 with the billing redirect.
    """
    _, user_id = current_user
    try:
        return await billing_service.require_subscription(user_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
