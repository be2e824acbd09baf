from functools import lru_cache
from typing import Tuple

from fastapi import Depends

from libs.common import SUBJECT_PLATFORM_ADMIN, Mailer, forbidden, get_current_user

from services.admin.app.core.MerchantReviewService import MerchantReviewService
from services.admin.app.core.ModerationService import ModerationService
from services.admin.app.db.connection import settings
from services.admin.app.db.repositories.moderation import SQLAlchemyModerationActionRepository
from services.auth.app.db.repositories.users import SQLAlchemyUserRepository
from services.company.app.db.repositories.companies import SQLAlchemyCompanyRepository
from services.company.app.db.repositories.employees import SQLAlchemyEmployeeRepository
from services.coupon.app.db.repositories.coupons import SQLAlchemyClaimedCouponRepository
from services.merchant.app.db.repositories.discounts import SQLAlchemyDiscountRepository
from services.merchant.app.db.repositories.merchants import SQLAlchemyMerchantRepository


@lru_cache
def _merchant_repository() -> SQLAlchemyMerchantRepository:
    return SQLAlchemyMerchantRepository()


@lru_cache
def get_moderation_service() -> ModerationService:
    return ModerationService(
        moderation_repository=SQLAlchemyModerationActionRepository(),
        employee_repository=SQLAlchemyEmployeeRepository(),
        merchant_repository=_merchant_repository(),
        discount_repository=SQLAlchemyDiscountRepository(),
        company_repository=SQLAlchemyCompanyRepository(),
        coupon_repository=SQLAlchemyClaimedCouponRepository(),
    )


@lru_cache
def get_merchant_review_service() -> MerchantReviewService:
    return MerchantReviewService(
        merchant_repository=_merchant_repository(),
        user_repository=SQLAlchemyUserRepository(),
        mailer=Mailer(api_key=settings.RESEND_API_KEY, from_email=settings.EMAIL_FROM),
    )


def platform_admin_only(current_user: Tuple[str, int] = Depends(get_current_user)) -> Tuple[str, int]:
    subject_type, _ = current_user
    if subject_type != SUBJECT_PLATFORM_ADMIN:
        raise forbidden("Forbidden - Platform admin access only")
    return current_user
