from functools import lru_cache
from typing import Tuple

from fastapi import Depends

from libs.common import SUBJECT_EMPLOYEE, SUBJECT_MERCHANT, forbidden, get_current_user

from services.auth.app.db.repositories.users import SQLAlchemyUserRepository
from services.auth.app.dependencies import get_referral_service, get_user_service
from services.company.app.db.repositories.companies import SQLAlchemyCompanyRepository
from services.company.app.db.repositories.employees import SQLAlchemyEmployeeRepository
from services.coupon.app.core.ClaimService import ClaimService
from services.coupon.app.core.IdentityService import IdentityService
from services.coupon.app.core.QrCodeService import QrCodeService
from services.coupon.app.core.RedeemService import RedeemService
from services.coupon.app.db.connection import settings
from services.coupon.app.db.repositories.coupons import SQLAlchemyClaimedCouponRepository
from services.coupon.app.db.repositories.passes import SQLAlchemyEmployeePassRepository
from services.merchant.app.db.repositories.discounts import SQLAlchemyDiscountRepository
from services.merchant.app.db.repositories.merchants import SQLAlchemyMerchantRepository


@lru_cache
def _coupon_repository() -> SQLAlchemyClaimedCouponRepository:
    return SQLAlchemyClaimedCouponRepository()


@lru_cache
def _employee_repository() -> SQLAlchemyEmployeeRepository:
    return SQLAlchemyEmployeeRepository()


@lru_cache
def _company_repository() -> SQLAlchemyCompanyRepository:
    return SQLAlchemyCompanyRepository()


@lru_cache
def _merchant_repository() -> SQLAlchemyMerchantRepository:
    return SQLAlchemyMerchantRepository()


@lru_cache
def _discount_repository() -> SQLAlchemyDiscountRepository:
    return SQLAlchemyDiscountRepository()


@lru_cache
def get_qr_code_service() -> QrCodeService:
    return QrCodeService(coupon_repository=_coupon_repository())


@lru_cache
def get_claim_service() -> ClaimService:
    return ClaimService(
        coupon_repository=_coupon_repository(),
        employee_repository=_employee_repository(),
        company_repository=_company_repository(),
        merchant_repository=_merchant_repository(),
        discount_repository=_discount_repository(),
        user_service=get_user_service(),
        qr_service=get_qr_code_service(),
    )


@lru_cache
def get_redeem_service() -> RedeemService:
    return RedeemService(
        coupon_repository=_coupon_repository(),
        employee_repository=_employee_repository(),
        company_repository=_company_repository(),
        merchant_repository=_merchant_repository(),
        discount_repository=_discount_repository(),
        user_service=get_user_service(),
        referral_service=get_referral_service(),
        first_time_bonus=settings.FIRST_TIME_BONUS_PERCENTAGE,
    )


@lru_cache
def get_identity_service() -> IdentityService:
    return IdentityService(
        employee_repository=_employee_repository(),
        company_repository=_company_repository(),
        user_repository=SQLAlchemyUserRepository(),
        pass_repository=SQLAlchemyEmployeePassRepository(),
        merchant_repository=_merchant_repository(),
        discount_repository=_discount_repository(),
        user_service=get_user_service(),
        token_ttl_minutes=settings.VERIFICATION_TOKEN_TTL_MINUTES,
    )


def employee_only(current_user: Tuple[str, int] = Depends(get_current_user)) -> Tuple[str, int]:
    subject_type, _ = current_user
    if subject_type != SUBJECT_EMPLOYEE:
        raise forbidden("Forbidden - Employee access only")
    return current_user


def merchant_only(current_user: Tuple[str, int] = Depends(get_current_user)) -> Tuple[str, int]:
    subject_type, _ = current_user
    if subject_type != SUBJECT_MERCHANT:
        raise forbidden("Forbidden - Merchant access only")
    return current_user
