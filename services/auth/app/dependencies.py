from functools import lru_cache

from libs.common import Mailer

from services.auth.app.core.JoinService import JoinService
from services.auth.app.core.LoginService import LoginService
from services.auth.app.core.ReferralService import ReferralService
from services.auth.app.core.UserService import UserService
from services.auth.app.core.VerificationService import VerificationService
from services.auth.app.db.connection import settings
from services.auth.app.db.repositories.referrals import SQLAlchemyReferralRepository
from services.auth.app.db.repositories.users import SQLAlchemyUserRepository
from services.company.app.db.repositories.admins import SQLAlchemyCompanyAdminRepository
from services.company.app.db.repositories.companies import SQLAlchemyCompanyRepository
from services.company.app.db.repositories.employees import SQLAlchemyEmployeeRepository
from services.company.app.db.repositories.invites import SQLAlchemyInviteRepository
from services.merchant.app.db.repositories.merchants import SQLAlchemyMerchantRepository


@lru_cache
def _user_repository() -> SQLAlchemyUserRepository:
    return SQLAlchemyUserRepository()


@lru_cache
def _referral_repository() -> SQLAlchemyReferralRepository:
    return SQLAlchemyReferralRepository()


@lru_cache
def _employee_repository() -> SQLAlchemyEmployeeRepository:
    return SQLAlchemyEmployeeRepository()


@lru_cache
def _company_repository() -> SQLAlchemyCompanyRepository:
    return SQLAlchemyCompanyRepository()


@lru_cache
def _admin_repository() -> SQLAlchemyCompanyAdminRepository:
    return SQLAlchemyCompanyAdminRepository()


@lru_cache
def _invite_repository() -> SQLAlchemyInviteRepository:
    return SQLAlchemyInviteRepository()


@lru_cache
def _merchant_repository() -> SQLAlchemyMerchantRepository:
    return SQLAlchemyMerchantRepository()


@lru_cache
def _mailer() -> Mailer:
    return Mailer(api_key=settings.RESEND_API_KEY, from_email=settings.EMAIL_FROM)


@lru_cache
def get_user_service() -> UserService:
    return UserService(user_repository=_user_repository())


@lru_cache
def get_login_service() -> LoginService:
    return LoginService(user_repository=_user_repository())


@lru_cache
def get_verification_service() -> VerificationService:
    return VerificationService(
        user_repository=_user_repository(),
        user_service=get_user_service(),
        mailer=_mailer(),
    )


@lru_cache
def get_referral_service() -> ReferralService:
    return ReferralService(
        user_repository=_user_repository(),
        referral_repository=_referral_repository(),
        employee_repository=_employee_repository(),
        company_repository=_company_repository(),
        user_service=get_user_service(),
        mailer=_mailer(),
        completion_credits=settings.REFERRAL_COMPLETION_CREDITS,
    )


@lru_cache
def get_join_service() -> JoinService:
    return JoinService(
        user_repository=_user_repository(),
        employee_repository=_employee_repository(),
        company_repository=_company_repository(),
        admin_repository=_admin_repository(),
        invite_repository=_invite_repository(),
        merchant_repository=_merchant_repository(),
        referral_service=get_referral_service(),
        user_service=get_user_service(),
        mailer=_mailer(),
    )
