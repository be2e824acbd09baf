from functools import lru_cache

from libs.common import Mailer

from services.auth.app.db.repositories.users import SQLAlchemyUserRepository
from services.company.app.core.CompanyService import CompanyService
from services.company.app.core.InviteService import InviteService
from services.company.app.core.ReportService import ReportService
from services.company.app.core.SavingsService import SavingsService
from services.company.app.db.connection import settings
from services.company.app.db.repositories.admins import SQLAlchemyCompanyAdminRepository
from services.company.app.db.repositories.companies import SQLAlchemyCompanyRepository
from services.company.app.db.repositories.employees import SQLAlchemyEmployeeRepository
from services.company.app.db.repositories.invites import SQLAlchemyInviteRepository
from services.merchant.app.db.repositories.discounts import SQLAlchemyDiscountRepository
from services.merchant.app.db.repositories.merchants import SQLAlchemyMerchantRepository


@lru_cache
def _company_repository() -> SQLAlchemyCompanyRepository:
    return SQLAlchemyCompanyRepository()


@lru_cache
def _admin_repository() -> SQLAlchemyCompanyAdminRepository:
    return SQLAlchemyCompanyAdminRepository()


@lru_cache
def _employee_repository() -> SQLAlchemyEmployeeRepository:
    return SQLAlchemyEmployeeRepository()


@lru_cache
def _invite_repository() -> SQLAlchemyInviteRepository:
    return SQLAlchemyInviteRepository()


@lru_cache
def _user_repository() -> SQLAlchemyUserRepository:
    return SQLAlchemyUserRepository()


@lru_cache
def get_company_service() -> CompanyService:
    return CompanyService(
        company_repository=_company_repository(),
        admin_repository=_admin_repository(),
        employee_repository=_employee_repository(),
        invite_repository=_invite_repository(),
        user_repository=_user_repository(),
    )


@lru_cache
def get_invite_service() -> InviteService:
    return InviteService(
        invite_repository=_invite_repository(),
        company_service=get_company_service(),
        user_repository=_user_repository(),
        mailer=Mailer(api_key=settings.RESEND_API_KEY, from_email=settings.EMAIL_FROM),
        default_expiry_days=settings.INVITE_DEFAULT_EXPIRY_DAYS,
    )


@lru_cache
def get_savings_service() -> SavingsService:
    return SavingsService(
        company_service=get_company_service(),
        employee_repository=_employee_repository(),
        merchant_repository=SQLAlchemyMerchantRepository(),
        discount_repository=SQLAlchemyDiscountRepository(),
        visits_per_month=settings.SAVINGS_VISITS_PER_MONTH,
    )


@lru_cache
def get_report_service() -> ReportService:
    return ReportService(company_service=get_company_service())
