import logging
import re
import secrets
from typing import Any, Dict

from libs.common import Mailer, ServiceError, now_utc
from libs.common.qr import app_url
from libs.schemas import Referral, ReferralStatus, User

from services.auth.app.core.UserService import UserService
from services.auth.app.db.repositories.referrals import ReferralRepositoryPort
from services.auth.app.db.repositories.users import UserRepositoryPort
from services.company.app.db.repositories.companies import CompanyRepositoryPort
from services.company.app.db.repositories.employees import EmployeeRepositoryPort

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
RECENT_REFERRALS = 10
COMPLETION_CREDITS = 100


class ReferralError(ServiceError):
    pass


def generate_referral_code(first_name: str | None) -> str:
    """{first three letters of the first name | REF}-{6 hex}, upper-case."""
    letters = re.sub(r"[^A-Za-z]", "", first_name or "")[:3].upper()
    return f"{letters or 'REF'}-{secrets.token_hex(3).upper()}"


class ReferralService:
    def __init__(
        self,
        user_repository: UserRepositoryPort,
        referral_repository: ReferralRepositoryPort,
        employee_repository: EmployeeRepositoryPort,
        company_repository: CompanyRepositoryPort,
        user_service: UserService,
        mailer: Mailer | None = None,
        completion_credits: int = COMPLETION_CREDITS,
    ):
        self.user_repository = user_repository
        self.referral_repository = referral_repository
        self.employee_repository = employee_repository
        self.company_repository = company_repository
        self.user_service = user_service
        self.mailer = mailer or Mailer()
        self.completion_credits = completion_credits

    async def _company_of(self, user_id: int) -> tuple[int | None, str | None]:
        employee = await self.employee_repository.find_by_user_id(user_id)
        if employee is None:
            return None, None
        company = await self.company_repository.find_by_id(employee.companyId)
        return employee.companyId, company.name if company else None

    async def ensure_code(self, user: User) -> str:
        if user.referralCode:
            return user.referralCode
        code = generate_referral_code(user.firstName)
        await self.user_repository.update_fields(user.userId, {"referralCode": code})
        return code

    async def overview(self, user_id: int) -> Dict[str, Any]:
        user = await self.user_service.get_user(user_id)
        code = await self.ensure_code(user)
        _, company_name = await self._company_of(user_id)
        stats = await self.referral_repository.stats(user_id)
        recent = await self.referral_repository.list_by_referrer(user_id, limit=RECENT_REFERRALS)
        return {
            "referralCode": code,
            "referralLink": f"{app_url()}/register?ref={code}",
            "companyName": company_name,
            "stats": stats,
            "recentReferrals": recent,
        }

    async def invite(self, user_id: int, email: str | None) -> Referral:
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ReferralError("ERR-IVD-VALUE", "Valid email is required")

        user = await self.user_service.get_user(user_id)
        if await self.user_repository.find_by_email(email):
            raise ReferralError("ERR-DUP-VALUE", "This person is already registered")
        if await self.referral_repository.find_pending(user_id, email):
            raise ReferralError("ERR-DUP-VALUE", "You have already invited this email")

        code = await self.ensure_code(user)
        company_id, _ = await self._company_of(user_id)
        referral = await self.referral_repository.create_referral(
            referrer_id=user_id,
            referred_email=email,
            referral_code=code,
            status=ReferralStatus.PENDING,
            referrer_company_id=company_id,
        )

        result = await self.mailer.send_referral_invite_email(email, user.full_name, code)
        if not result.success:
            logger.error("[Email] referral invite to %s failed: %s", email, result.error)

        await self.user_service.mark_step(user_id, "firstReferralSent")
        return referral

    async def validate(self, code: str | None) -> Dict[str, Any]:
        if not code:
            raise ReferralError("ERR-IVD-PARAM", "Referral code is required")
        referrer = await self.user_repository.find_by_referral_code(code.strip())
        if referrer is None:
            raise ReferralError("ERR-NOT-FOUND", "Invalid referral code")
        _, company_name = await self._company_of(referrer.userId)
        return {
            "valid": True,
            "referrerName": referrer.full_name,
            "companyName": company_name,
        }

    async def record_registration(self, referral_code: str, user: User, company_id: int | None) -> int | None:
        """
        Link a newly registered user to their referrer.

        Returns:
            the referrer's user id, or None when the code is unknown
        """
        referrer = await self.user_repository.find_by_referral_code(referral_code.strip())
        if referrer is None or referrer.userId == user.userId:
            return None

        await self.user_repository.update_fields(user.userId, {"referredBy": referrer.userId})
        referrer_company_id, _ = await self._company_of(referrer.userId)
        same_company = company_id is not None and company_id == referrer_company_id
        now = now_utc()

        pending = await self.referral_repository.find_pending(referrer.userId, user.email)
        if pending:
            await self.referral_repository.update_fields(
                pending.referralId,
                {
                    "status": ReferralStatus.REGISTERED,
                    "referredUserId": user.userId,
                    "referredCompanyId": company_id,
                    "sameCompany": same_company,
                    "registeredAt": now,
                },
            )
        else:
            await self.referral_repository.create_referral(
                referrer_id=referrer.userId,
                referred_email=user.email,
                referral_code=referrer.referralCode or referral_code,
                status=ReferralStatus.REGISTERED,
                referrer_company_id=referrer_company_id,
                referred_user_id=user.userId,
                referred_company_id=company_id,
                same_company=same_company,
                registered_at=now,
            )
        return referrer.userId

    async def complete_for(self, user_id: int) -> bool:
        """Complete the REGISTERED referral naming this user and credit the referrer."""
        referral = await self.referral_repository.find_registered_by_referred_user(user_id)
        if referral is None:
            return False
        await self.referral_repository.update_fields(
            referral.referralId,
            {"status": ReferralStatus.COMPLETED, "completedAt": now_utc()},
        )
        await self.user_repository.add_credits(referral.referrerId, self.completion_credits)
        logger.info("referral %s completed, %d credits to user %s", referral.referralId, self.completion_credits, referral.referrerId)
        return True
