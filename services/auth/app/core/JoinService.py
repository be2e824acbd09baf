import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict

from libs.common import AuditLogger, Mailer, ServiceError, audit_logger, now_utc
from libs.common.qr import generate_public_user_id
from libs.common.slug import slugify
from libs.schemas import (
    AdminRole,
    AuditAction,
    Company,
    EmployeeStatus,
    InviteCode,
    InviteStatus,
    User,
    UserRole,
    default_permissions,
)

from services.auth.app.core.ReferralService import ReferralService, generate_referral_code
from services.auth.app.core.UserService import UserService
from services.auth.app.core.passwords import hash_password
from services.auth.app.db.repositories.users import UserRepositoryPort
from services.company.app.db.repositories.admins import CompanyAdminRepositoryPort
from services.company.app.db.repositories.companies import CompanyRepositoryPort
from services.company.app.db.repositories.employees import EmployeeRepositoryPort
from services.company.app.db.repositories.invites import InviteRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
VERIFICATION_TTL = timedelta(hours=24)
REGISTRABLE_ROLES = (UserRole.EMPLOYEE, UserRole.MERCHANT, UserRole.COMPANY_ADMIN)

# consumer mailboxes never identify an employer
FREE_EMAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "icloud.com",
        "aol.com",
        "mail.com",
        "protonmail.com",
        "zoho.com",
    }
)

# unique key collisions on generated ids are retried this many times
CREATE_ATTEMPTS = 5


class JoinError(ServiceError):
    pass


@dataclass
class Registration:
    firstName: str | None = None
    lastName: str | None = None
    email: str | None = None
    password: str | None = None
    role: str | None = None
    inviteCode: str | None = None
    referralCode: str | None = None
    companyName: str | None = None
    city: str | None = None
    state: str | None = None
    address: str | None = None
    zipCode: str | None = None
    businessName: str | None = None


@dataclass
class JoinResult:
    user: User
    companyJoined: bool
    employeeStatus: EmployeeStatus | None = None


def normalize_invite_code(code: str) -> str:
    return re.sub(r"\s", "", code or "").upper()


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].lower()


class JoinService:
    def __init__(
        self,
        user_repository: UserRepositoryPort,
        employee_repository: EmployeeRepositoryPort,
        company_repository: CompanyRepositoryPort,
        admin_repository: CompanyAdminRepositoryPort,
        invite_repository: InviteRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        referral_service: ReferralService,
        user_service: UserService,
        mailer: Mailer | None = None,
        audit: AuditLogger | None = None,
    ):
        self.user_repository = user_repository
        self.employee_repository = employee_repository
        self.company_repository = company_repository
        self.admin_repository = admin_repository
        self.invite_repository = invite_repository
        self.merchant_repository = merchant_repository
        self.referral_service = referral_service
        self.user_service = user_service
        self.mailer = mailer or Mailer()
        self.audit = audit or audit_logger

    async def register(self, form: Registration, audit: AuditLogger | None = None) -> JoinResult:
        audit = audit or self.audit

        # 1. input validation
        if not all((form.firstName, form.lastName, form.email, form.password, form.role)):
            raise JoinError("ERR-IVD-PARAM", "Missing required fields")

        email = form.email.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise JoinError("ERR-IVD-VALUE", "Invalid email format")
        if len(form.password) < MIN_PASSWORD_LENGTH:
            raise JoinError("ERR-IVD-VALUE", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        try:
            role = UserRole(form.role)
        except ValueError as e:
            raise JoinError("ERR-IVD-VALUE", "Invalid role") from e
        if role not in REGISTRABLE_ROLES:
            raise JoinError("ERR-IVD-VALUE", "Invalid role")

        if role == UserRole.COMPANY_ADMIN and not (form.companyName and form.city and form.state):
            raise JoinError(
                "ERR-IVD-PARAM",
                "Company name, city, and state are required for company admin registration",
            )

        # 2. duplicate email
        if await self.user_repository.find_by_email(email):
            raise JoinError("ERR-DUP-VALUE", "Email already registered")

        # 3. employee company resolution (before the user exists)
        invite: InviteCode | None = None
        employee_company: Company | None = None
        if role == UserRole.EMPLOYEE:
            if form.inviteCode:
                invite = await self._validate_invite_for(form.inviteCode, email)
                employee_company = await self.company_repository.find_by_id(invite.companyId)
            else:
                employee_company = await self._company_for_domain(email)
                if employee_company is None:
                    raise JoinError("ERR-IVD-VALUE", "A valid invite code is required")

        # 4. user
        user = await self._create_user(form, email, role)

        # 5. role profile
        employee_status = None
        company_id = None
        if role == UserRole.EMPLOYEE:
            company_id = employee_company.companyId if employee_company else invite.companyId
            auto_approve = employee_company is not None and employee_company.settings.autoApproveEmployees
            employee_status = await self._create_employee(user, company_id, invite, auto_approve)
        elif role == UserRole.MERCHANT:
            business_name = (form.businessName or "").strip() or f"{user.firstName} {user.lastName}"
            await self.merchant_repository.create_merchant(
                user_id=user.userId,
                business_name=business_name,
                slug=slugify(business_name),
                contact_email=email,
            )
        else:
            await self._create_company(user, form, email)

        # 6. referral tracking never fails registration
        if form.referralCode:
            try:
                await self.referral_service.record_registration(form.referralCode, user, company_id)
            except Exception as e:
                logger.error("failed to track referral %s for %s: %s", form.referralCode, email, e)

        # 7. verification email
        result = await self.mailer.send_verification_email(email, user.verificationToken, user.firstName)
        if not result.success:
            logger.error("[Email] verification email to %s failed: %s", email, result.error)

        await audit.with_user(user.userId, email, role.value).info(
            AuditAction.REGISTER,
            f"User registered as {role.value}",
            resource="User",
            resource_id=user.userId,
            metadata={"companyJoined": invite is not None or employee_company is not None},
        )
        return JoinResult(user=user, companyJoined=company_id is not None, employeeStatus=employee_status)

    async def _create_user(self, form: Registration, email: str, role: UserRole) -> User:
        password_hash = hash_password(form.password)
        for _ in range(CREATE_ATTEMPTS):
            user = await self.user_repository.create_user(
                public_id=generate_public_user_id(),
                email=email,
                password_hash=password_hash,
                first_name=form.firstName.strip(),
                last_name=form.lastName.strip(),
                role=role,
                verification_token=secrets.token_hex(32),
                verification_expires_at=now_utc() + VERIFICATION_TTL,
                referral_code=generate_referral_code(form.firstName),
            )
            if user is not None:
                return user
            # either a generated id collided or the email was taken meanwhile
            if await self.user_repository.find_by_email(email):
                raise JoinError("ERR-DUP-VALUE", "Email already registered")
        raise JoinError("ERR-INTERNAL", "Could not create user")

    async def _create_employee(
        self,
        user: User,
        company_id: int,
        invite: InviteCode | None,
        auto_approve: bool = False,
    ) -> EmployeeStatus:
        now = now_utc()
        # an invite or an auto-approving domain admits the employee directly,
        # anyone else waits for a company admin
        active = invite is not None or auto_approve
        status = EmployeeStatus.ACTIVE if active else EmployeeStatus.PENDING

        await self.employee_repository.create_employee(
            user_id=user.userId,
            company_id=company_id,
            first_name=user.firstName,
            last_name=user.lastName,
            status=status,
            invited_by=invite.createdBy if invite else None,
            joined_at=now if active else None,
        )
        if invite is not None:
            await self.invite_repository.mark_used(invite.inviteId, user.userId, now)
        await self.user_service.mark_step(user.userId, "companyLinked")
        return status

    async def _create_company(self, user: User, form: Registration, email: str) -> Company:
        base = slugify(form.companyName)
        slug = base
        counter = 0
        while await self.company_repository.slug_exists(slug):
            counter += 1
            slug = f"{base}-{counter}"

        company = await self.company_repository.create_company(
            name=form.companyName.strip(),
            slug=slug,
            city=form.city,
            state=form.state.upper(),
            address=form.address,
            zip_code=form.zipCode,
            admin_user_id=user.userId,
            email_domain=email_domain(email),
        )
        await self.admin_repository.create_admin(
            user_id=user.userId,
            company_id=company.companyId,
            role=AdminRole.OWNER,
            permissions=default_permissions(AdminRole.OWNER),
        )
        return company

    async def _company_for_domain(self, email: str) -> Company | None:
        domain = email_domain(email)
        if domain in FREE_EMAIL_DOMAINS:
            return None
        return await self.company_repository.find_by_email_domain(domain)

    async def _validate_invite_for(self, raw_code: str, email: str) -> InviteCode:
        invite = await self.invite_repository.find_by_code(normalize_invite_code(raw_code))
        if invite is None:
            raise JoinError("ERR-IVD-VALUE", "Invalid invite code")
        self._check_invite_usable(invite)
        if invite.email and invite.email.lower() != email:
            raise JoinError("ERR-IVD-VALUE", "This invite code is for a different email address")
        return invite

    def _check_invite_usable(self, invite: InviteCode) -> None:
        if invite.status == InviteStatus.USED:
            raise JoinError("ERR-ALREADY-USED", "This invite code has already been used")
        if invite.status == InviteStatus.REVOKED:
            raise JoinError("ERR-IVD-VALUE", "This invite code has been revoked")
        if invite.status == InviteStatus.EXPIRED or invite.is_expired():
            raise JoinError("ERR-EXPIRED", "This invite code has expired")

    async def verify_invite(self, code: str | None) -> Dict[str, Any]:
        if not code:
            raise JoinError("ERR-IVD-PARAM", "Invite code is required")
        invite = await self.invite_repository.find_by_code(normalize_invite_code(code))
        if invite is None:
            raise JoinError("ERR-NOT-FOUND", "Invalid invite code")
        if invite.status == InviteStatus.ACTIVE and invite.is_expired():
            await self.invite_repository.set_status(invite.inviteId, InviteStatus.EXPIRED)
        self._check_invite_usable(invite)

        company = await self.company_repository.find_by_id(invite.companyId)
        return {
            "valid": True,
            "companyName": company.name if company else None,
            "email": invite.email,
        }

    async def suggest_company(self, email: str | None) -> Dict[str, Any]:
        if not email or "@" not in email:
            raise JoinError("ERR-IVD-PARAM", "Email is required")
        domain = email_domain(email)
        if domain in FREE_EMAIL_DOMAINS:
            return {"found": False}
        company = await self.company_repository.find_by_email_domain(domain)
        if company is None:
            return {"found": False}
        return {
            "found": True,
            "companyId": company.companyId,
            "companyName": company.name,
            "autoApprove": company.settings.autoApproveEmployees,
        }
