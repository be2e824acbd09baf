"""
Employee identity for merchants: short-lived verification tokens and
signed employee passes.
"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict

import jwt

from libs.common import ServiceError, get_jwt_config, now_utc
from libs.common.qr import app_url, sign_payload, verify_signature
from libs.schemas import Employee, EmployeePass, EmployeeStatus, PassStatus

from services.auth.app.core.UserService import UserService
from services.auth.app.db.repositories.users import UserRepositoryPort
from services.company.app.db.repositories.companies import CompanyRepositoryPort
from services.company.app.db.repositories.employees import EmployeeRepositoryPort
from services.coupon.app.db.repositories.passes import EmployeePassRepositoryPort
from services.merchant.app.core.DiscountService import calculate_discount
from services.merchant.app.db.repositories.discounts import DiscountRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

TOKEN_TYPE = "verify"
TOKEN_TTL_MINUTES = 10

NO_DISCOUNT = {"percentage": 0, "name": "No discount configured", "type": "NONE"}


class IdentityError(ServiceError):
    pass


def company_name_from_email(email: str | None) -> str | None:
    """`jane@acme.com` -> `Acme`."""
    if not email or "@" not in email:
        return None
    label = email.split("@", 1)[1].split(".", 1)[0]
    return label.capitalize() or None


def pass_payload(employee_pass: EmployeePass) -> Dict[str, Any]:
    return {
        "passId": employee_pass.passId,
        "employeeId": employee_pass.employeeId,
        "companyId": employee_pass.companyId,
    }


class IdentityService:
    def __init__(
        self,
        employee_repository: EmployeeRepositoryPort,
        company_repository: CompanyRepositoryPort,
        user_repository: UserRepositoryPort,
        pass_repository: EmployeePassRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        discount_repository: DiscountRepositoryPort,
        user_service: UserService,
        token_ttl_minutes: int = TOKEN_TTL_MINUTES,
    ):
        self.employee_repository = employee_repository
        self.company_repository = company_repository
        self.user_repository = user_repository
        self.pass_repository = pass_repository
        self.merchant_repository = merchant_repository
        self.discount_repository = discount_repository
        self.user_service = user_service
        self.token_ttl = timedelta(minutes=token_ttl_minutes)

    async def _employee(self, user_id: int) -> Employee:
        employee = await self.employee_repository.find_by_user_id(user_id)
        if employee is None:
            raise IdentityError("ERR-NOT-FOUND", "Employee record not found")
        return employee

    async def _company_name(self, employee: Employee, email: str | None) -> str | None:
        company = await self.company_repository.find_by_id(employee.companyId)
        if company is not None:
            return company.name
        return company_name_from_email(email)

    async def create_verification_token(self, user_id: int) -> Dict[str, Any]:
        """
        Issue a token the merchant scans to confirm the employee's identity.

        Returns:
            token, qrUrl, walletUrl and expiresAt
        """
        employee = await self._employee(user_id)
        user = await self.user_repository.find_by_id(user_id)
        now = now_utc()
        expires_at = now + self.token_ttl
        secret_key, algorithm = get_jwt_config()
        token = jwt.encode(
            {
                "employeeId": employee.employeeId,
                "companyId": employee.companyId,
                "email": user.email if user else None,
                "nonce": secrets.token_hex(16),
                "type": TOKEN_TYPE,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            secret_key,
            algorithm=algorithm,
        )
        return {
            "token": token,
            "qrUrl": f"{app_url()}/verify/{token}",
            "walletUrl": f"{app_url()}/show?id={token}",
            "expiresAt": expires_at,
        }

    async def _discount_for(self, merchant_user_id: int | None, company_name: str | None) -> Dict[str, Any]:
        if merchant_user_id is None or not company_name:
            return dict(NO_DISCOUNT)
        merchant = await self.merchant_repository.find_by_user_id(merchant_user_id)
        if merchant is None:
            return dict(NO_DISCOUNT)
        discounts = await self.discount_repository.list_by_merchant(merchant.merchantId, active_only=True)
        chosen = calculate_discount(discounts, company_name)["discount"]
        if chosen is None:
            return dict(NO_DISCOUNT)
        return {"percentage": chosen.percentage, "name": chosen.name, "type": chosen.type.value}

    async def verify_token(self, token: str, merchant_user_id: int | None = None) -> Dict[str, Any]:
        """
        Confirm the employee behind a scanned token.

        When the scanning merchant is known, the discount their employer gets
        there is attached; otherwise it reads "No discount configured".

        Raises:
            IdentityError: ERR-EXPIRED / ERR-IVD-VALUE for a bad token,
                ERR-FORBIDDEN for an unknown or unverified employee,
                ERR-ACCESS-DENIED when the employee may not use discounts
        """
        secret_key, algorithm = get_jwt_config()
        try:
            payload = jwt.decode(token, secret_key, algorithms=[algorithm])
        except jwt.ExpiredSignatureError as e:
            raise IdentityError("ERR-EXPIRED", "Verification token has expired") from e
        except jwt.InvalidTokenError as e:
            raise IdentityError("ERR-IVD-VALUE", "Invalid verification token") from e
        if payload.get("type") != TOKEN_TYPE or not payload.get("employeeId"):
            raise IdentityError("ERR-IVD-VALUE", "Invalid verification token")

        employee = await self.employee_repository.find_by_id(int(payload["employeeId"]))
        if employee is None:
            raise IdentityError("ERR-FORBIDDEN", "Employee not found")
        user = await self.user_repository.find_by_id(employee.userId)
        if user is None or not user.emailVerified:
            raise IdentityError("ERR-FORBIDDEN", "Employee email is not verified")
        can_access, reason = employee.access_check()
        if not can_access:
            raise IdentityError("ERR-ACCESS-DENIED", reason)

        company_name = await self._company_name(employee, user.email)
        return {
            "verified": True,
            "employeeName": employee.full_name,
            "companyName": company_name,
            "email": user.email,
            "discount": await self._discount_for(merchant_user_id, company_name),
        }

    async def get_or_create_pass(self, user_id: int) -> Dict[str, Any]:
        employee = await self._employee(user_id)
        employee_pass = await self.pass_repository.find_active_by_employee(employee.employeeId)
        if employee_pass is None:
            pass_id = f"PASS-{employee.employeeId}-{secrets.token_hex(3)}"
            signature = sign_payload(
                {"passId": pass_id, "employeeId": employee.employeeId, "companyId": employee.companyId}
            )
            employee_pass = await self.pass_repository.create_pass(
                pass_id, employee.employeeId, employee.companyId, signature
            )
            logger.info("created pass %s for employee %s", pass_id, employee.employeeId)
        await self.user_service.mark_step(user_id, "walletPassAdded")
        return {
            "pass": employee_pass,
            "qrPayload": {**pass_payload(employee_pass), "signature": employee_pass.signature},
        }

    async def revoke_pass(self, user_id: int) -> None:
        employee = await self._employee(user_id)
        employee_pass = await self.pass_repository.find_active_by_employee(employee.employeeId)
        if employee_pass is None:
            raise IdentityError("ERR-NOT-FOUND", "No active pass found")
        await self.pass_repository.set_status(employee_pass.passId, PassStatus.REVOKED)

    async def verify_pass(self, pass_id: str | None, signature: str | None) -> Dict[str, Any]:
        """
        Check a scanned pass and count the use.

        Raises:
            IdentityError: unknown or revoked pass (404), bad signature (400),
                employee not ACTIVE (403)
        """
        if not pass_id or not signature:
            raise IdentityError("ERR-IVD-PARAM", "passId and signature are required")
        employee_pass = await self.pass_repository.find_by_pass_id(pass_id)
        if employee_pass is None or employee_pass.status != PassStatus.ACTIVE:
            raise IdentityError("ERR-NOT-FOUND", "Pass not found")
        if not verify_signature(pass_payload(employee_pass), signature):
            raise IdentityError("ERR-IVD-VALUE", "Invalid pass signature")

        employee = await self.employee_repository.find_by_id(employee_pass.employeeId)
        if employee is None or employee.status != EmployeeStatus.ACTIVE:
            raise IdentityError("ERR-ACCESS-DENIED", "Employee is not active")

        used = await self.pass_repository.record_use(employee_pass.passId)
        email = await self.employee_repository.find_email(employee.employeeId)
        return {
            "valid": True,
            "pass": used,
            "employeeName": employee.full_name,
            "companyName": await self._company_name(employee, email),
        }
