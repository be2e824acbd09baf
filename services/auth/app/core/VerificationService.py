import logging
import secrets
from datetime import timedelta

from libs.common import AuditLogger, Mailer, ServiceError, audit_logger, ensure_utc, now_utc
from libs.schemas import AuditAction

from services.auth.app.core.UserService import UserService
from services.auth.app.core.passwords import hash_password
from services.auth.app.db.repositories.users import UserRepositoryPort

logger = logging.getLogger(__name__)

VERIFICATION_TTL = timedelta(hours=24)
RESET_TTL = timedelta(hours=1)
MIN_PASSWORD_LENGTH = 6

GENERIC_RESEND_MESSAGE = "If an account exists with this email, a verification link has been sent"
GENERIC_RESET_MESSAGE = "If an account exists with this email, a password reset link has been sent"


class VerificationError(ServiceError):
    pass


class VerificationService:
    """
    Email verification and password reset flows.

    Both flows answer unknown emails with the same generic message so the
    endpoints cannot be used to probe for accounts.
    """

    def __init__(
        self,
        user_repository: UserRepositoryPort,
        user_service: UserService,
        mailer: Mailer | None = None,
        audit: AuditLogger | None = None,
    ):
        self.user_repository = user_repository
        self.user_service = user_service
        self.mailer = mailer or Mailer()
        self.audit = audit or audit_logger

    async def verify_email(self, token: str | None, audit: AuditLogger | None = None) -> str:
        if not token:
            raise VerificationError("ERR-IVD-PARAM", "Verification token is required")

        user = await self.user_repository.find_by_verification_token(token)
        if user is None:
            raise VerificationError("ERR-IVD-VALUE", "Invalid or expired verification token")
        if user.emailVerified:
            return "Email already verified"
        if user.verificationExpiresAt and ensure_utc(user.verificationExpiresAt) < now_utc():
            raise VerificationError("ERR-EXPIRED", "Invalid or expired verification token")

        await self.user_repository.update_fields(
            user.userId,
            {"emailVerified": True, "verificationToken": None, "verificationExpiresAt": None},
        )
        await self.user_service.mark_step(user.userId, "emailVerified")

        result = await self.mailer.send_welcome_email(user.email, user.firstName, user.role.value)
        if not result.success:
            logger.error("[Email] welcome email to %s failed: %s", user.email, result.error)

        await (audit or self.audit).with_user(user.userId, user.email, user.role.value).info(
            AuditAction.EMAIL_VERIFIED,
            "Email address verified",
            resource="User",
            resource_id=user.userId,
        )
        return "Email verified successfully"

    async def resend_verification(self, email: str | None) -> str:
        if not email:
            raise VerificationError("ERR-IVD-PARAM", "Email is required")

        user = await self.user_repository.find_by_email(email.strip().lower())
        if user is None:
            return GENERIC_RESEND_MESSAGE
        if user.emailVerified:
            return "Email is already verified"

        token = secrets.token_hex(32)
        await self.user_repository.update_fields(
            user.userId,
            {"verificationToken": token, "verificationExpiresAt": now_utc() + VERIFICATION_TTL},
        )
        result = await self.mailer.send_verification_email(user.email, token, user.firstName)
        if not result.success:
            logger.error("[Email] verification email to %s failed: %s", user.email, result.error)
            raise VerificationError("ERR-INTERNAL", "Failed to send verification email")
        return GENERIC_RESEND_MESSAGE

    async def forgot_password(self, email: str | None) -> str:
        if not email:
            raise VerificationError("ERR-IVD-PARAM", "Email is required")

        user = await self.user_repository.find_by_email(email.strip().lower())
        if user is None:
            return GENERIC_RESET_MESSAGE

        token = secrets.token_hex(32)
        await self.user_repository.update_fields(
            user.userId,
            {"resetPasswordToken": token, "resetPasswordExpiresAt": now_utc() + RESET_TTL},
        )
        result = await self.mailer.send_password_reset_email(user.email, token, user.firstName)
        if not result.success:
            logger.error("[Email] password reset email to %s failed: %s", user.email, result.error)
        return GENERIC_RESET_MESSAGE

    async def reset_password(self, token: str | None, password: str | None, audit: AuditLogger | None = None) -> str:
        if not token or not password:
            raise VerificationError("ERR-IVD-PARAM", "Token and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise VerificationError("ERR-IVD-VALUE", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        user = await self.user_repository.find_by_reset_token(token)
        if user is None or not user.resetPasswordExpiresAt or ensure_utc(user.resetPasswordExpiresAt) < now_utc():
            raise VerificationError("ERR-IVD-VALUE", "Invalid or expired reset token")

        await self.user_repository.update_fields(
            user.userId,
            {
                "passwordHash": hash_password(password),
                "resetPasswordToken": None,
                "resetPasswordExpiresAt": None,
            },
        )
        await (audit or self.audit).with_user(user.userId, user.email, user.role.value).info(
            AuditAction.PASSWORD_RESET,
            "Password reset",
            resource="User",
            resource_id=user.userId,
        )
        return "Password has been reset successfully"
