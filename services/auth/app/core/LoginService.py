from dataclasses import dataclass
from datetime import datetime

from libs.common import AuditLogger, AuthError, ServiceError, audit_logger, issue_tokens, subject_for_role, verify_refresh_token
from libs.schemas import AuditAction, User

from services.auth.app.core.passwords import verify_password
from services.auth.app.db.repositories.users import UserRepositoryPort


@dataclass
class LoginTokens:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    role: str
    user_name: str


class LoginError(ServiceError):
    pass


class LoginService:
    def __init__(self, user_repository: UserRepositoryPort, audit: AuditLogger | None = None):
        self.user_repository = user_repository
        self.audit = audit or audit_logger

    async def login(self, email: str | None, password: str | None, audit: AuditLogger | None = None) -> LoginTokens:
        audit = audit or self.audit
        if not email or not password:
            raise LoginError("ERR-IVD-PARAM", "Email and password are required")

        user = await self.user_repository.find_by_email(email.strip().lower())
        if user is None or not verify_password(password, user.passwordHash):
            await audit.warn(
                AuditAction.LOGIN,
                "Failed login attempt",
                resource="User",
                metadata={"email": email.strip().lower()},
                success=False,
                error_message="Invalid email or password",
            )
            raise LoginError("ERR-UNAUTHORIZED", "Invalid email or password")

        await audit.with_user(user.userId, user.email, user.role.value).info(
            AuditAction.LOGIN,
            "User logged in",
            resource="User",
            resource_id=user.userId,
        )
        return self._issue(user)

    async def refresh(self, refresh_token: str | None) -> LoginTokens:
        """
        Exchange a refresh token for a new token pair.

        The role is re-read from the user so a role change (e.g. promotion to
        company admin) takes effect on the next refresh.
        """
        if not refresh_token:
            raise LoginError("ERR-UNAUTHORIZED", "Refresh token is required")
        try:
            _, user_id = verify_refresh_token(refresh_token)
        except AuthError as exc:
            raise LoginError(exc.code, exc.message) from exc

        user = await self.user_repository.find_by_id(user_id)
        if user is None:
            raise LoginError("ERR-UNAUTHORIZED", "User no longer exists")
        return self._issue(user)

    async def logout(self, user_id: int | None, audit: AuditLogger | None = None) -> None:
        if user_id is None:
            return
        await (audit or self.audit).with_user(user_id).info(
            AuditAction.LOGOUT,
            "User logged out",
            resource="User",
            resource_id=user_id,
        )

    @staticmethod
    def _issue(user: User) -> LoginTokens:
        tokens = issue_tokens(subject_for_role(user.role.value), user.userId)
        return LoginTokens(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            refresh_expires_at=tokens.refresh_expires_at,
            role=user.role.value,
            user_name=user.full_name,
        )
