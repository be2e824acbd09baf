import logging
import re
from datetime import timedelta
from typing import Any, Dict, List

from libs.common import AuditLogger, Mailer, ServiceError, audit_logger, now_utc
from libs.common.qr import generate_invite_code
from libs.schemas import AuditAction, InviteCode, InviteStatus

from services.auth.app.db.repositories.users import UserRepositoryPort
from services.company.app.core.CompanyService import CompanyService
from services.company.app.db.repositories.invites import InviteRepositoryPort

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_INVITES = 100
LIST_LIMIT = 100
DEFAULT_EXPIRY_DAYS = 30
MAX_EXPIRY_DAYS = 365
# attempts per invite when a generated code is already taken
CODE_ATTEMPTS = 5


class InviteError(ServiceError):
    pass


class InviteService:
    def __init__(
        self,
        invite_repository: InviteRepositoryPort,
        company_service: CompanyService,
        user_repository: UserRepositoryPort,
        mailer: Mailer | None = None,
        default_expiry_days: int = DEFAULT_EXPIRY_DAYS,
        audit: AuditLogger | None = None,
    ):
        self.invite_repository = invite_repository
        self.company_service = company_service
        self.user_repository = user_repository
        self.mailer = mailer or Mailer()
        self.default_expiry_days = default_expiry_days
        self.audit = audit or audit_logger

    async def list_invites(self, user_id: int, status: str | None = None) -> List[InviteCode]:
        admin = await self.company_service.require_admin(user_id)
        wanted = None
        if status:
            try:
                wanted = InviteStatus(status.upper())
            except ValueError:
                raise InviteError("ERR-IVD-VALUE", f"Invalid status: {status}")

        # ACTIVE and EXPIRED are decided on the effective status
        stored = None if wanted in (InviteStatus.ACTIVE, InviteStatus.EXPIRED) else wanted
        invites = await self.invite_repository.list_by_company(admin.companyId, stored, LIST_LIMIT)

        now = now_utc()
        result = []
        for invite in invites:
            effective = invite.effective_status(now)
            if wanted is not None and effective != wanted:
                continue
            result.append(invite.model_copy(update={"status": effective}))
        return result

    async def create_invites(
        self,
        user_id: int,
        count: int | None = None,
        emails: List[str] | None = None,
        expires_in_days: int | None = None,
        audit: AuditLogger | None = None,
    ) -> Dict[str, Any]:
        """
        Create unbound codes (`count`) or one bound, emailed code per address.

        Returns:
            {"invites": [...], "skipped": [emails that already had an ACTIVE invite]}
        """
        admin = await self.company_service.require_permission(user_id, "manageInvites")

        days = self.default_expiry_days if expires_in_days is None else expires_in_days
        if not 1 <= days <= MAX_EXPIRY_DAYS:
            raise InviteError("ERR-IVD-VALUE", f"expiresInDays must be between 1 and {MAX_EXPIRY_DAYS}")

        targets: List[str | None]
        skipped: List[str] = []
        if emails:
            normalized = []
            for raw in emails:
                email = (raw or "").strip().lower()
                if not EMAIL_PATTERN.match(email):
                    raise InviteError("ERR-IVD-VALUE", f"Invalid email: {raw}")
                if email not in normalized:
                    normalized.append(email)
            if len(normalized) > MAX_INVITES:
                raise InviteError("ERR-IVD-VALUE", f"At most {MAX_INVITES} invites per request")
            existing = await self.invite_repository.emails_with_active_invite(admin.companyId, normalized)
            skipped = [email for email in normalized if email in existing]
            targets = [email for email in normalized if email not in existing]
        else:
            if count is None or not 1 <= count <= MAX_INVITES:
                raise InviteError("ERR-IVD-VALUE", f"count must be between 1 and {MAX_INVITES}")
            targets = [None] * count

        company = await self.company_service.get_company(admin.companyId)
        inviter = await self.user_repository.find_by_id(user_id)
        expires_at = now_utc() + timedelta(days=days)

        created: List[InviteCode] = []
        for email in targets:
            invite = await self._create_one(admin.companyId, user_id, email, expires_at)
            created.append(invite)
            if email:
                result = await self.mailer.send_invite_email(
                    email,
                    invite.code,
                    company.name,
                    inviter.full_name if inviter else None,
                )
                if not result.success:
                    logger.error("[Email] invite %s to %s failed: %s", invite.code, email, result.error)

        await (audit or self.audit).info(
            AuditAction.INVITE_CREATED,
            f"Created {len(created)} invite(s)",
            resource="Company",
            resource_id=admin.companyId,
            metadata={"count": len(created), "skipped": len(skipped), "expiresInDays": days},
        )
        return {"invites": created, "skipped": skipped}

    async def _create_one(self, company_id: int, created_by: int, email: str | None, expires_at) -> InviteCode:
        for _ in range(CODE_ATTEMPTS):
            invite = await self.invite_repository.create_invite(
                code=generate_invite_code(),
                company_id=company_id,
                created_by=created_by,
                email=email,
                expires_at=expires_at,
            )
            if invite is not None:
                return invite
        raise InviteError("ERR-INTERNAL", "Could not generate a unique invite code")

    async def _company_invite(self, company_id: int, invite_id: int) -> InviteCode:
        invite = await self.invite_repository.find_by_id(invite_id)
        if invite is None or invite.companyId != company_id:
            raise InviteError("ERR-NOT-FOUND", "Invite not found")
        return invite

    async def resend(self, user_id: int, invite_id: int) -> InviteCode:
        admin = await self.company_service.require_permission(user_id, "manageInvites")
        invite = await self._company_invite(admin.companyId, invite_id)
        if not invite.email:
            raise InviteError("ERR-IVD-VALUE", "Invite has no email address")
        if invite.effective_status() != InviteStatus.ACTIVE:
            raise InviteError("ERR-IVD-VALUE", "Only active invites can be resent")

        company = await self.company_service.get_company(admin.companyId)
        inviter = await self.user_repository.find_by_id(user_id)
        result = await self.mailer.send_invite_email(
            invite.email,
            invite.code,
            company.name,
            inviter.full_name if inviter else None,
        )
        if not result.success:
            logger.error("[Email] invite resend %s to %s failed: %s", invite.code, invite.email, result.error)
            raise InviteError("ERR-INTERNAL", "Failed to send invite email")
        return invite

    async def revoke(self, user_id: int, invite_id: int, audit: AuditLogger | None = None) -> None:
        admin = await self.company_service.require_permission(user_id, "manageInvites")
        invite = await self._company_invite(admin.companyId, invite_id)
        if invite.status == InviteStatus.USED:
            raise InviteError("ERR-IVD-VALUE", "Cannot revoke a used invite")

        await self.invite_repository.set_status(invite.inviteId, InviteStatus.REVOKED)
        await (audit or self.audit).info(
            AuditAction.INVITE_REVOKED,
            f"Invite {invite.code} revoked",
            resource="InviteCode",
            resource_id=invite.inviteId,
            metadata={"companyId": admin.companyId},
        )
