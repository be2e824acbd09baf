import logging
from datetime import timedelta
from typing import Any, Dict, List

from libs.common import AuditLogger, Mailer, ServiceError, audit_logger, now_utc
from libs.common.timezone import ensure_utc
from libs.schemas import AuditAction, Merchant, MerchantStatus

from services.auth.app.db.repositories.users import UserRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

RECENT_SIGNUP_DAYS = 7
SUSPICIOUS_EMAIL_MARKERS = ("temp", "test")
STATUS_FILTERS = {
    "pending": MerchantStatus.PENDING,
    "active": MerchantStatus.ACTIVE,
    "suspended": MerchantStatus.SUSPENDED,
    "all": None,
}


class MerchantReviewError(ServiceError):
    pass


def verification_flags(merchant: Merchant, now=None) -> Dict[str, bool]:
    now = now or now_utc()
    created = ensure_utc(merchant.createdAt)
    email = (merchant.contactEmail or "").lower()
    return {
        "hasWebsite": bool(merchant.website),
        "hasMultipleLocations": len(merchant.locations) > 1,
        "recentSignup": created is not None and now - created < timedelta(days=RECENT_SIGNUP_DAYS),
        "suspiciousEmail": any(marker in email for marker in SUSPICIOUS_EMAIL_MARKERS),
    }


class MerchantReviewService:
    """Approval queue for new merchants."""

    def __init__(
        self,
        merchant_repository: MerchantRepositoryPort,
        user_repository: UserRepositoryPort,
        mailer: Mailer | None = None,
        audit: AuditLogger | None = None,
    ):
        self.merchant_repository = merchant_repository
        self.user_repository = user_repository
        self.mailer = mailer or Mailer()
        self.audit = audit or audit_logger

    async def list_merchants(self, status: str | None = "pending") -> List[Dict[str, Any]]:
        key = (status or "pending").lower()
        if key not in STATUS_FILTERS:
            raise MerchantReviewError("ERR-IVD-VALUE", f"Invalid status: {status}")
        merchants = await self.merchant_repository.list_by_status(STATUS_FILTERS[key])
        now = now_utc()
        return [{"merchant": m, "verification": verification_flags(m, now)} for m in merchants]

    async def _merchant(self, merchant_id: int) -> Merchant:
        merchant = await self.merchant_repository.find_by_id(merchant_id)
        if merchant is None:
            raise MerchantReviewError("ERR-NOT-FOUND", "Merchant not found")
        return merchant

    async def _contact_email(self, merchant: Merchant) -> str | None:
        if merchant.contactEmail:
            return merchant.contactEmail
        owner = await self.user_repository.find_by_id(merchant.userId)
        return owner.email if owner else None

    async def approve(self, merchant_id: int, audit: AuditLogger | None = None) -> Merchant:
        merchant = await self._merchant(merchant_id)
        if merchant.status == MerchantStatus.ACTIVE:
            raise MerchantReviewError("ERR-IVD-VALUE", "Merchant is already approved")

        updated = await self.merchant_repository.update_fields(
            merchant_id, {"status": MerchantStatus.ACTIVE, "verifiedAt": now_utc()}
        )
        email = await self._contact_email(merchant)
        if email:
            result = await self.mailer.send_merchant_approved_email(email, merchant.businessName)
            if not result.success:
                logger.error("[Email] approval email to %s failed: %s", email, result.error)

        await (audit or self.audit).info(
            AuditAction.MERCHANT_UPDATED,
            f"Approved merchant {merchant.businessName}",
            resource="Merchant",
            resource_id=merchant_id,
            changes={"before": {"status": merchant.status.value}, "after": {"status": MerchantStatus.ACTIVE.value}},
        )
        return updated

    async def reject(self, merchant_id: int, reason: str | None, audit: AuditLogger | None = None) -> Merchant:
        reason = (reason or "").strip()
        if not reason:
            raise MerchantReviewError("ERR-IVD-PARAM", "Rejection reason is required")
        merchant = await self._merchant(merchant_id)

        updated = await self.merchant_repository.update_fields(merchant_id, {"status": MerchantStatus.SUSPENDED})
        email = await self._contact_email(merchant)
        if email:
            result = await self.mailer.send_merchant_rejected_email(email, merchant.businessName, reason)
            if not result.success:
                logger.error("[Email] rejection email to %s failed: %s", email, result.error)

        await (audit or self.audit).warn(
            AuditAction.MERCHANT_UPDATED,
            f"Rejected merchant {merchant.businessName}",
            resource="Merchant",
            resource_id=merchant_id,
            metadata={"reason": reason},
            changes={"before": {"status": merchant.status.value}, "after": {"status": MerchantStatus.SUSPENDED.value}},
        )
        return updated
