import logging
import re
from datetime import timedelta
from typing import Any, Dict, List

from libs.common import AuditLogger, Mailer, ServiceError, audit_logger, now_utc
from libs.schemas import AuditAction, Merchant, MerchantReferral, MerchantReferralStatus

from services.auth.app.db.repositories.users import UserRepositoryPort
from services.merchant.app.core.BillingService import PaymentGatewayError, PaymentGatewayPort
from services.merchant.app.db.repositories.merchant_referrals import MerchantReferralRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_REFERRALS_PER_DAY = 10
REFERRER_REWARD_MONTHS = 3
REFEREE_REWARD_MONTHS = 9
MAX_REWARD_MONTHS_PER_YEAR = 12

REGISTERED_STATUSES = (
    MerchantReferralStatus.REGISTERED,
    MerchantReferralStatus.TRIAL_ACTIVE,
    MerchantReferralStatus.CONVERTED,
)


class MerchantReferralError(ServiceError):
    pass


def referral_stats(referrals: List[MerchantReferral]) -> Dict[str, Any]:
    total = len(referrals)
    converted = [r for r in referrals if r.status == MerchantReferralStatus.CONVERTED]
    claimed = [r for r in referrals if r.referrerRewardClaimed]
    return {
        "totalReferred": total,
        "totalRegistered": sum(1 for r in referrals if r.status in REGISTERED_STATUSES),
        "totalConverted": len(converted),
        "totalRewardsClaimed": len(claimed),
        "monthsEarned": sum(r.referrerRewardMonths for r in claimed),
        "availableMonths": sum(r.referrerRewardMonths for r in converted if not r.referrerRewardClaimed),
        "conversionRate": round(len(converted) / total * 100, 1) if total else 0,
    }


class MerchantReferralService:
    """
    Merchant-to-merchant referrals.

    Callers pass the merchant already resolved by the subscription guard.
    """

    def __init__(
        self,
        referral_repository: MerchantReferralRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        user_repository: UserRepositoryPort,
        gateway: PaymentGatewayPort,
        mailer: Mailer | None = None,
        audit: AuditLogger | None = None,
    ):
        self.referral_repository = referral_repository
        self.merchant_repository = merchant_repository
        self.user_repository = user_repository
        self.gateway = gateway
        self.mailer = mailer or Mailer()
        self.audit = audit or audit_logger

    async def create_referral(
        self,
        merchant: Merchant,
        data: Dict[str, Any],
        audit: AuditLogger | None = None,
    ) -> MerchantReferral:
        email = (data.get("referredEmail") or "").strip().lower()
        business_name = (data.get("referredBusinessName") or "").strip()
        if not 2 <= len(business_name) <= 100:
            raise MerchantReferralError("ERR-IVD-VALUE", "Business name must be at least 2 characters")
        if not EMAIL_PATTERN.match(email):
            raise MerchantReferralError("ERR-IVD-VALUE", "Valid email is required")

        since = now_utc() - timedelta(days=1)
        if await self.referral_repository.count_created_since(merchant.merchantId, since) >= MAX_REFERRALS_PER_DAY:
            raise MerchantReferralError(
                "ERR-RATE-LIMITED", f"You've reached the maximum of {MAX_REFERRALS_PER_DAY} referrals per day"
            )
        if await self.referral_repository.find_by_referrer_and_email(merchant.merchantId, email):
            raise MerchantReferralError("ERR-DUP-VALUE", "You have already referred this restaurant")
        if await self.merchant_repository.find_by_contact_email(email):
            raise MerchantReferralError("ERR-DUP-VALUE", "This restaurant is already on Corbez")
        owner = await self.user_repository.find_by_id(merchant.userId)
        own = {e.lower() for e in (merchant.contactEmail, owner.email if owner else None) if e}
        if email in own:
            raise MerchantReferralError("ERR-IVD-VALUE", "You cannot refer yourself")

        state = data.get("referredState")
        referral = await self.referral_repository.create_referral(
            referrer_merchant_id=merchant.merchantId,
            referred_business_name=business_name,
            referred_email=email,
            referred_contact_name=data.get("referredContactName"),
            referred_phone=data.get("referredPhone"),
            referred_city=data.get("referredCity"),
            referred_state=state.upper() if state else None,
            why_good_fit=data.get("whyGoodFit"),
            referrer_reward_months=REFERRER_REWARD_MONTHS,
            referee_reward_months=REFEREE_REWARD_MONTHS,
        )

        result = await self.mailer.send_merchant_referral_invitation_email(
            email,
            merchant.businessName,
            business_name,
            contact_name=referral.referredContactName,
            reward_months=REFEREE_REWARD_MONTHS,
        )
        if not result.success:
            logger.error("[Email] merchant referral invitation to %s failed: %s", email, result.error)

        await (audit or self.audit).info(
            AuditAction.MERCHANT_UPDATED,
            f"Referred {business_name}",
            resource="MerchantReferral",
            resource_id=referral.referralId,
            metadata={"merchantId": merchant.merchantId},
        )
        return referral

    async def list_referrals(self, merchant: Merchant) -> Dict[str, Any]:
        referrals = await self.referral_repository.list_by_referrer(merchant.merchantId)
        return {"referrals": referrals, "stats": referral_stats(referrals)}

    async def _own(self, merchant: Merchant, referral_id: int) -> MerchantReferral:
        referral = await self.referral_repository.find_by_id(referral_id)
        if referral is None or referral.referrerMerchantId != merchant.merchantId:
            raise MerchantReferralError("ERR-NOT-FOUND", "Referral not found")
        return referral

    async def get_referral(self, merchant: Merchant, referral_id: int) -> MerchantReferral:
        return await self._own(merchant, referral_id)

    async def claim_reward(
        self, merchant: Merchant, referral_id: int, audit: AuditLogger | None = None
    ) -> Dict[str, Any]:
        """
        Turn a converted referral into free subscription months.

        Raises:
            MerchantReferralError: ERR-IVD-VALUE when the referral is not
                converted or already claimed, ERR-LIMIT-REACHED past the yearly cap
        """
        referral = await self._own(merchant, referral_id)
        if referral.status != MerchantReferralStatus.CONVERTED:
            raise MerchantReferralError("ERR-IVD-VALUE", "Referral must be converted to claim reward")
        if referral.referrerRewardClaimed:
            raise MerchantReferralError("ERR-ALREADY-USED", "Reward has already been claimed")

        now = now_utc()
        claimed = await self.referral_repository.claimed_months_since(merchant.merchantId, now - timedelta(days=365))
        if claimed + referral.referrerRewardMonths > MAX_REWARD_MONTHS_PER_YEAR:
            raise MerchantReferralError(
                "ERR-LIMIT-REACHED",
                f"You can earn at most {MAX_REWARD_MONTHS_PER_YEAR} free months per year",
            )
        if not merchant.stripeSubscriptionId:
            raise MerchantReferralError("ERR-IVD-VALUE", "No subscription found")

        try:
            trial_end = await self.gateway.extend_trial(merchant.stripeSubscriptionId, referral.referrerRewardMonths)
        except PaymentGatewayError as e:
            raise MerchantReferralError("ERR-INTERNAL", "Failed to apply reward") from e

        await self.merchant_repository.update_fields(merchant.merchantId, {"subscriptionTrialEnd": trial_end})
        updated = await self.referral_repository.update_fields(
            referral.referralId,
            {"referrerRewardClaimed": True, "referrerRewardClaimedAt": now},
        )
        await (audit or self.audit).info(
            AuditAction.SUBSCRIPTION_UPDATED,
            f"Referral reward of {referral.referrerRewardMonths} months applied",
            resource="MerchantReferral",
            resource_id=referral.referralId,
            metadata={"merchantId": merchant.merchantId, "trialEnd": trial_end.isoformat()},
        )
        return {
            "message": f"{referral.referrerRewardMonths} free months added to your subscription",
            "monthsApplied": referral.referrerRewardMonths,
            "referral": updated,
        }

    async def delete_referral(self, merchant: Merchant, referral_id: int) -> None:
        referral = await self._own(merchant, referral_id)
        if referral.status != MerchantReferralStatus.PENDING:
            raise MerchantReferralError("ERR-IVD-VALUE", "Cannot delete referral that has already been processed")
        await self.referral_repository.delete_referral(referral.referralId)
