import logging
import re
from typing import Any, Dict

from libs.common import AuditLogger, ServiceError, audit_logger, now_utc
from libs.common.slug import slugify
from libs.schemas import AuditAction, Merchant, MerchantLocation, PriceTier, SeatingCapacity

from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("description", "logo", "contactEmail", "contactPhone", "website")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
STATE_PATTERN = re.compile(r"^[A-Za-z]{2}$")
SECURITY_TERMS_VERSION = "1.0"


class MerchantError(ServiceError):
    pass


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


class MerchantService:
    """
    Merchant profile and the three-step onboarding wizard.
    """

    def __init__(self, merchant_repository: MerchantRepositoryPort, audit: AuditLogger | None = None):
        self.merchant_repository = merchant_repository
        self.audit = audit or audit_logger

    async def get_merchant(self, user_id: int) -> Merchant:
        merchant = await self.merchant_repository.find_by_user_id(user_id)
        if merchant is None:
            raise MerchantError("ERR-NOT-FOUND", "Merchant profile not found")
        return merchant

    async def update_profile(self, user_id: int, fields: Dict[str, Any], audit: AuditLogger | None = None) -> Merchant:
        merchant = await self.get_merchant(user_id)
        changes = {key: value for key, value in fields.items() if key in PROFILE_FIELDS}
        if "contactEmail" in changes and changes["contactEmail"]:
            email = changes["contactEmail"].strip().lower()
            if not EMAIL_PATTERN.match(email):
                raise MerchantError("ERR-IVD-VALUE", "Invalid contact email")
            changes["contactEmail"] = email
        if not changes:
            return merchant

        updated = await self.merchant_repository.update_fields(merchant.merchantId, changes)
        await (audit or self.audit).log_change(
            AuditAction.MERCHANT_UPDATED,
            "Merchant",
            merchant.merchantId,
            "Merchant profile updated",
            before={key: getattr(merchant, key) for key in changes},
            after=changes,
        )
        return updated

    @staticmethod
    def current_step(merchant: Merchant) -> int:
        if merchant.locations:
            return 3
        if merchant.businessName:
            return 2
        return 1

    async def onboarding_status(self, user_id: int) -> Dict[str, Any]:
        merchant = await self.get_merchant(user_id)
        return {
            "needsOnboarding": not merchant.onboardingCompleted,
            "currentStep": self.current_step(merchant),
            "onboardingCompleted": merchant.onboardingCompleted,
        }

    async def save_step(self, user_id: int, step: int, data: Dict[str, Any], audit: AuditLogger | None = None) -> Merchant:
        """
        Persist one wizard step.

        Raises:
            MerchantError: ERR-IVD-VALUE for an unknown step or invalid field
        """
        merchant = await self.get_merchant(user_id)

        if step == 1:
            updated = await self._save_business(merchant, data)
        elif step == 2:
            updated = await self._save_location(merchant, data)
        elif step == 3:
            updated = await self._save_metrics(merchant, data)
        else:
            raise MerchantError("ERR-IVD-VALUE", "Invalid step")

        await (audit or self.audit).info(
            AuditAction.MERCHANT_UPDATED,
            f"Onboarding step {step} saved",
            resource="Merchant",
            resource_id=merchant.merchantId,
            metadata={"step": step},
        )
        return updated

    async def _save_business(self, merchant: Merchant, data: Dict[str, Any]) -> Merchant:
        name = _text(data, "businessName")
        if len(name) < 2:
            raise MerchantError("ERR-IVD-VALUE", "Business name must be at least 2 characters")
        fields: Dict[str, Any] = {"businessName": name, "slug": slugify(name)}
        if "description" in data:
            fields["description"] = _text(data, "description") or None
        return await self.merchant_repository.update_fields(merchant.merchantId, fields)

    async def _save_location(self, merchant: Merchant, data: Dict[str, Any]) -> Merchant:
        address, city, state, zip_code = (_text(data, key) for key in ("address", "city", "state", "zipCode"))
        if not (address and city and zip_code):
            raise MerchantError("ERR-IVD-VALUE", "Address, city and zip code are required")
        if not STATE_PATTERN.match(state):
            raise MerchantError("ERR-IVD-VALUE", "State must be 2 letters")

        location = MerchantLocation(
            address=address,
            city=city,
            state=state.upper(),
            zipCode=zip_code,
            country="US",
            phone=_text(data, "phone") or None,
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )
        return await self.merchant_repository.save_primary_location(merchant.merchantId, location)

    async def _save_metrics(self, merchant: Merchant, data: Dict[str, Any]) -> Merchant:
        try:
            avg_order_value = float(data.get("avgOrderValue"))
        except (TypeError, ValueError):
            avg_order_value = 0
        if avg_order_value <= 0:
            raise MerchantError("ERR-IVD-VALUE", "Average order value must be greater than 0")
        try:
            price_tier = PriceTier(data.get("priceTier"))
            seating = SeatingCapacity(data.get("seatingCapacity"))
        except ValueError as e:
            raise MerchantError("ERR-IVD-VALUE", "Invalid price tier or seating capacity") from e

        return await self.merchant_repository.update_fields(
            merchant.merchantId,
            {
                "avgOrderValue": avg_order_value,
                "priceTier": price_tier.value,
                "seatingCapacity": seating.value,
                "cateringAvailable": bool(data.get("cateringAvailable", False)),
                "offersDelivery": bool(data.get("offersDelivery", False)),
            },
        )

    async def complete_onboarding(
        self, user_id: int, accept_security_terms: bool, audit: AuditLogger | None = None
    ) -> Merchant:
        merchant = await self.get_merchant(user_id)
        if not merchant.businessName or not merchant.locations or not merchant.businessMetrics.avgOrderValue:
            raise MerchantError("ERR-IVD-VALUE", "Please complete all onboarding steps")
        if accept_security_terms is not True:
            raise MerchantError("ERR-IVD-VALUE", "You must accept the security terms")

        updated = await self.merchant_repository.update_fields(
            merchant.merchantId,
            {
                "onboardingCompleted": True,
                "securityTermsAcceptedAt": now_utc(),
                "securityTermsVersion": SECURITY_TERMS_VERSION,
            },
        )
        logger.info("Merchant %s completed onboarding", merchant.merchantId)
        await (audit or self.audit).info(
            AuditAction.MERCHANT_UPDATED,
            "Onboarding completed",
            resource="Merchant",
            resource_id=merchant.merchantId,
            metadata={"securityTermsVersion": SECURITY_TERMS_VERSION},
        )
        return updated
