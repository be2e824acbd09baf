import logging
from typing import Any, Dict, Iterable, List

from libs.common import AuditLogger, Cache, CacheKeys, ServiceError, audit_logger, get_cache
from libs.schemas import PRIORITY_BY_TYPE, AuditAction, Discount, DiscountType, Merchant

from services.merchant.app.db.repositories.discounts import DiscountRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

DISCOUNT_CACHE_TTL = 300
MAX_MONTHLY_LIMIT = 100


class DiscountError(ServiceError):
    pass


def _applies(discount: Discount, company_id: int | None, order_amount: float | None) -> bool:
    if discount.type == DiscountType.BASE:
        return True
    if discount.type == DiscountType.COMPANY:
        return company_id is not None and discount.companyId == company_id
    return order_amount is not None and discount.minSpend is not None and order_amount >= discount.minSpend


def select_applicable_discount(
    discounts: Iterable[Discount],
    company_id: int | None = None,
    order_amount: float | None = None,
) -> Discount | None:
    """
    Best active discount for an employee of `company_id` ordering `order_amount`.

    BASE always applies, COMPANY only for its own company and SPEND_THRESHOLD
    once the order reaches minSpend. The highest percentage wins and ties go
    to the higher priority.
    """
    candidates = [d for d in discounts if d.isActive and _applies(d, company_id, order_amount)]
    if not candidates:
        return None
    return max(candidates, key=lambda d: (d.percentage, d.priority))


def _company_matches(discount: Discount, company_name: str | None) -> bool:
    if not company_name or not discount.companyName:
        return False
    return discount.companyName.lower() in company_name.lower()


def calculate_discount(
    discounts: Iterable[Discount],
    company_name: str | None = None,
    order_amount: float | None = None,
) -> Dict[str, Any]:
    """
    Calculator used by the merchant dashboard.

    Reached spend thresholds and company discounts whose name is contained in
    `company_name` compete on percentage, ties going to the higher priority.
    The base discount only applies when none of them does.

    Returns:
        {"discount", "percentage", "savings", "finalAmount"}
    """
    active = [d for d in discounts if d.isActive]

    thresholds = [
        d
        for d in active
        if d.type == DiscountType.SPEND_THRESHOLD
        and order_amount is not None
        and d.minSpend is not None
        and order_amount >= d.minSpend
    ]
    company = [d for d in active if d.type == DiscountType.COMPANY and _company_matches(d, company_name)]
    base = [d for d in active if d.type == DiscountType.BASE]

    group = thresholds + company or base
    chosen = max(group, key=lambda d: (d.percentage, d.priority)) if group else None

    percentage = chosen.percentage if chosen else 0
    if order_amount is None:
        return {"discount": chosen, "percentage": percentage, "savings": None, "finalAmount": None}

    savings = round(order_amount * percentage / 100, 2)
    return {
        "discount": chosen,
        "percentage": percentage,
        "savings": savings,
        "finalAmount": round(order_amount - savings, 2),
    }


class DiscountService:
    def __init__(
        self,
        discount_repository: DiscountRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        cache: Cache | None = None,
        audit: AuditLogger | None = None,
    ):
        self.discount_repository = discount_repository
        self.merchant_repository = merchant_repository
        self._cache = cache
        self.audit = audit or audit_logger

    @property
    def cache(self) -> Cache:
        return self._cache or get_cache()

    async def _merchant(self, user_id: int) -> Merchant:
        merchant = await self.merchant_repository.find_by_user_id(user_id)
        if merchant is None:
            raise DiscountError("ERR-NOT-FOUND", "Merchant profile not found")
        return merchant

    async def _owned(self, user_id: int, discount_id: int) -> tuple[Merchant, Discount]:
        merchant = await self._merchant(user_id)
        discount = await self.discount_repository.find_by_id(discount_id)
        if discount is None or discount.merchantId != merchant.merchantId:
            raise DiscountError("ERR-NOT-FOUND", "Discount not found")
        return merchant, discount

    async def _invalidate(self, merchant_id: int) -> None:
        await self.cache.delete(CacheKeys.merchant_discounts(merchant_id))

    async def merchant_discounts(self, merchant_id: int) -> List[Discount]:
        """Every discount of a merchant, served from cache for five minutes."""

        async def _fetch():
            discounts = await self.discount_repository.list_by_merchant(merchant_id)
            return [d.model_dump(mode="json") for d in discounts]

        cached = await self.cache.get_or_set(CacheKeys.merchant_discounts(merchant_id), _fetch, DISCOUNT_CACHE_TTL)
        return [Discount.model_validate(item) for item in cached]

    async def list_discounts(self, user_id: int) -> List[Discount]:
        merchant = await self._merchant(user_id)
        return await self.merchant_discounts(merchant.merchantId)

    async def _check_company_duplicate(
        self, merchant_id: int, company_name: str, exclude_id: int | None = None
    ) -> None:
        existing = await self.discount_repository.list_by_merchant(merchant_id)
        for discount in existing:
            if (
                discount.type == DiscountType.COMPANY
                and discount.discountId != exclude_id
                and (discount.companyName or "").lower() == company_name.lower()
            ):
                raise DiscountError("ERR-DUP-VALUE", "A discount for this company already exists")

    @staticmethod
    def _check_percentage(percentage: Any) -> float:
        try:
            value = float(percentage)
        except (TypeError, ValueError) as e:
            raise DiscountError("ERR-IVD-VALUE", "Percentage is required") from e
        if not 0 <= value <= 100:
            raise DiscountError("ERR-IVD-VALUE", "Percentage must be between 0 and 100")
        return value

    @staticmethod
    def _check_min_spend(min_spend: Any) -> float:
        try:
            value = float(min_spend)
        except (TypeError, ValueError):
            value = 0
        if value <= 0:
            raise DiscountError(
                "ERR-IVD-VALUE", "Minimum spend amount is required for spend threshold discounts"
            )
        return value

    @staticmethod
    def _check_monthly_limit(limit: Any) -> int | None:
        if limit is None:
            return None
        if not isinstance(limit, int) or not 1 <= limit <= MAX_MONTHLY_LIMIT:
            raise DiscountError("ERR-IVD-VALUE", f"Monthly usage limit must be between 1 and {MAX_MONTHLY_LIMIT}")
        return limit

    async def create_discount(self, user_id: int, data: Dict[str, Any], audit: AuditLogger | None = None) -> Discount:
        name = (data.get("name") or "").strip()
        if not data.get("type") or not name:
            raise DiscountError("ERR-IVD-PARAM", "Missing required fields")
        if data.get("percentage") is None:
            raise DiscountError("ERR-IVD-PARAM", "Percentage is required")
        try:
            discount_type = DiscountType(data["type"])
        except ValueError as e:
            raise DiscountError("ERR-IVD-VALUE", "Invalid discount type") from e
        percentage = self._check_percentage(data["percentage"])

        company_name = (data.get("companyName") or "").strip() or None
        min_spend = None
        if discount_type == DiscountType.COMPANY and not company_name:
            raise DiscountError("ERR-IVD-VALUE", "Company name is required for company discounts")
        if discount_type == DiscountType.SPEND_THRESHOLD:
            min_spend = self._check_min_spend(data.get("minSpend"))
        monthly_limit = self._check_monthly_limit(data.get("monthlyUsageLimit"))

        merchant = await self._merchant(user_id)
        if discount_type == DiscountType.BASE:
            existing = await self.discount_repository.list_by_merchant(merchant.merchantId)
            if any(d.type == DiscountType.BASE for d in existing):
                raise DiscountError("ERR-DUP-VALUE", "Base discount already exists. Edit the existing one instead.")
        if discount_type == DiscountType.COMPANY:
            await self._check_company_duplicate(merchant.merchantId, company_name)

        discount = await self.discount_repository.create_discount(
            merchant_id=merchant.merchantId,
            type=discount_type,
            name=name,
            percentage=percentage,
            priority=PRIORITY_BY_TYPE[discount_type],
            company_id=data.get("companyId") if discount_type == DiscountType.COMPANY else None,
            company_name=company_name if discount_type == DiscountType.COMPANY else None,
            min_spend=min_spend,
            monthly_usage_limit=monthly_limit,
        )
        await self._invalidate(merchant.merchantId)

        await (audit or self.audit).info(
            AuditAction.DISCOUNT_CREATED,
            f"{discount_type.value} discount '{name}' created",
            resource="Discount",
            resource_id=discount.discountId,
            metadata={"merchantId": merchant.merchantId, "percentage": percentage},
        )
        return discount

    async def update_discount(
        self, user_id: int, discount_id: int, data: Dict[str, Any], audit: AuditLogger | None = None
    ) -> Discount:
        """
        Apply a partial update. `data` carries only the fields the caller sent,
        so an explicit monthlyUsageLimit of None clears the limit.
        """
        merchant, discount = await self._owned(user_id, discount_id)

        fields: Dict[str, Any] = {}
        if data.get("name") is not None:
            name = data["name"].strip()
            if not name:
                raise DiscountError("ERR-IVD-VALUE", "Name cannot be empty")
            fields["name"] = name
        if data.get("percentage") is not None:
            fields["percentage"] = self._check_percentage(data["percentage"])
        if data.get("isActive") is not None:
            fields["isActive"] = bool(data["isActive"])
        if data.get("companyName") is not None and discount.type == DiscountType.COMPANY:
            company_name = data["companyName"].strip()
            if not company_name:
                raise DiscountError("ERR-IVD-VALUE", "Company name is required for company discounts")
            await self._check_company_duplicate(merchant.merchantId, company_name, exclude_id=discount.discountId)
            fields["companyName"] = company_name
        if data.get("minSpend") is not None and discount.type == DiscountType.SPEND_THRESHOLD:
            fields["minSpend"] = self._check_min_spend(data["minSpend"])
        if "monthlyUsageLimit" in data:
            fields["monthlyUsageLimit"] = self._check_monthly_limit(data["monthlyUsageLimit"])

        if not fields:
            return discount

        updated = await self.discount_repository.update_fields(discount.discountId, fields)
        await self._invalidate(merchant.merchantId)
        await (audit or self.audit).log_change(
            AuditAction.DISCOUNT_UPDATED,
            "Discount",
            discount.discountId,
            f"Discount '{updated.name}' updated",
            before={key: getattr(discount, key) for key in fields},
            after=fields,
        )
        return updated

    async def toggle_discount(self, user_id: int, discount_id: int, audit: AuditLogger | None = None) -> Discount:
        merchant, discount = await self._owned(user_id, discount_id)
        updated = await self.discount_repository.update_fields(discount.discountId, {"isActive": not discount.isActive})
        await self._invalidate(merchant.merchantId)
        await (audit or self.audit).info(
            AuditAction.DISCOUNT_UPDATED,
            f"Discount '{discount.name}' {'activated' if updated.isActive else 'deactivated'}",
            resource="Discount",
            resource_id=discount.discountId,
            metadata={"isActive": updated.isActive},
        )
        return updated

    async def delete_discount(self, user_id: int, discount_id: int, audit: AuditLogger | None = None) -> None:
        merchant, discount = await self._owned(user_id, discount_id)
        await self.discount_repository.delete_discount(discount.discountId)
        await self._invalidate(merchant.merchantId)
        await (audit or self.audit).info(
            AuditAction.DISCOUNT_DELETED,
            f"Discount '{discount.name}' deleted",
            resource="Discount",
            resource_id=discount.discountId,
            metadata={"merchantId": merchant.merchantId, "type": discount.type.value},
        )

    async def applicable(
        self,
        user_id: int,
        company_id: int | None = None,
        company_name: str | None = None,
        order_amount: float | None = None,
    ) -> Dict[str, Any]:
        """
        Resolve the discount an order would get.

        With a companyId the id-based resolution is used, otherwise the
        name-matching calculator.
        """
        if order_amount is not None and order_amount < 0:
            raise DiscountError("ERR-IVD-VALUE", "Order amount cannot be negative")
        merchant = await self._merchant(user_id)
        discounts = await self.merchant_discounts(merchant.merchantId)

        if company_id is None:
            return calculate_discount(discounts, company_name, order_amount)

        chosen = select_applicable_discount(discounts, company_id, order_amount)
        percentage = chosen.percentage if chosen else 0
        if order_amount is None:
            return {"discount": chosen, "percentage": percentage, "savings": None, "finalAmount": None}
        savings = round(order_amount * percentage / 100, 2)
        return {
            "discount": chosen,
            "percentage": percentage,
            "savings": savings,
            "finalAmount": round(order_amount - savings, 2),
        }
