import logging
from typing import Any, Dict

from libs.common import AuditLogger, Cache, CacheKeys, ServiceError, audit_logger, get_cache, month_key, now_utc
from libs.schemas import AuditAction, ClaimedCoupon, CouponStatus, CouponUsage, Merchant

from services.auth.app.core.ReferralService import ReferralService
from services.auth.app.core.UserService import UserService
from services.company.app.db.repositories.companies import CompanyRepositoryPort
from services.company.app.db.repositories.employees import EmployeeRepositoryPort
from services.coupon.app.core.ClaimService import is_expired, usage_status
from services.coupon.app.db.repositories.coupons import ClaimedCouponRepositoryPort
from services.merchant.app.db.repositories.discounts import DiscountRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

FIRST_TIME_BONUS_PERCENTAGE = 5
COUPON_CACHE_TTL = 60

# preview result codes
NOT_FOUND = "NOT_FOUND"
INVALID_DATA = "INVALID_DATA"
ALREADY_REDEEMED = "ALREADY_REDEEMED"
EXPIRED = "EXPIRED"
CANCELLED = "CANCELLED"
EMPLOYEE_INACTIVE = "EMPLOYEE_INACTIVE"
VALID = "VALID"


class RedeemError(ServiceError):
    pass


def applied_percentage(percentage: float, first_time: bool, bonus: float = FIRST_TIME_BONUS_PERCENTAGE) -> float:
    if not first_time:
        return percentage
    return min(100.0, percentage + bonus)


def savings_for(order_amount: float | None, percentage: float) -> float | None:
    if order_amount is None:
        return None
    return round(order_amount * percentage / 100, 2)


class RedeemService:
    """
    Merchant side of coupons: preview and redemption at the till.
    """

    def __init__(
        self,
        coupon_repository: ClaimedCouponRepositoryPort,
        employee_repository: EmployeeRepositoryPort,
        company_repository: CompanyRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        discount_repository: DiscountRepositoryPort,
        user_service: UserService,
        referral_service: ReferralService,
        first_time_bonus: float = FIRST_TIME_BONUS_PERCENTAGE,
        cache: Cache | None = None,
        audit: AuditLogger | None = None,
    ):
        self.coupon_repository = coupon_repository
        self.employee_repository = employee_repository
        self.company_repository = company_repository
        self.merchant_repository = merchant_repository
        self.discount_repository = discount_repository
        self.user_service = user_service
        self.referral_service = referral_service
        self.first_time_bonus = first_time_bonus
        self._cache = cache
        self.audit = audit or audit_logger

    @property
    def cache(self) -> Cache:
        return self._cache or get_cache()

    async def _merchant(self, user_id: int) -> Merchant:
        merchant = await self.merchant_repository.find_by_user_id(user_id)
        if merchant is None:
            raise RedeemError("ERR-NOT-FOUND", "Merchant profile not found")
        return merchant

    async def _cached_coupon(self, code: str) -> ClaimedCoupon | None:
        async def _fetch():
            coupon = await self.coupon_repository.find_by_code(code)
            return coupon.model_dump(mode="json") if coupon else None

        data = await self.cache.get_or_set(CacheKeys.coupon_code(code), _fetch, COUPON_CACHE_TTL)
        return ClaimedCoupon.model_validate(data) if data else None

    async def preview(self, user_id: int, code: str) -> Dict[str, Any]:
        """
        What the merchant sees after scanning a coupon.

        Raises:
            RedeemError: with `result` set to NOT_FOUND, INVALID_DATA,
                ALREADY_REDEEMED, EXPIRED, CANCELLED or EMPLOYEE_INACTIVE
        """
        code = code.strip().upper()
        merchant = await self._merchant(user_id)
        coupon = await self._cached_coupon(code)
        if coupon is None:
            raise RedeemError("ERR-NOT-FOUND", "Coupon not found", result=NOT_FOUND)
        if coupon.merchantId != merchant.merchantId:
            raise RedeemError("ERR-FORBIDDEN", "This coupon is not for your restaurant", result=INVALID_DATA)
        if coupon.status == CouponStatus.REDEEMED:
            raise RedeemError("ERR-ALREADY-USED", "Coupon has already been redeemed", result=ALREADY_REDEEMED)
        if coupon.status == CouponStatus.CANCELLED:
            raise RedeemError("ERR-IVD-VALUE", "Coupon has been cancelled", result=CANCELLED)
        if coupon.status == CouponStatus.EXPIRED or is_expired(coupon):
            raise RedeemError("ERR-EXPIRED", "Coupon has expired", result=EXPIRED)

        employee = await self.employee_repository.find_by_id(coupon.employeeId)
        can_access, reason = employee.access_check() if employee else (False, "Employee not found")
        if not can_access:
            raise RedeemError("ERR-IVD-VALUE", reason, result=EMPLOYEE_INACTIVE)

        company = await self.company_repository.find_by_id(employee.companyId)
        discount = await self.discount_repository.find_by_id(coupon.discountId)
        first_time = not await self.coupon_repository.has_any_usage(employee.employeeId)
        return {
            "valid": True,
            "result": VALID,
            "coupon": coupon,
            "employee": {
                "name": employee.full_name,
                "company": company.name if company else None,
            },
            "discount": {
                "name": discount.name if discount else None,
                "percentage": discount.percentage if discount else None,
                "monthlyUsageLimit": discount.monthlyUsageLimit if discount else None,
                "firstTimeBonus": self.first_time_bonus if first_time else None,
            },
            "usageStatus": usage_status(coupon, discount),
        }

    async def redeem(
        self,
        user_id: int,
        code: str,
        notes: str | None = None,
        order_amount: float | None = None,
        audit: AuditLogger | None = None,
    ) -> Dict[str, Any]:
        """
        Redeem a coupon for the calling merchant.

        The counter is written with a conditional update against the values
        read here; a concurrent redemption makes this one fail with ERR-CONFLICT.

        Returns:
            appliedPercentage, isFirstTimeBonus, usageRemaining (None = unlimited),
            savings (None without orderAmount) and the updated coupon
        """
        code = code.strip().upper()
        merchant = await self._merchant(user_id)
        coupon = await self.coupon_repository.find_by_code(code)
        if coupon is None:
            raise RedeemError("ERR-NOT-FOUND", "Coupon not found")
        if coupon.merchantId != merchant.merchantId:
            raise RedeemError("ERR-FORBIDDEN", "This coupon is not for your restaurant")
        can_operate, reason = merchant.operation_check()
        if not can_operate:
            raise RedeemError("ERR-FORBIDDEN", reason)

        if coupon.status != CouponStatus.ACTIVE:
            raise RedeemError("ERR-IVD-VALUE", f"Coupon is {coupon.status.value}")
        now = now_utc()
        if is_expired(coupon, now):
            await self.coupon_repository.set_status(coupon.couponId, CouponStatus.EXPIRED)
            await self.cache.delete(CacheKeys.coupon_code(code))
            raise RedeemError("ERR-EXPIRED", "Coupon has expired")

        employee = await self.employee_repository.find_by_id(coupon.employeeId)
        can_access, reason = employee.access_check() if employee else (False, "Employee not found")
        if not can_access:
            raise RedeemError("ERR-ACCESS-DENIED", reason)

        discount = await self.discount_repository.find_by_id(coupon.discountId)
        if discount is None:
            raise RedeemError("ERR-NOT-FOUND", "Discount not found")

        first_time = not await self.coupon_repository.has_any_usage(employee.employeeId)
        percentage = applied_percentage(discount.percentage, first_time, self.first_time_bonus)

        month = month_key(now)
        used = coupon.usageThisMonth if coupon.lastResetMonth == month else 0
        limit = discount.monthlyUsageLimit
        if limit is not None and used >= limit:
            raise RedeemError("ERR-LIMIT-REACHED", f"Monthly limit reached ({limit} uses). Resets next month.")

        usage = CouponUsage(redeemedAt=now, month=month, notes=notes, discountPercentage=percentage)
        if not await self.coupon_repository.record_usage(coupon, usage, used + 1):
            raise RedeemError("ERR-CONFLICT", "Coupon was redeemed at the same time, please try again")

        if first_time:
            await self.user_service.mark_step(employee.userId, "firstDiscountUsed")
            await self.referral_service.complete_for(employee.userId)

        await self.cache.delete(CacheKeys.coupon_code(code))
        await (audit or self.audit).info(
            AuditAction.COUPON_REDEEMED,
            f"Coupon {code} redeemed at {merchant.businessName}",
            resource="ClaimedCoupon",
            resource_id=coupon.couponId,
            metadata={
                "merchantId": merchant.merchantId,
                "employeeId": employee.employeeId,
                "percentage": percentage,
                "firstTime": first_time,
            },
        )

        updated = coupon.model_copy(update={
            "usageHistory": [*coupon.usageHistory, usage],
            "usageThisMonth": used + 1,
            "lastResetMonth": month,
            "redeemedAt": now,
            "redemptionNotes": notes,
        })
        return {
            "success": True,
            "message": "Coupon redeemed successfully",
            "appliedPercentage": percentage,
            "isFirstTimeBonus": first_time,
            "usageRemaining": None if limit is None else max(0, limit - used - 1),
            "savings": savings_for(order_amount, percentage),
            "coupon": updated,
        }
