import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Set

from libs.common import AuditLogger, ServiceError, audit_logger, month_key, now_utc
from libs.common.qr import generate_coupon_code
from libs.common.timezone import ensure_utc, first_of_next_month
from libs.schemas import AuditAction, ClaimedCoupon, Company, CouponStatus, Discount, DiscountType, Employee, Merchant, MerchantStatus

from services.auth.app.core.UserService import UserService
from services.company.app.db.repositories.companies import CompanyRepositoryPort
from services.company.app.db.repositories.employees import EmployeeRepositoryPort
from services.coupon.app.core.QrCodeService import QrCodeService
from services.coupon.app.db.repositories.coupons import ClaimedCouponRepositoryPort, DuplicateClaimError
from services.merchant.app.db.repositories.discounts import DiscountRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 10
EARTH_RADIUS_MILES = 3958.8


class CouponError(ServiceError):
    pass


def usage_status(coupon: ClaimedCoupon, discount: Discount | None, now: datetime | None = None) -> Dict[str, Any]:
    """
    Monthly usage of a coupon as seen at `now`.

    The stored counter belongs to lastResetMonth; in a later month it reads as 0.
    """
    now = now or now_utc()
    used = coupon.usageThisMonth if coupon.lastResetMonth == month_key(now) else 0
    limit = discount.monthlyUsageLimit if discount else None
    remaining = None if limit is None else max(0, limit - used)
    return {
        "usedThisMonth": used,
        "monthlyLimit": limit,
        "remaining": remaining,
        "canUseNow": coupon.status == CouponStatus.ACTIVE and (remaining is None or remaining > 0),
        "resetsOn": first_of_next_month(now),
    }


def is_expired(coupon: ClaimedCoupon, now: datetime | None = None) -> bool:
    expires_at = ensure_utc(coupon.expiresAt)
    return expires_at is not None and expires_at <= (now or now_utc())


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def best_discount_for(discounts: List[Discount], company: Company | None) -> Discount | None:
    """
    The discount an employee of `company` is shown at one merchant.

    A COMPANY discount for the employee's company beats BASE. Spend thresholds
    apply at the till only and are never shown here.
    """
    active = [d for d in discounts if d.isActive]
    if company is not None:
        negotiated = [
            d for d in active
            if d.type == DiscountType.COMPANY
            and (d.companyId == company.companyId
                 or (d.companyId is None and (d.companyName or "").strip().lower() == company.name.lower()))
        ]
        if negotiated:
            return max(negotiated, key=lambda d: d.percentage)
        if not company.settings.allowPublicDeals:
            return None
    base = [d for d in active if d.type == DiscountType.BASE]
    return max(base, key=lambda d: d.percentage) if base else None


def _discount_summary(discount: Discount | None) -> Dict[str, Any] | None:
    if discount is None:
        return None
    return {
        "discountId": discount.discountId,
        "name": discount.name,
        "type": discount.type,
        "percentage": discount.percentage,
        "monthlyUsageLimit": discount.monthlyUsageLimit,
    }


def _merchant_summary(merchant: Merchant | None) -> Dict[str, Any] | None:
    if merchant is None:
        return None
    location = merchant.locations[0] if merchant.locations else None
    return {
        "merchantId": merchant.merchantId,
        "businessName": merchant.businessName,
        "slug": merchant.slug,
        "description": merchant.description,
        "logo": merchant.logo,
        "location": location,
    }


class ClaimService:
    """
    Employee side of coupons: claiming, the wallet and merchant discovery.
    """

    def __init__(
        self,
        coupon_repository: ClaimedCouponRepositoryPort,
        employee_repository: EmployeeRepositoryPort,
        company_repository: CompanyRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        discount_repository: DiscountRepositoryPort,
        user_service: UserService,
        qr_service: QrCodeService,
        audit: AuditLogger | None = None,
    ):
        self.coupon_repository = coupon_repository
        self.employee_repository = employee_repository
        self.company_repository = company_repository
        self.merchant_repository = merchant_repository
        self.discount_repository = discount_repository
        self.user_service = user_service
        self.qr_service = qr_service
        self.audit = audit or audit_logger

    async def get_employee(self, user_id: int) -> Employee:
        employee = await self.employee_repository.find_by_user_id(user_id)
        if employee is None:
            raise CouponError("ERR-NOT-FOUND", "Employee record not found")
        return employee

    async def get_active_employee(self, user_id: int) -> Employee:
        employee = await self.get_employee(user_id)
        can_access, reason = employee.access_check()
        if not can_access:
            raise CouponError("ERR-ACCESS-DENIED", reason)
        return employee

    async def claim(
        self,
        user_id: int,
        merchant_id: int | None,
        discount_id: int | None,
        audit: AuditLogger | None = None,
    ) -> ClaimedCoupon:
        """
        Claim a discount as a coupon.

        Raises:
            CouponError: missing ids (400), no employee or discount (404),
                access denied (403), inactive merchant or duplicate claim (400)
        """
        if not merchant_id or not discount_id:
            raise CouponError("ERR-IVD-PARAM", "merchantId and discountId are required")

        employee = await self.get_active_employee(user_id)

        discount = await self.discount_repository.find_by_id(discount_id)
        if discount is None or not discount.isActive or discount.merchantId != merchant_id:
            raise CouponError("ERR-NOT-FOUND", "Discount not found")

        merchant = await self.merchant_repository.find_by_id(merchant_id)
        if merchant is None:
            raise CouponError("ERR-NOT-FOUND", "Merchant not found")
        if merchant.status != MerchantStatus.ACTIVE:
            raise CouponError("ERR-IVD-VALUE", "Merchant is not accepting coupons")

        if await self.coupon_repository.find_active_for_merchant(employee.employeeId, merchant_id):
            raise CouponError("ERR-DUP-VALUE", "You already have an active coupon for this restaurant")

        coupon = None
        try:
            for _ in range(CODE_ATTEMPTS):
                coupon = await self.coupon_repository.create_coupon(
                    employee_id=employee.employeeId,
                    discount_id=discount_id,
                    merchant_id=merchant_id,
                    code=generate_coupon_code(),
                    month=month_key(),
                )
                if coupon is not None:
                    break
                logger.warning("coupon code collision for employee %s, retrying", employee.employeeId)
        except DuplicateClaimError as e:
            raise CouponError("ERR-ALREADY-USED", "Already claimed") from e
        if coupon is None:
            raise CouponError("ERR-INTERNAL", "Could not generate a unique coupon code")

        coupon = await self.qr_service.regenerate(coupon)
        await self.user_service.mark_step(user_id, "firstDiscountClaimed")
        await (audit or self.audit).info(
            AuditAction.COUPON_CLAIMED,
            f"Claimed {discount.name} at {merchant.businessName}",
            resource="ClaimedCoupon",
            resource_id=coupon.couponId,
            metadata={"merchantId": merchant_id, "discountId": discount_id, "code": coupon.uniqueCode},
        )
        return coupon

    async def _details(self, coupon: ClaimedCoupon, now: datetime) -> Dict[str, Any]:
        merchant = await self.merchant_repository.find_by_id(coupon.merchantId)
        discount = await self.discount_repository.find_by_id(coupon.discountId)
        return {
            "coupon": coupon,
            "merchant": _merchant_summary(merchant),
            "discount": _discount_summary(discount),
            "usageStatus": usage_status(coupon, discount, now),
        }

    async def wallet(self, user_id: int) -> List[Dict[str, Any]]:
        employee = await self.get_active_employee(user_id)
        now = now_utc()
        coupons = await self.coupon_repository.list_by_employee(employee.employeeId, CouponStatus.ACTIVE)
        return [await self._details(c, now) for c in coupons if not is_expired(c, now)]

    async def get_own_coupon(self, user_id: int, code: str) -> ClaimedCoupon:
        employee = await self.get_employee(user_id)
        coupon = await self.coupon_repository.find_by_code(code)
        if coupon is None or coupon.employeeId != employee.employeeId:
            raise CouponError("ERR-NOT-FOUND", "Coupon not found")
        return coupon

    async def coupon_detail(self, user_id: int, code: str) -> Dict[str, Any]:
        coupon = await self.get_own_coupon(user_id, code)
        return await self._details(coupon, now_utc())

    async def explore_merchants(
        self,
        user_id: int,
        search: str | None = None,
        lat: float | None = None,
        lng: float | None = None,
    ) -> List[Dict[str, Any]]:
        """
        ACTIVE merchants with the discount this employee would get.

        With both coordinates each item carries `distance` in miles and the
        list is sorted nearest first; merchants without coordinates go last.
        """
        employee = await self.get_active_employee(user_id)
        company = await self.company_repository.find_by_id(employee.companyId)
        merchants = await self.merchant_repository.list_active(search.strip() if search else None)
        discounts = await self.discount_repository.list_active_for_merchants([m.merchantId for m in merchants])
        claimed = await self.coupon_repository.active_merchant_ids(employee.employeeId)
        with_location = lat is not None and lng is not None

        items = []
        for merchant in merchants:
            discount = best_discount_for(discounts.get(merchant.merchantId, []), company)
            item = _merchant_summary(merchant)
            item.update({
                "discount": _discount_summary(discount),
                "isNegotiated": discount is not None and discount.type == DiscountType.COMPANY,
                "hasClaimed": merchant.merchantId in claimed,
            })
            if with_location:
                location = item["location"]
                if location is not None and location.latitude is not None and location.longitude is not None:
                    item["distance"] = round(haversine_miles(lat, lng, location.latitude, location.longitude), 2)
                else:
                    item["distance"] = None
            items.append(item)

        if with_location:
            items.sort(key=lambda i: (i["distance"] is None, i["distance"] or 0))
        return items

    async def claimed_merchant_ids(self, user_id: int) -> Set[int]:
        employee = await self.get_employee(user_id)
        return await self.coupon_repository.active_merchant_ids(employee.employeeId)
