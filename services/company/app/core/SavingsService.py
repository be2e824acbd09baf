import logging
from typing import Any, Dict, List

from libs.common import Cache, CacheKeys, get_cache
from libs.schemas import Discount, DiscountType, EmployeeStatus, Merchant

from services.company.app.core.CompanyService import CompanyService
from services.company.app.db.repositories.employees import EmployeeRepositoryPort
from services.merchant.app.db.repositories.discounts import DiscountRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

VISITS_PER_MONTH = 2
STATS_TTL = 300


def best_percentage(discounts: List[Discount], company_id: int) -> float:
    """
    Percentage an employee of the company gets at one merchant.

    A COMPANY discount negotiated for this company beats BASE; other
    companies' discounts and spend thresholds are ignored.
    """
    negotiated = [
        d.percentage for d in discounts
        if d.isActive and d.type == DiscountType.COMPANY and d.companyId == company_id
    ]
    if negotiated:
        return max(negotiated)
    base = [d.percentage for d in discounts if d.isActive and d.type == DiscountType.BASE]
    return max(base) if base else 0.0


def potential_savings(avg_order_value: float, percentage: float, employee_count: int, visits: int = VISITS_PER_MONTH) -> Dict[str, float]:
    per_visit = avg_order_value * percentage / 100
    per_employee = per_visit * visits
    return {
        "perVisit": round(per_visit, 2),
        "perEmployee": round(per_employee, 2),
        "monthlyTotal": round(per_employee * employee_count, 2),
    }


class SavingsService:
    def __init__(
        self,
        company_service: CompanyService,
        employee_repository: EmployeeRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        discount_repository: DiscountRepositoryPort,
        visits_per_month: int = VISITS_PER_MONTH,
        cache: Cache | None = None,
    ):
        self.company_service = company_service
        self.employee_repository = employee_repository
        self.merchant_repository = merchant_repository
        self.discount_repository = discount_repository
        self.visits_per_month = visits_per_month
        self._cache = cache

    @property
    def cache(self) -> Cache:
        return self._cache or get_cache()

    async def savings(self, user_id: int) -> Dict[str, Any]:
        admin = await self.company_service.require_admin(user_id)
        company_id = admin.companyId
        return await self.cache.get_or_set(
            CacheKeys.company_stats(company_id),
            lambda: self._calculate(company_id),
            STATS_TTL,
        )

    async def _calculate(self, company_id: int) -> Dict[str, Any]:
        by_status = await self.employee_repository.count_by_status(company_id)
        employee_count = by_status.get(EmployeeStatus.ACTIVE.value, 0)

        merchants: List[Merchant] = await self.merchant_repository.list_onboarded_active()
        discounts = await self.discount_repository.list_active_for_merchants([m.merchantId for m in merchants])

        rows = []
        total = 0.0
        for merchant in merchants:
            avg_order_value = merchant.businessMetrics.avgOrderValue
            percentage = best_percentage(discounts.get(merchant.merchantId, []), company_id)
            if not percentage or not avg_order_value:
                continue
            savings = potential_savings(avg_order_value, percentage, employee_count, self.visits_per_month)
            rows.append(
                {
                    "merchantId": merchant.merchantId,
                    "businessName": merchant.businessName,
                    "logo": merchant.logo,
                    "avgOrderValue": avg_order_value,
                    "discountPercentage": percentage,
                    "perVisitSavings": savings["perVisit"],
                    "perEmployeeSavings": savings["perEmployee"],
                    "potentialMonthlySavings": savings["monthlyTotal"],
                }
            )
            total += savings["monthlyTotal"]

        rows.sort(key=lambda row: row["potentialMonthlySavings"], reverse=True)
        logger.debug("savings for company %s over %d merchants", company_id, len(rows))
        return {
            "employeeCount": employee_count,
            "merchants": rows,
            "totalPotentialMonthlySavings": round(total, 2),
            "totalPotentialAnnualSavings": round(total * 12, 2),
        }
