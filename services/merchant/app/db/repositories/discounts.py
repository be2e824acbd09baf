from typing import Any, Callable, Dict, Iterable, List, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, in_clause, set_clause, to_float, utc
from libs.common.timezone import now_utc
from libs.schemas import Discount, DiscountType

from services.merchant.app.db.session import SessionLocal


class DiscountRepositoryPort(Protocol):
    async def find_by_id(self, discount_id: int) -> Discount | None: ...

    async def list_by_merchant(self, merchant_id: int, active_only: bool = False) -> List[Discount]: ...

    async def list_active_for_merchants(self, merchant_ids: Iterable[int]) -> Dict[int, List[Discount]]: ...

    async def create_discount(
        self,
        merchant_id: int,
        type: DiscountType,
        name: str,
        percentage: float,
        priority: int,
        company_id: int | None = None,
        company_name: str | None = None,
        min_spend: float | None = None,
        monthly_usage_limit: int | None = None,
    ) -> Discount: ...

    async def update_fields(self, discount_id: int, fields: Dict[str, Any]) -> Discount | None: ...

    async def delete_discount(self, discount_id: int) -> None: ...

    async def deactivate_by_merchant(self, merchant_id: int) -> int: ...


_COLUMNS = {
    "name": "name",
    "percentage": "percentage",
    "companyId": "company_id",
    "companyName": "company_name",
    "minSpend": "min_spend",
    "monthlyUsageLimit": "monthly_usage_limit",
    "isActive": "is_active",
    "priority": "priority",
    "updatedAt": "updated_at",
}

_SELECT = """
    SELECT discount_id, merchant_id, type, name, percentage, company_id,
           company_name, min_spend, monthly_usage_limit, is_active, priority,
           created_at
    FROM discounts
"""

_ORDER = "FIELD(type, 'BASE', 'COMPANY', 'SPEND_THRESHOLD'), priority DESC, created_at DESC"


def _to_discount(row) -> Discount:
    return Discount(
        discountId=row["discount_id"],
        merchantId=row["merchant_id"],
        type=row["type"],
        name=row["name"],
        percentage=to_float(row["percentage"]),
        companyId=row["company_id"],
        companyName=row["company_name"],
        minSpend=to_float(row["min_spend"]),
        monthlyUsageLimit=row["monthly_usage_limit"],
        isActive=bool(row["is_active"]),
        priority=row["priority"] or 0,
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyDiscountRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def find_by_id(self, discount_id: int) -> Discount | None:
        def _query():
            with self._session_factory() as session:
                row = (
                    session.execute(text(_SELECT + " WHERE discount_id = :discount_id LIMIT 1"), {"discount_id": discount_id})
                    .mappings()
                    .first()
                )
                return _to_discount(row) if row else None

        return await self._run_in_thread(_query)

    async def list_by_merchant(self, merchant_id: int, active_only: bool = False) -> List[Discount]:
        where = "merchant_id = :merchant_id"
        if active_only:
            where += " AND is_active = 1"

        def _query():
            with self._session_factory() as session:
                rows = (
                    session.execute(text(f"{_SELECT} WHERE {where} ORDER BY {_ORDER}"), {"merchant_id": merchant_id})
                    .mappings()
                    .all()
                )
                return [_to_discount(row) for row in rows]

        return await self._run_in_thread(_query)

    async def list_active_for_merchants(self, merchant_ids: Iterable[int]) -> Dict[int, List[Discount]]:
        merchant_ids = list(merchant_ids)
        if not merchant_ids:
            return {}
        placeholders, params = in_clause("m", merchant_ids)

        def _query():
            with self._session_factory() as session:
                rows = (
                    session.execute(
                        text(f"{_SELECT} WHERE is_active = 1 AND merchant_id IN ({placeholders}) ORDER BY {_ORDER}"),
                        params,
                    )
                    .mappings()
                    .all()
                )
                grouped: Dict[int, List[Discount]] = {}
                for row in rows:
                    grouped.setdefault(row["merchant_id"], []).append(_to_discount(row))
                return grouped

        return await self._run_in_thread(_query)

    async def create_discount(
        self,
        merchant_id: int,
        type: DiscountType,
        name: str,
        percentage: float,
        priority: int,
        company_id: int | None = None,
        company_name: str | None = None,
        min_spend: float | None = None,
        monthly_usage_limit: int | None = None,
    ) -> Discount:
        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO discounts (
                            merchant_id, type, name, percentage, company_id, company_name,
                            min_spend, monthly_usage_limit, is_active, priority, created_at
                        ) VALUES (
                            :merchant_id, :type, :name, :percentage, :company_id, :company_name,
                            :min_spend, :monthly_usage_limit, 1, :priority, :created_at
                        )
                        """
                    ),
                    {
                        "merchant_id": merchant_id,
                        "type": type.value,
                        "name": name,
                        "percentage": percentage,
                        "company_id": company_id,
                        "company_name": company_name,
                        "min_spend": min_spend,
                        "monthly_usage_limit": monthly_usage_limit,
                        "priority": priority,
                        "created_at": now_utc(),
                    },
                )
                session.commit()
                return result.lastrowid

        discount_id = await self._run_in_thread(_insert)
        return await self.find_by_id(discount_id)

    async def update_fields(self, discount_id: int, fields: Dict[str, Any]) -> Discount | None:
        if fields:
            clause, params = set_clause({**fields, "updatedAt": now_utc()}, _COLUMNS)
            params["discount_id"] = discount_id

            def _update():
                with self._session_factory() as session:
                    session.execute(text(f"UPDATE discounts SET {clause} WHERE discount_id = :discount_id"), params)
                    session.commit()

            await self._run_in_thread(_update)
        return await self.find_by_id(discount_id)

    async def delete_discount(self, discount_id: int) -> None:
        def _delete():
            with self._session_factory() as session:
                session.execute(text("DELETE FROM discounts WHERE discount_id = :discount_id"), {"discount_id": discount_id})
                session.commit()

        await self._run_in_thread(_delete)

    async def deactivate_by_merchant(self, merchant_id: int) -> int:
        def _update():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        UPDATE discounts
                        SET is_active = 0, updated_at = :now
                        WHERE merchant_id = :merchant_id
                          AND is_active = 1
                        """
                    ),
                    {"merchant_id": merchant_id, "now": now_utc()},
                )
                session.commit()
                return result.rowcount

        return await self._run_in_thread(_update)
