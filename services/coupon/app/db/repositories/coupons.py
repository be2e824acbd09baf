from typing import Any, Callable, Dict, List, Protocol, Set

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, in_clause, to_float, utc
from libs.common.timezone import now_utc
from libs.schemas import ClaimedCoupon, CouponStatus, CouponUsage

from services.coupon.app.db.session import SessionLocal


class DuplicateClaimError(Exception):
    """The employee already holds a coupon for this discount."""


class ClaimedCouponRepositoryPort(Protocol):
    async def find_by_id(self, coupon_id: int) -> ClaimedCoupon | None: ...

    async def find_by_code(self, code: str) -> ClaimedCoupon | None: ...

    async def find_active_for_merchant(self, employee_id: int, merchant_id: int) -> ClaimedCoupon | None: ...

    async def create_coupon(
        self,
        employee_id: int,
        discount_id: int,
        merchant_id: int,
        code: str,
        month: str,
    ) -> ClaimedCoupon | None: ...

    async def list_by_employee(self, employee_id: int, status: CouponStatus | None = None) -> List[ClaimedCoupon]: ...

    async def active_merchant_ids(self, employee_id: int) -> Set[int]: ...

    async def set_status(self, coupon_id: int, status: CouponStatus) -> None: ...

    async def set_qr(self, coupon_id: int, file_id: str) -> None: ...

    async def record_usage(
        self,
        coupon: ClaimedCoupon,
        usage: CouponUsage,
        usage_this_month: int,
    ) -> bool: ...

    async def has_any_usage(self, employee_id: int) -> bool: ...

    async def cancel_active_by_employee(self, employee_id: int) -> int: ...

    async def cancel_open_by_employee(self, employee_id: int) -> int: ...


_SELECT = """
    SELECT coupon_id, employee_id, discount_id, merchant_id, unique_code, status,
           claimed_at, expires_at, usage_this_month, last_reset_month,
           redeemed_at, redemption_notes, qr_code_url
    FROM claimed_coupons
"""


def _to_usage(row) -> CouponUsage:
    return CouponUsage(
        redeemedAt=utc(row["redeemed_at"]),
        month=row["month"],
        notes=row["notes"],
        discountPercentage=to_float(row["discount_percentage"]),
    )


def _to_coupon(row, usages: List[CouponUsage]) -> ClaimedCoupon:
    return ClaimedCoupon(
        couponId=row["coupon_id"],
        employeeId=row["employee_id"],
        discountId=row["discount_id"],
        merchantId=row["merchant_id"],
        uniqueCode=row["unique_code"],
        status=row["status"],
        claimedAt=utc(row["claimed_at"]),
        expiresAt=utc(row["expires_at"]),
        usageHistory=usages,
        usageThisMonth=row["usage_this_month"],
        lastResetMonth=row["last_reset_month"],
        redeemedAt=utc(row["redeemed_at"]),
        redemptionNotes=row["redemption_notes"],
        qrCodeUrl=row["qr_code_url"],
    )


class SQLAlchemyClaimedCouponRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    @staticmethod
    def _load(session: Session, rows) -> List[ClaimedCoupon]:
        if not rows:
            return []
        placeholders, params = in_clause("c", [row["coupon_id"] for row in rows])
        usage_rows = (
            session.execute(
                text(
                    f"""
                    SELECT coupon_id, redeemed_at, month, notes, discount_percentage
                    FROM coupon_usages
                    WHERE coupon_id IN ({placeholders})
                    ORDER BY redeemed_at, usage_id
                    """
                ),
                params,
            )
            .mappings()
            .all()
        )
        by_coupon: Dict[int, List[CouponUsage]] = {}
        for usage in usage_rows:
            by_coupon.setdefault(usage["coupon_id"], []).append(_to_usage(usage))
        return [_to_coupon(row, by_coupon.get(row["coupon_id"], [])) for row in rows]

    async def _find_many(self, where: str, params: dict, order: str = "claimed_at DESC") -> List[ClaimedCoupon]:
        def _query():
            with self._session_factory() as session:
                rows = session.execute(text(f"{_SELECT} WHERE {where} ORDER BY {order}"), params).mappings().all()
                return self._load(session, rows)

        return await self._run_in_thread(_query)

    async def _find_one(self, where: str, params: dict) -> ClaimedCoupon | None:
        coupons = await self._find_many(where, params)
        return coupons[0] if coupons else None

    async def find_by_id(self, coupon_id: int) -> ClaimedCoupon | None:
        return await self._find_one("coupon_id = :coupon_id", {"coupon_id": coupon_id})

    async def find_by_code(self, code: str) -> ClaimedCoupon | None:
        return await self._find_one("unique_code = :code", {"code": code.upper()})

    async def find_active_for_merchant(self, employee_id: int, merchant_id: int) -> ClaimedCoupon | None:
        return await self._find_one(
            "employee_id = :employee_id AND merchant_id = :merchant_id AND status = 'ACTIVE'",
            {"employee_id": employee_id, "merchant_id": merchant_id},
        )

    async def create_coupon(
        self,
        employee_id: int,
        discount_id: int,
        merchant_id: int,
        code: str,
        month: str,
    ) -> ClaimedCoupon | None:
        """
        Insert an ACTIVE coupon.

        Returns:
            the coupon, or None when `code` is already taken

        Raises:
            DuplicateClaimError: the (employee, discount) pair already exists
        """
        params = {
            "employee_id": employee_id,
            "discount_id": discount_id,
            "merchant_id": merchant_id,
            "code": code,
            "claimed_at": now_utc(),
            "month": month,
        }

        def _insert():
            with self._session_factory() as session:
                try:
                    result = session.execute(
                        text(
                            """
                            INSERT INTO claimed_coupons (
                                employee_id, discount_id, merchant_id, unique_code, status,
                                claimed_at, usage_this_month, last_reset_month
                            ) VALUES (
                                :employee_id, :discount_id, :merchant_id, :code, 'ACTIVE',
                                :claimed_at, 0, :month
                            )
                            """
                        ),
                        params,
                    )
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    taken = session.execute(
                        text(
                            """
                            SELECT 1 FROM claimed_coupons
                            WHERE employee_id = :employee_id AND discount_id = :discount_id
                            """
                        ),
                        params,
                    ).first()
                    if taken:
                        raise DuplicateClaimError(f"employee {employee_id} already claimed discount {discount_id}")
                    return None
                return result.lastrowid

        coupon_id = await self._run_in_thread(_insert)
        if coupon_id is None:
            return None
        return await self.find_by_id(coupon_id)

    async def list_by_employee(self, employee_id: int, status: CouponStatus | None = None) -> List[ClaimedCoupon]:
        where = "employee_id = :employee_id"
        params: Dict[str, Any] = {"employee_id": employee_id}
        if status is not None:
            where += " AND status = :status"
            params["status"] = status.value
        return await self._find_many(where, params)

    async def active_merchant_ids(self, employee_id: int) -> Set[int]:
        def _query():
            with self._session_factory() as session:
                rows = session.execute(
                    text(
                        """
                        SELECT DISTINCT merchant_id
                        FROM claimed_coupons
                        WHERE employee_id = :employee_id AND status = 'ACTIVE'
                        """
                    ),
                    {"employee_id": employee_id},
                ).all()
                return {row[0] for row in rows}

        return await self._run_in_thread(_query)

    async def _execute(self, sql: str, params: dict) -> int:
        def _write():
            with self._session_factory() as session:
                result = session.execute(text(sql), params)
                session.commit()
                return result.rowcount

        return await self._run_in_thread(_write)

    async def set_status(self, coupon_id: int, status: CouponStatus) -> None:
        await self._execute(
            "UPDATE claimed_coupons SET status = :status WHERE coupon_id = :coupon_id",
            {"status": status.value, "coupon_id": coupon_id},
        )

    async def set_qr(self, coupon_id: int, file_id: str) -> None:
        await self._execute(
            "UPDATE claimed_coupons SET qr_code_url = :file_id WHERE coupon_id = :coupon_id",
            {"file_id": file_id, "coupon_id": coupon_id},
        )

    async def record_usage(
        self,
        coupon: ClaimedCoupon,
        usage: CouponUsage,
        usage_this_month: int,
    ) -> bool:
        """
        Append a redemption and store the new monthly counter.

        The update only applies while the row still carries the counter and
        month `coupon` was read with, so two concurrent redemptions cannot
        both pass the monthly limit.

        Returns:
            False when the coupon changed since it was read
        """

        def _write():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        UPDATE claimed_coupons
                        SET usage_this_month = :usage_this_month,
                            last_reset_month = :month,
                            redeemed_at = :redeemed_at,
                            redemption_notes = :notes
                        WHERE coupon_id = :coupon_id
                          AND status = 'ACTIVE'
                          AND usage_this_month = :expected_usage
                          AND last_reset_month = :expected_month
                        """
                    ),
                    {
                        "usage_this_month": usage_this_month,
                        "month": usage.month,
                        "redeemed_at": usage.redeemedAt,
                        "notes": usage.notes,
                        "coupon_id": coupon.couponId,
                        "expected_usage": coupon.usageThisMonth,
                        "expected_month": coupon.lastResetMonth,
                    },
                )
                if result.rowcount != 1:
                    session.rollback()
                    return False
                session.execute(
                    text(
                        """
                        INSERT INTO coupon_usages (
                            coupon_id, employee_id, redeemed_at, month, notes, discount_percentage
                        ) VALUES (
                            :coupon_id, :employee_id, :redeemed_at, :month, :notes, :discount_percentage
                        )
                        """
                    ),
                    {
                        "coupon_id": coupon.couponId,
                        "employee_id": coupon.employeeId,
                        "redeemed_at": usage.redeemedAt,
                        "month": usage.month,
                        "notes": usage.notes,
                        "discount_percentage": usage.discountPercentage,
                    },
                )
                session.commit()
                return True

        return await self._run_in_thread(_write)

    async def has_any_usage(self, employee_id: int) -> bool:
        def _query():
            with self._session_factory() as session:
                row = session.execute(
                    text("SELECT 1 FROM coupon_usages WHERE employee_id = :employee_id LIMIT 1"),
                    {"employee_id": employee_id},
                ).first()
                return row is not None

        return await self._run_in_thread(_query)

    async def cancel_active_by_employee(self, employee_id: int) -> int:
        return await self._execute(
            "UPDATE claimed_coupons SET status = 'CANCELLED' WHERE employee_id = :employee_id AND status = 'ACTIVE'",
            {"employee_id": employee_id},
        )

    async def cancel_open_by_employee(self, employee_id: int) -> int:
        return await self._execute(
            "UPDATE claimed_coupons SET status = 'CANCELLED' WHERE employee_id = :employee_id AND status <> 'CANCELLED'",
            {"employee_id": employee_id},
        )
