from datetime import datetime
from typing import Any, Callable, Dict, List, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, set_clause, utc
from libs.common.timezone import now_utc
from libs.schemas import Referral, ReferralStatus

from services.auth.app.db.session import SessionLocal


class ReferralRepositoryPort(Protocol):
    async def find_pending(self, referrer_id: int, email: str) -> Referral | None: ...

    async def find_registered_by_referred_user(self, user_id: int) -> Referral | None: ...

    async def list_by_referrer(self, referrer_id: int, limit: int | None = None) -> List[Referral]: ...

    async def stats(self, referrer_id: int) -> Dict[str, int]: ...

    async def create_referral(
        self,
        referrer_id: int,
        referred_email: str,
        referral_code: str,
        status: ReferralStatus,
        referrer_company_id: int | None = None,
        referred_user_id: int | None = None,
        referred_company_id: int | None = None,
        same_company: bool = False,
        registered_at: datetime | None = None,
    ) -> Referral: ...

    async def update_fields(self, referral_id: int, fields: Dict[str, Any]) -> None: ...


_COLUMNS = {
    "status": "status",
    "referredUserId": "referred_user_id",
    "referredCompanyId": "referred_company_id",
    "sameCompany": "same_company",
    "registeredAt": "registered_at",
    "completedAt": "completed_at",
}

_SELECT = """
    SELECT referral_id, referrer_id, referrer_company_id, referred_email,
           referred_user_id, referred_company_id, status, referral_code,
           same_company, registered_at, completed_at, created_at
    FROM referrals
"""


def _to_referral(row) -> Referral:
    return Referral(
        referralId=row["referral_id"],
        referrerId=row["referrer_id"],
        referrerCompanyId=row["referrer_company_id"],
        referredEmail=row["referred_email"],
        referredUserId=row["referred_user_id"],
        referredCompanyId=row["referred_company_id"],
        status=row["status"],
        referralCode=row["referral_code"],
        sameCompany=bool(row["same_company"]),
        registeredAt=utc(row["registered_at"]),
        completedAt=utc(row["completed_at"]),
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyReferralRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def _find_many(self, where: str, params: dict, limit: int | None = None) -> List[Referral]:
        sql = f"{_SELECT} WHERE {where} ORDER BY created_at DESC"
        if limit:
            sql += f" LIMIT {int(limit)}"

        def _query():
            with self._session_factory() as session:
                rows = session.execute(text(sql), params).mappings().all()
                return [_to_referral(row) for row in rows]

        return await self._run_in_thread(_query)

    async def find_pending(self, referrer_id: int, email: str) -> Referral | None:
        found = await self._find_many(
            "referrer_id = :referrer_id AND referred_email = :email AND status = 'PENDING'",
            {"referrer_id": referrer_id, "email": email.lower()},
            limit=1,
        )
        return found[0] if found else None

    async def find_registered_by_referred_user(self, user_id: int) -> Referral | None:
        found = await self._find_many(
            "referred_user_id = :user_id AND status = 'REGISTERED'",
            {"user_id": user_id},
            limit=1,
        )
        return found[0] if found else None

    async def list_by_referrer(self, referrer_id: int, limit: int | None = None) -> List[Referral]:
        return await self._find_many("referrer_id = :referrer_id", {"referrer_id": referrer_id}, limit=limit)

    async def stats(self, referrer_id: int) -> Dict[str, int]:
        """Counts per status plus same-company conversions for one referrer."""

        def _query():
            with self._session_factory() as session:
                row = (
                    session.execute(
                        text(
                            """
                            SELECT
                                SUM(status = 'PENDING') AS pending,
                                SUM(status = 'REGISTERED') AS registered,
                                SUM(status = 'COMPLETED') AS completed,
                                COUNT(*) AS total,
                                SUM(status IN ('REGISTERED', 'COMPLETED') AND same_company = 1) AS same_company
                            FROM referrals
                            WHERE referrer_id = :referrer_id
                            """
                        ),
                        {"referrer_id": referrer_id},
                    )
                    .mappings()
                    .first()
                )
                return {
                    "pending": int(row["pending"] or 0),
                    "registered": int(row["registered"] or 0),
                    "completed": int(row["completed"] or 0),
                    "total": int(row["total"] or 0),
                    "sameCompany": int(row["same_company"] or 0),
                }

        return await self._run_in_thread(_query)

    async def create_referral(
        self,
        referrer_id: int,
        referred_email: str,
        referral_code: str,
        status: ReferralStatus,
        referrer_company_id: int | None = None,
        referred_user_id: int | None = None,
        referred_company_id: int | None = None,
        same_company: bool = False,
        registered_at: datetime | None = None,
    ) -> Referral:
        params = {
            "referrer_id": referrer_id,
            "referrer_company_id": referrer_company_id,
            "referred_email": referred_email.lower(),
            "referred_user_id": referred_user_id,
            "referred_company_id": referred_company_id,
            "status": status.value,
            "referral_code": referral_code,
            "same_company": 1 if same_company else 0,
            "registered_at": registered_at,
            "created_at": now_utc(),
        }

        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO referrals (
                            referrer_id, referrer_company_id, referred_email, referred_user_id,
                            referred_company_id, status, referral_code, same_company,
                            registered_at, created_at
                        ) VALUES (
                            :referrer_id, :referrer_company_id, :referred_email, :referred_user_id,
                            :referred_company_id, :status, :referral_code, :same_company,
                            :registered_at, :created_at
                        )
                        """
                    ),
                    params,
                )
                session.commit()
                return result.lastrowid

        referral_id = await self._run_in_thread(_insert)
        found = await self._find_many("referral_id = :referral_id", {"referral_id": referral_id}, limit=1)
        return found[0]

    async def update_fields(self, referral_id: int, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        clause, params = set_clause(fields, _COLUMNS)
        params["referral_id"] = referral_id

        def _update():
            with self._session_factory() as session:
                session.execute(text(f"UPDATE referrals SET {clause} WHERE referral_id = :referral_id"), params)
                session.commit()

        await self._run_in_thread(_update)
