from datetime import datetime
from typing import Any, Callable, Dict, List, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, set_clause, utc
from libs.common.timezone import now_utc
from libs.schemas import MerchantReferral

from services.merchant.app.db.session import SessionLocal


class MerchantReferralRepositoryPort(Protocol):
    async def find_by_id(self, referral_id: int) -> MerchantReferral | None: ...

    async def find_by_referrer_and_email(self, merchant_id: int, email: str) -> MerchantReferral | None: ...

    async def find_by_referred_merchant(self, merchant_id: int) -> MerchantReferral | None: ...

    async def find_unlinked_by_email(self, email: str) -> MerchantReferral | None: ...

    async def list_by_referrer(self, merchant_id: int) -> List[MerchantReferral]: ...

    async def count_created_since(self, merchant_id: int, since: datetime) -> int: ...

    async def claimed_months_since(self, merchant_id: int, since: datetime) -> int: ...

    async def create_referral(
        self,
        referrer_merchant_id: int,
        referred_business_name: str,
        referred_email: str,
        referred_contact_name: str | None,
        referred_phone: str | None,
        referred_city: str | None,
        referred_state: str | None,
        why_good_fit: str | None,
        referrer_reward_months: int,
        referee_reward_months: int,
    ) -> MerchantReferral: ...

    async def update_fields(self, referral_id: int, fields: Dict[str, Any]) -> MerchantReferral | None: ...

    async def delete_referral(self, referral_id: int) -> None: ...


_COLUMNS = {
    "status": "status",
    "referredMerchantId": "referred_merchant_id",
    "referrerRewardClaimed": "referrer_reward_claimed",
    "referrerRewardClaimedAt": "referrer_reward_claimed_at",
}

_SELECT = """
    SELECT referral_id, referrer_merchant_id, referred_business_name,
           referred_contact_name, referred_email, referred_phone, referred_city,
           referred_state, why_good_fit, referred_merchant_id, status,
           referrer_reward_months, referee_reward_months,
           referrer_reward_claimed, referrer_reward_claimed_at, created_at
    FROM merchant_referrals
"""


def _to_referral(row) -> MerchantReferral:
    return MerchantReferral(
        referralId=row["referral_id"],
        referrerMerchantId=row["referrer_merchant_id"],
        referredBusinessName=row["referred_business_name"],
        referredContactName=row["referred_contact_name"],
        referredEmail=row["referred_email"],
        referredPhone=row["referred_phone"],
        referredCity=row["referred_city"],
        referredState=row["referred_state"],
        whyGoodFit=row["why_good_fit"],
        referredMerchantId=row["referred_merchant_id"],
        status=row["status"],
        referrerRewardMonths=row["referrer_reward_months"],
        refereeRewardMonths=row["referee_reward_months"],
        referrerRewardClaimed=bool(row["referrer_reward_claimed"]),
        referrerRewardClaimedAt=utc(row["referrer_reward_claimed_at"]),
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyMerchantReferralRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def _find_many(self, where: str, params: dict, limit: int | None = None) -> List[MerchantReferral]:
        sql = f"{_SELECT} WHERE {where} ORDER BY created_at DESC"
        if limit:
            sql += f" LIMIT {int(limit)}"

        def _query():
            with self._session_factory() as session:
                rows = session.execute(text(sql), params).mappings().all()
                return [_to_referral(row) for row in rows]

        return await self._run_in_thread(_query)

    async def find_by_id(self, referral_id: int) -> MerchantReferral | None:
        found = await self._find_many("referral_id = :referral_id", {"referral_id": referral_id}, limit=1)
        return found[0] if found else None

    async def find_by_referrer_and_email(self, merchant_id: int, email: str) -> MerchantReferral | None:
        found = await self._find_many(
            "referrer_merchant_id = :merchant_id AND referred_email = :email",
            {"merchant_id": merchant_id, "email": email.lower()},
            limit=1,
        )
        return found[0] if found else None

    async def find_by_referred_merchant(self, merchant_id: int) -> MerchantReferral | None:
        found = await self._find_many("referred_merchant_id = :merchant_id", {"merchant_id": merchant_id}, limit=1)
        return found[0] if found else None

    async def find_unlinked_by_email(self, email: str) -> MerchantReferral | None:
        found = await self._find_many(
            "referred_email = :email AND referred_merchant_id IS NULL",
            {"email": email.lower()},
            limit=1,
        )
        return found[0] if found else None

    async def list_by_referrer(self, merchant_id: int) -> List[MerchantReferral]:
        return await self._find_many("referrer_merchant_id = :merchant_id", {"merchant_id": merchant_id})

    async def count_created_since(self, merchant_id: int, since: datetime) -> int:
        def _query():
            with self._session_factory() as session:
                return int(
                    session.execute(
                        text(
                            """
                            SELECT COUNT(*)
                            FROM merchant_referrals
                            WHERE referrer_merchant_id = :merchant_id
                              AND created_at >= :since
                            """
                        ),
                        {"merchant_id": merchant_id, "since": since},
                    ).scalar()
                    or 0
                )

        return await self._run_in_thread(_query)

    async def claimed_months_since(self, merchant_id: int, since: datetime) -> int:
        def _query():
            with self._session_factory() as session:
                return int(
                    session.execute(
                        text(
                            """
                            SELECT COALESCE(SUM(referrer_reward_months), 0)
                            FROM merchant_referrals
                            WHERE referrer_merchant_id = :merchant_id
                              AND referrer_reward_claimed = 1
                              AND referrer_reward_claimed_at >= :since
                            """
                        ),
                        {"merchant_id": merchant_id, "since": since},
                    ).scalar()
                    or 0
                )

        return await self._run_in_thread(_query)

    async def create_referral(
        self,
        referrer_merchant_id: int,
        referred_business_name: str,
        referred_email: str,
        referred_contact_name: str | None,
        referred_phone: str | None,
        referred_city: str | None,
        referred_state: str | None,
        why_good_fit: str | None,
        referrer_reward_months: int,
        referee_reward_months: int,
    ) -> MerchantReferral:
        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO merchant_referrals (
                            referrer_merchant_id, referred_business_name, referred_contact_name,
                            referred_email, referred_phone, referred_city, referred_state,
                            why_good_fit, status, referrer_reward_months, referee_reward_months,
                            referrer_reward_claimed, created_at
                        ) VALUES (
                            :referrer_merchant_id, :referred_business_name, :referred_contact_name,
                            :referred_email, :referred_phone, :referred_city, :referred_state,
                            :why_good_fit, 'PENDING', :referrer_reward_months, :referee_reward_months,
                            0, :created_at
                        )
                        """
                    ),
                    {
                        "referrer_merchant_id": referrer_merchant_id,
                        "referred_business_name": referred_business_name,
                        "referred_contact_name": referred_contact_name,
                        "referred_email": referred_email.lower(),
                        "referred_phone": referred_phone,
                        "referred_city": referred_city,
                        "referred_state": referred_state,
                        "why_good_fit": why_good_fit,
                        "referrer_reward_months": referrer_reward_months,
                        "referee_reward_months": referee_reward_months,
                        "created_at": now_utc(),
                    },
                )
                session.commit()
                return result.lastrowid

        referral_id = await self._run_in_thread(_insert)
        return await self.find_by_id(referral_id)

    async def update_fields(self, referral_id: int, fields: Dict[str, Any]) -> MerchantReferral | None:
        if fields:
            clause, params = set_clause(fields, _COLUMNS)
            params["referral_id"] = referral_id

            def _update():
                with self._session_factory() as session:
                    session.execute(text(f"UPDATE merchant_referrals SET {clause} WHERE referral_id = :referral_id"), params)
                    session.commit()

            await self._run_in_thread(_update)
        return await self.find_by_id(referral_id)

    async def delete_referral(self, referral_id: int) -> None:
        def _delete():
            with self._session_factory() as session:
                session.execute(
                    text("DELETE FROM merchant_referrals WHERE referral_id = :referral_id"),
                    {"referral_id": referral_id},
                )
                session.commit()

        await self._run_in_thread(_delete)
