from datetime import datetime
from typing import Callable, Iterable, List, Protocol, Set

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, in_clause, utc
from libs.common.timezone import now_utc
from libs.schemas import InviteCode, InviteStatus

from services.company.app.db.session import SessionLocal


class InviteRepositoryPort(Protocol):
    async def find_by_code(self, code: str) -> InviteCode | None: ...

    async def find_by_id(self, invite_id: int) -> InviteCode | None: ...

    async def list_by_company(self, company_id: int, status: InviteStatus | None = None, limit: int = 100) -> List[InviteCode]: ...

    async def emails_with_active_invite(self, company_id: int, emails: Iterable[str]) -> Set[str]: ...

    async def create_invite(
        self,
        code: str,
        company_id: int,
        created_by: int,
        email: str | None,
        expires_at: datetime,
    ) -> InviteCode | None:
        """Returns None when the code is already taken."""
        ...

    async def mark_used(self, invite_id: int, user_id: int, used_at: datetime) -> None: ...

    async def set_status(self, invite_id: int, status: InviteStatus) -> None: ...

    async def count_active(self, company_id: int, now: datetime) -> int: ...


_SELECT = """
    SELECT invite_id, code, company_id, created_by, used_by, email, status,
           expires_at, used_at, created_at
    FROM invite_codes
"""


def _to_invite(row) -> InviteCode:
    return InviteCode(
        inviteId=row["invite_id"],
        code=row["code"],
        companyId=row["company_id"],
        createdBy=row["created_by"],
        usedBy=row["used_by"],
        email=row["email"],
        status=row["status"],
        expiresAt=utc(row["expires_at"]),
        usedAt=utc(row["used_at"]),
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyInviteRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def find_by_code(self, code: str) -> InviteCode | None:
        def _query():
            with self._session_factory() as session:
                row = session.execute(text(_SELECT + " WHERE code = :code LIMIT 1"), {"code": code}).mappings().first()
                return _to_invite(row) if row else None

        return await self._run_in_thread(_query)

    async def find_by_id(self, invite_id: int) -> InviteCode | None:
        def _query():
            with self._session_factory() as session:
                row = (
                    session.execute(text(_SELECT + " WHERE invite_id = :invite_id LIMIT 1"), {"invite_id": invite_id})
                    .mappings()
                    .first()
                )
                return _to_invite(row) if row else None

        return await self._run_in_thread(_query)

    async def list_by_company(self, company_id: int, status: InviteStatus | None = None, limit: int = 100) -> List[InviteCode]:
        where = "company_id = :company_id"
        params = {"company_id": company_id, "limit": limit}
        if status:
            where += " AND status = :status"
            params["status"] = status.value

        def _query():
            with self._session_factory() as session:
                rows = (
                    session.execute(text(f"{_SELECT} WHERE {where} ORDER BY created_at DESC LIMIT :limit"), params)
                    .mappings()
                    .all()
                )
                return [_to_invite(row) for row in rows]

        return await self._run_in_thread(_query)

    async def emails_with_active_invite(self, company_id: int, emails: Iterable[str]) -> Set[str]:
        emails = list(emails)
        if not emails:
            return set()
        placeholders, params = in_clause("email", emails)
        params["company_id"] = company_id

        def _query():
            with self._session_factory() as session:
                rows = session.execute(
                    text(
                        f"""
                        SELECT email
                        FROM invite_codes
                        WHERE company_id = :company_id
                          AND status = 'ACTIVE'
                          AND email IN ({placeholders})
                        """
                    ),
                    params,
                ).scalars()
                return {email for email in rows if email}

        return await self._run_in_thread(_query)

    async def create_invite(
        self,
        code: str,
        company_id: int,
        created_by: int,
        email: str | None,
        expires_at: datetime,
    ) -> InviteCode | None:
        def _insert():
            with self._session_factory() as session:
                try:
                    result = session.execute(
                        text(
                            """
                            INSERT INTO invite_codes (
                                code, company_id, created_by, email, status, expires_at, created_at
                            ) VALUES (
                                :code, :company_id, :created_by, :email, 'ACTIVE', :expires_at, :created_at
                            )
                            """
                        ),
                        {
                            "code": code,
                            "company_id": company_id,
                            "created_by": created_by,
                            "email": email,
                            "expires_at": expires_at,
                            "created_at": now_utc(),
                        },
                    )
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    return None
                return result.lastrowid

        invite_id = await self._run_in_thread(_insert)
        if invite_id is None:
            return None
        return await self.find_by_id(invite_id)

    async def mark_used(self, invite_id: int, user_id: int, used_at: datetime) -> None:
        def _update():
            with self._session_factory() as session:
                session.execute(
                    text(
                        """
                        UPDATE invite_codes
                        SET status = 'USED', used_by = :user_id, used_at = :used_at
                        WHERE invite_id = :invite_id
                        """
                    ),
                    {"invite_id": invite_id, "user_id": user_id, "used_at": used_at},
                )
                session.commit()

        await self._run_in_thread(_update)

    async def set_status(self, invite_id: int, status: InviteStatus) -> None:
        def _update():
            with self._session_factory() as session:
                session.execute(
                    text("UPDATE invite_codes SET status = :status WHERE invite_id = :invite_id"),
                    {"invite_id": invite_id, "status": status.value},
                )
                session.commit()

        await self._run_in_thread(_update)

    async def count_active(self, company_id: int, now: datetime) -> int:
        def _query():
            with self._session_factory() as session:
                return int(
                    session.execute(
                        text(
                            """
                            SELECT COUNT(*)
                            FROM invite_codes
                            WHERE company_id = :company_id
                              AND status = 'ACTIVE'
                              AND expires_at > :now
                            """
                        ),
                        {"company_id": company_id, "now": now},
                    ).scalar()
                    or 0
                )

        return await self._run_in_thread(_query)
