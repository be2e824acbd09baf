from typing import Any, Callable, Dict, List, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, dump_json, load_json, set_clause, utc
from libs.common.timezone import now_utc
from libs.schemas import AdminPermissions, AdminRole, AdminStatus, CompanyAdmin

from services.company.app.db.session import SessionLocal


class CompanyAdminRepositoryPort(Protocol):
    async def find_active_by_user(self, user_id: int) -> CompanyAdmin | None: ...

    async def find_by_user_and_company(self, user_id: int, company_id: int) -> CompanyAdmin | None: ...

    async def find_by_id(self, admin_id: int) -> CompanyAdmin | None: ...

    async def list_by_company(self, company_id: int) -> List[CompanyAdmin]: ...

    async def create_admin(
        self,
        user_id: int,
        company_id: int,
        role: AdminRole,
        permissions: AdminPermissions,
        invited_by: int | None = None,
        title: str | None = None,
        status: AdminStatus = AdminStatus.ACTIVE,
    ) -> CompanyAdmin: ...

    async def update_fields(self, admin_id: int, fields: Dict[str, Any]) -> CompanyAdmin | None: ...

    async def delete_admin(self, admin_id: int) -> None: ...

    async def count_active_owners(self, company_id: int) -> int: ...


_COLUMNS = {
    "role": "role",
    "title": "title",
    "status": "status",
    "permissions": "permissions",
    "acceptedAt": "accepted_at",
}

_SELECT = """
    SELECT a.admin_id, a.user_id, a.company_id, a.role, a.title, a.status,
           a.invited_by, a.invited_at, a.accepted_at, a.permissions, a.created_at,
           u.email
    FROM company_admins a
    LEFT JOIN users u ON u.user_id = a.user_id
"""


def _to_admin(row) -> CompanyAdmin:
    return CompanyAdmin(
        adminId=row["admin_id"],
        userId=row["user_id"],
        companyId=row["company_id"],
        role=row["role"],
        title=row["title"],
        status=row["status"],
        invitedBy=row["invited_by"],
        invitedAt=utc(row["invited_at"]),
        acceptedAt=utc(row["accepted_at"]),
        permissions=AdminPermissions(**load_json(row["permissions"], {})),
        email=row["email"],
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyCompanyAdminRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def _find_one(self, where: str, params: dict) -> CompanyAdmin | None:
        def _query():
            with self._session_factory() as session:
                row = session.execute(text(f"{_SELECT} WHERE {where} LIMIT 1"), params).mappings().first()
                return _to_admin(row) if row else None

        return await self._run_in_thread(_query)

    async def find_active_by_user(self, user_id: int) -> CompanyAdmin | None:
        return await self._find_one("a.user_id = :user_id AND a.status = 'ACTIVE'", {"user_id": user_id})

    async def find_by_user_and_company(self, user_id: int, company_id: int) -> CompanyAdmin | None:
        return await self._find_one(
            "a.user_id = :user_id AND a.company_id = :company_id",
            {"user_id": user_id, "company_id": company_id},
        )

    async def find_by_id(self, admin_id: int) -> CompanyAdmin | None:
        return await self._find_one("a.admin_id = :admin_id", {"admin_id": admin_id})

    async def list_by_company(self, company_id: int) -> List[CompanyAdmin]:
        def _query():
            with self._session_factory() as session:
                rows = (
                    session.execute(
                        text(
                            _SELECT
                            + """
                            WHERE a.company_id = :company_id
                            ORDER BY FIELD(a.role, 'OWNER', 'HR', 'CONTACT'), a.created_at
                            """
                        ),
                        {"company_id": company_id},
                    )
                    .mappings()
                    .all()
                )
                return [_to_admin(row) for row in rows]

        return await self._run_in_thread(_query)

    async def create_admin(
        self,
        user_id: int,
        company_id: int,
        role: AdminRole,
        permissions: AdminPermissions,
        invited_by: int | None = None,
        title: str | None = None,
        status: AdminStatus = AdminStatus.ACTIVE,
    ) -> CompanyAdmin:
        now = now_utc()

        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO company_admins (
                            user_id, company_id, role, title, status,
                            invited_by, invited_at, accepted_at, permissions, created_at
                        ) VALUES (
                            :user_id, :company_id, :role, :title, :status,
                            :invited_by, :invited_at, :accepted_at, :permissions, :created_at
                        )
                        """
                    ),
                    {
                        "user_id": user_id,
                        "company_id": company_id,
                        "role": role.value,
                        "title": title,
                        "status": status.value,
                        "invited_by": invited_by,
                        "invited_at": now if invited_by else None,
                        "accepted_at": now if status == AdminStatus.ACTIVE else None,
                        "permissions": dump_json(permissions.model_dump()),
                        "created_at": now,
                    },
                )
                session.commit()
                return result.lastrowid

        admin_id = await self._run_in_thread(_insert)
        return await self.find_by_id(admin_id)

    async def update_fields(self, admin_id: int, fields: Dict[str, Any]) -> CompanyAdmin | None:
        if fields:
            values = dict(fields)
            if isinstance(values.get("permissions"), AdminPermissions):
                values["permissions"] = dump_json(values["permissions"].model_dump())
            clause, params = set_clause(values, _COLUMNS)
            params["admin_id"] = admin_id

            def _update():
                with self._session_factory() as session:
                    session.execute(text(f"UPDATE company_admins SET {clause} WHERE admin_id = :admin_id"), params)
                    session.commit()

            await self._run_in_thread(_update)
        return await self.find_by_id(admin_id)

    async def delete_admin(self, admin_id: int) -> None:
        def _delete():
            with self._session_factory() as session:
                session.execute(text("DELETE FROM company_admins WHERE admin_id = :admin_id"), {"admin_id": admin_id})
                session.commit()

        await self._run_in_thread(_delete)

    async def count_active_owners(self, company_id: int) -> int:
        def _query():
            with self._session_factory() as session:
                return int(
                    session.execute(
                        text(
                            """
                            SELECT COUNT(*)
                            FROM company_admins
                            WHERE company_id = :company_id
                              AND role = 'OWNER'
                              AND status = 'ACTIVE'
                            """
                        ),
                        {"company_id": company_id},
                    ).scalar()
                    or 0
                )

        return await self._run_in_thread(_query)
