from datetime import datetime
from typing import Any, Callable, Dict, List, Protocol, Tuple

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, set_clause, utc
from libs.common.timezone import now_utc
from libs.schemas import Employee, EmployeeStatus

from services.company.app.db.session import SessionLocal


class EmployeeRepositoryPort(Protocol):
    async def find_by_id(self, employee_id: int) -> Employee | None: ...

    async def find_by_user_id(self, user_id: int) -> Employee | None: ...

    async def create_employee(
        self,
        user_id: int,
        company_id: int,
        first_name: str,
        last_name: str,
        status: EmployeeStatus,
        invited_by: int | None = None,
        joined_at: datetime | None = None,
    ) -> Employee: ...

    async def list_by_company(
        self,
        company_id: int,
        status: EmployeeStatus | None,
        search: str | None,
        page: int,
        size: int,
    ) -> Tuple[List[Tuple[Employee, str]], int]: ...

    async def list_all_by_company(self, company_id: int) -> List[Tuple[Employee, str]]: ...

    async def count_by_status(self, company_id: int) -> Dict[str, int]: ...

    async def update_fields(self, employee_id: int, fields: Dict[str, Any]) -> Employee | None: ...

    async def delete_employee(self, employee_id: int) -> None: ...

    async def deactivate_active_by_company(self, company_id: int) -> int: ...

    async def find_expired_suspensions(self, now: datetime) -> List[Employee]: ...

    async def find_email(self, employee_id: int) -> str | None: ...


_COLUMNS = {
    "status": "status",
    "department": "department",
    "jobTitle": "job_title",
    "joinedAt": "joined_at",
    "suspendedAt": "suspended_at",
    "suspendedBy": "suspended_by",
    "suspensionReason": "suspension_reason",
    "suspendedUntil": "suspended_until",
    "bannedAt": "banned_at",
    "bannedBy": "banned_by",
    "banReason": "ban_reason",
    "warningCount": "warning_count",
}

_SELECT = """
    SELECT e.employee_id, e.user_id, e.company_id, e.first_name, e.last_name,
           e.department, e.job_title, e.status, e.invited_by, e.invited_at,
           e.joined_at, e.suspended_at, e.suspended_by, e.suspension_reason,
           e.suspended_until, e.banned_at, e.banned_by, e.ban_reason,
           e.warning_count, e.created_at, u.email
    FROM employees e
    LEFT JOIN users u ON u.user_id = e.user_id
"""


def _to_employee(row) -> Employee:
    return Employee(
        employeeId=row["employee_id"],
        userId=row["user_id"],
        companyId=row["company_id"],
        firstName=row["first_name"],
        lastName=row["last_name"],
        department=row["department"],
        jobTitle=row["job_title"],
        status=row["status"],
        invitedBy=row["invited_by"],
        invitedAt=utc(row["invited_at"]),
        joinedAt=utc(row["joined_at"]),
        suspendedAt=utc(row["suspended_at"]),
        suspendedBy=row["suspended_by"],
        suspensionReason=row["suspension_reason"],
        suspendedUntil=utc(row["suspended_until"]),
        bannedAt=utc(row["banned_at"]),
        bannedBy=row["banned_by"],
        banReason=row["ban_reason"],
        warningCount=row["warning_count"] or 0,
        createdAt=utc(row["created_at"]),
    )


def _search_filter(company_id: int, status: EmployeeStatus | None, search: str | None) -> Tuple[str, Dict[str, Any]]:
    where = ["e.company_id = :company_id"]
    params: Dict[str, Any] = {"company_id": company_id}
    if status:
        where.append("e.status = :status")
        params["status"] = status.value
    if search:
        where.append(
            "(LOWER(CONCAT(e.first_name, ' ', e.last_name)) LIKE :search OR LOWER(u.email) LIKE :search)"
        )
        params["search"] = f"%{search.lower()}%"
    return " AND ".join(where), params


class SQLAlchemyEmployeeRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def _find_one(self, where: str, params: dict) -> Employee | None:
        def _query():
            with self._session_factory() as session:
                row = session.execute(text(f"{_SELECT} WHERE {where} LIMIT 1"), params).mappings().first()
                return _to_employee(row) if row else None

        return await self._run_in_thread(_query)

    async def find_by_id(self, employee_id: int) -> Employee | None:
        return await self._find_one("e.employee_id = :employee_id", {"employee_id": employee_id})

    async def find_by_user_id(self, user_id: int) -> Employee | None:
        return await self._find_one("e.user_id = :user_id", {"user_id": user_id})

    async def create_employee(
        self,
        user_id: int,
        company_id: int,
        first_name: str,
        last_name: str,
        status: EmployeeStatus,
        invited_by: int | None = None,
        joined_at: datetime | None = None,
    ) -> Employee:
        now = now_utc()

        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO employees (
                            user_id, company_id, first_name, last_name, status,
                            invited_by, invited_at, joined_at, warning_count, created_at
                        ) VALUES (
                            :user_id, :company_id, :first_name, :last_name, :status,
                            :invited_by, :invited_at, :joined_at, 0, :created_at
                        )
                        """
                    ),
                    {
                        "user_id": user_id,
                        "company_id": company_id,
                        "first_name": first_name,
                        "last_name": last_name,
                        "status": status.value,
                        "invited_by": invited_by,
                        "invited_at": now if invited_by else None,
                        "joined_at": joined_at,
                        "created_at": now,
                    },
                )
                session.commit()
                return result.lastrowid

        employee_id = await self._run_in_thread(_insert)
        return await self.find_by_id(employee_id)

    async def list_by_company(
        self,
        company_id: int,
        status: EmployeeStatus | None,
        search: str | None,
        page: int,
        size: int,
    ) -> Tuple[List[Tuple[Employee, str]], int]:
        where, params = _search_filter(company_id, status, search)

        def _query():
            with self._session_factory() as session:
                total = session.execute(
                    text(
                        f"""
                        SELECT COUNT(*)
                        FROM employees e
                        LEFT JOIN users u ON u.user_id = e.user_id
                        WHERE {where}
                        """
                    ),
                    params,
                ).scalar()
                rows = (
                    session.execute(
                        text(f"{_SELECT} WHERE {where} ORDER BY e.created_at DESC LIMIT :limit OFFSET :offset"),
                        {**params, "limit": size, "offset": (page - 1) * size},
                    )
                    .mappings()
                    .all()
                )
                return [(_to_employee(row), row["email"]) for row in rows], int(total or 0)

        return await self._run_in_thread(_query)

    async def list_all_by_company(self, company_id: int) -> List[Tuple[Employee, str]]:
        def _query():
            with self._session_factory() as session:
                rows = (
                    session.execute(
                        text(f"{_SELECT} WHERE e.company_id = :company_id ORDER BY e.last_name, e.first_name"),
                        {"company_id": company_id},
                    )
                    .mappings()
                    .all()
                )
                return [(_to_employee(row), row["email"]) for row in rows]

        return await self._run_in_thread(_query)

    async def count_by_status(self, company_id: int) -> Dict[str, int]:
        def _query():
            with self._session_factory() as session:
                rows = session.execute(
                    text(
                        """
                        SELECT status, COUNT(*) AS cnt
                        FROM employees
                        WHERE company_id = :company_id
                        GROUP BY status
                        """
                    ),
                    {"company_id": company_id},
                ).all()
                return {status: int(count) for status, count in rows}

        return await self._run_in_thread(_query)

    async def update_fields(self, employee_id: int, fields: Dict[str, Any]) -> Employee | None:
        if fields:
            clause, params = set_clause(fields, _COLUMNS)
            params["employee_id"] = employee_id

            def _update():
                with self._session_factory() as session:
                    session.execute(text(f"UPDATE employees SET {clause} WHERE employee_id = :employee_id"), params)
                    session.commit()

            await self._run_in_thread(_update)
        return await self.find_by_id(employee_id)

    async def delete_employee(self, employee_id: int) -> None:
        def _delete():
            with self._session_factory() as session:
                session.execute(
                    text("DELETE FROM employees WHERE employee_id = :employee_id"),
                    {"employee_id": employee_id},
                )
                session.commit()

        await self._run_in_thread(_delete)

    async def deactivate_active_by_company(self, company_id: int) -> int:
        def _update():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        UPDATE employees
                        SET status = 'INACTIVE'
                        WHERE company_id = :company_id
                          AND status = 'ACTIVE'
                        """
                    ),
                    {"company_id": company_id},
                )
                session.commit()
                return result.rowcount

        return await self._run_in_thread(_update)

    async def find_expired_suspensions(self, now: datetime) -> List[Employee]:
        def _query():
            with self._session_factory() as session:
                rows = (
                    session.execute(
                        text(
                            _SELECT
                            + """
                            WHERE e.status = 'SUSPENDED'
                              AND e.suspended_until IS NOT NULL
                              AND e.suspended_until <= :now
                            """
                        ),
                        {"now": now},
                    )
                    .mappings()
                    .all()
                )
                return [_to_employee(row) for row in rows]

        return await self._run_in_thread(_query)

    async def find_email(self, employee_id: int) -> str | None:
        def _query():
            with self._session_factory() as session:
                return session.execute(
                    text(
                        """
                        SELECT u.email
                        FROM employees e
                        INNER JOIN users u ON u.user_id = e.user_id
                        WHERE e.employee_id = :employee_id
                        """
                    ),
                    {"employee_id": employee_id},
                ).scalar()

        return await self._run_in_thread(_query)
