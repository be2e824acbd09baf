from typing import Callable, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, utc
from libs.common.timezone import now_utc
from libs.schemas import EmployeePass, PassStatus

from services.coupon.app.db.session import SessionLocal


class EmployeePassRepositoryPort(Protocol):
    async def find_by_pass_id(self, pass_id: str) -> EmployeePass | None: ...

    async def find_active_by_employee(self, employee_id: int) -> EmployeePass | None: ...

    async def create_pass(self, pass_id: str, employee_id: int, company_id: int, signature: str) -> EmployeePass: ...

    async def set_status(self, pass_id: str, status: PassStatus) -> None: ...

    async def record_use(self, pass_id: str) -> EmployeePass | None: ...


_SELECT = """
    SELECT pass_id, employee_id, company_id, signature, status, usage_count,
           last_used_at, created_at
    FROM employee_passes
"""


def _to_pass(row) -> EmployeePass:
    return EmployeePass(
        passId=row["pass_id"],
        employeeId=row["employee_id"],
        companyId=row["company_id"],
        signature=row["signature"],
        status=row["status"],
        usageCount=row["usage_count"],
        lastUsedAt=utc(row["last_used_at"]),
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyEmployeePassRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def _find_one(self, where: str, params: dict) -> EmployeePass | None:
        def _query():
            with self._session_factory() as session:
                row = (
                    session.execute(text(f"{_SELECT} WHERE {where} ORDER BY created_at DESC LIMIT 1"), params)
                    .mappings()
                    .first()
                )
                return _to_pass(row) if row else None

        return await self._run_in_thread(_query)

    async def find_by_pass_id(self, pass_id: str) -> EmployeePass | None:
        return await self._find_one("pass_id = :pass_id", {"pass_id": pass_id})

    async def find_active_by_employee(self, employee_id: int) -> EmployeePass | None:
        return await self._find_one("employee_id = :employee_id AND status = 'ACTIVE'", {"employee_id": employee_id})

    async def create_pass(self, pass_id: str, employee_id: int, company_id: int, signature: str) -> EmployeePass:
        def _insert():
            with self._session_factory() as session:
                session.execute(
                    text(
                        """
                        INSERT INTO employee_passes (
                            pass_id, employee_id, company_id, signature, status, usage_count, created_at
                        ) VALUES (
                            :pass_id, :employee_id, :company_id, :signature, 'ACTIVE', 0, :created_at
                        )
                        """
                    ),
                    {
                        "pass_id": pass_id,
                        "employee_id": employee_id,
                        "company_id": company_id,
                        "signature": signature,
                        "created_at": now_utc(),
                    },
                )
                session.commit()

        await self._run_in_thread(_insert)
        return await self.find_by_pass_id(pass_id)

    async def set_status(self, pass_id: str, status: PassStatus) -> None:
        def _update():
            with self._session_factory() as session:
                session.execute(
                    text("UPDATE employee_passes SET status = :status WHERE pass_id = :pass_id"),
                    {"status": status.value, "pass_id": pass_id},
                )
                session.commit()

        await self._run_in_thread(_update)

    async def record_use(self, pass_id: str) -> EmployeePass | None:
        def _update():
            with self._session_factory() as session:
                session.execute(
                    text(
                        """
                        UPDATE employee_passes
                        SET usage_count = usage_count + 1, last_used_at = :now
                        WHERE pass_id = :pass_id
                        """
                    ),
                    {"pass_id": pass_id, "now": now_utc()},
                )
                session.commit()

        await self._run_in_thread(_update)
        return await self.find_by_pass_id(pass_id)
