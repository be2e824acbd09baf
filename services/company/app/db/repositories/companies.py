from typing import Callable, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, utc
from libs.common.timezone import now_utc
from libs.schemas import Company, CompanySettings, CompanyStatus

from services.company.app.db.session import SessionLocal


class CompanyRepositoryPort(Protocol):
    async def find_by_id(self, company_id: int) -> Company | None: ...

    async def find_by_email_domain(self, domain: str) -> Company | None: ...

    async def slug_exists(self, slug: str) -> bool: ...

    async def create_company(
        self,
        name: str,
        slug: str,
        city: str | None,
        state: str | None,
        address: str | None,
        zip_code: str | None,
        admin_user_id: int,
        email_domain: str | None,
    ) -> Company: ...

    async def update_settings(self, company_id: int, settings: CompanySettings) -> Company: ...

    async def set_status(self, company_id: int, status: CompanyStatus) -> None: ...


_SELECT = """
    SELECT company_id, name, slug, address, city, state, zip_code, country,
           admin_user_id, status, allow_public_deals, auto_approve_employees,
           email_domain, created_at
    FROM companies
"""


def _to_company(row) -> Company:
    return Company(
        companyId=row["company_id"],
        name=row["name"],
        slug=row["slug"],
        address=row["address"],
        city=row["city"],
        state=row["state"],
        zipCode=row["zip_code"],
        country=row["country"],
        adminUserId=row["admin_user_id"],
        status=row["status"],
        settings=CompanySettings(
            allowPublicDeals=bool(row["allow_public_deals"]),
            autoApproveEmployees=bool(row["auto_approve_employees"]),
            emailDomain=row["email_domain"],
        ),
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyCompanyRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def find_by_id(self, company_id: int) -> Company | None:
        def _query():
            with self._session_factory() as session:
                row = (
                    session.execute(text(_SELECT + " WHERE company_id = :company_id LIMIT 1"), {"company_id": company_id})
                    .mappings()
                    .first()
                )
                return _to_company(row) if row else None

        return await self._run_in_thread(_query)

    async def find_by_email_domain(self, domain: str) -> Company | None:
        def _query():
            with self._session_factory() as session:
                row = (
                    session.execute(
                        text(
                            _SELECT
                            + """
                            WHERE email_domain = :domain
                              AND status <> 'SUSPENDED'
                            ORDER BY created_at
                            LIMIT 1
                            """
                        ),
                        {"domain": domain.lower()},
                    )
                    .mappings()
                    .first()
                )
                return _to_company(row) if row else None

        return await self._run_in_thread(_query)

    async def slug_exists(self, slug: str) -> bool:
        def _query():
            with self._session_factory() as session:
                result = session.execute(
                    text("SELECT EXISTS(SELECT 1 FROM companies WHERE slug = :slug) AS exists_flag"),
                    {"slug": slug},
                ).scalar()
                return bool(result)

        return await self._run_in_thread(_query)

    async def create_company(
        self,
        name: str,
        slug: str,
        city: str | None,
        state: str | None,
        address: str | None,
        zip_code: str | None,
        admin_user_id: int,
        email_domain: str | None,
    ) -> Company:
        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO companies (
                            name, slug, address, city, state, zip_code, country,
                            admin_user_id, status, allow_public_deals,
                            auto_approve_employees, email_domain, created_at
                        ) VALUES (
                            :name, :slug, :address, :city, :state, :zip_code, 'US',
                            :admin_user_id, 'PENDING', 1,
                            0, :email_domain, :created_at
                        )
                        """
                    ),
                    {
                        "name": name,
                        "slug": slug,
                        "address": address,
                        "city": city,
                        "state": state,
                        "zip_code": zip_code,
                        "admin_user_id": admin_user_id,
                        "email_domain": email_domain,
                        "created_at": now_utc(),
                    },
                )
                session.commit()
                return result.lastrowid

        company_id = await self._run_in_thread(_insert)
        return await self.find_by_id(company_id)

    async def update_settings(self, company_id: int, settings: CompanySettings) -> Company:
        def _update():
            with self._session_factory() as session:
                session.execute(
                    text(
                        """
                        UPDATE companies
                        SET allow_public_deals = :allow_public_deals,
                            auto_approve_employees = :auto_approve_employees,
                            email_domain = :email_domain
                        WHERE company_id = :company_id
                        """
                    ),
                    {
                        "company_id": company_id,
                        "allow_public_deals": settings.allowPublicDeals,
                        "auto_approve_employees": settings.autoApproveEmployees,
                        "email_domain": settings.emailDomain.lower() if settings.emailDomain else None,
                    },
                )
                session.commit()

        await self._run_in_thread(_update)
        return await self.find_by_id(company_id)

    async def set_status(self, company_id: int, status: CompanyStatus) -> None:
        def _update():
            with self._session_factory() as session:
                session.execute(
                    text("UPDATE companies SET status = :status WHERE company_id = :company_id"),
                    {"company_id": company_id, "status": status.value},
                )
                session.commit()

        await self._run_in_thread(_update)
