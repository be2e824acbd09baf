import logging
from typing import Any, Dict, List

from fastapi_pagination import Page

from libs.common import AuditLogger, Cache, CacheKeys, ServiceError, audit_logger, get_cache, now_utc
from libs.schemas import (
    AdminPermissions,
    AdminRole,
    AdminStatus,
    AuditAction,
    Company,
    CompanyAdmin,
    CompanySettings,
    Employee,
    EmployeeStatus,
    UserRole,
    default_permissions,
)

from services.auth.app.db.repositories.users import UserRepositoryPort
from services.company.app.db.repositories.admins import CompanyAdminRepositoryPort
from services.company.app.db.repositories.companies import CompanyRepositoryPort
from services.company.app.db.repositories.employees import EmployeeRepositoryPort
from services.company.app.db.repositories.invites import InviteRepositoryPort
from services.company.app.schemas.response import EmployeeListItem

logger = logging.getLogger(__name__)

PERMISSION_LABELS = {
    "manageEmployees": "manage employees",
    "manageInvites": "manage invites",
    "manageAdmins": "manage admins",
    "viewReports": "view reports",
}


class CompanyError(ServiceError):
    pass


def _employee_item(employee: Employee, email: str | None) -> EmployeeListItem:
    return EmployeeListItem(
        employeeId=employee.employeeId,
        userId=employee.userId,
        firstName=employee.firstName,
        lastName=employee.lastName,
        email=email,
        department=employee.department,
        jobTitle=employee.jobTitle,
        status=employee.status.value,
        warningCount=employee.warningCount,
        joinedAt=employee.joinedAt,
        createdAt=employee.createdAt,
    )


class CompanyService:
    """
    Company administration: profile, settings, roster and admins.

    Every operation starts from the caller's ACTIVE CompanyAdmin record and
    only ever touches rows of that admin's company.
    """

    def __init__(
        self,
        company_repository: CompanyRepositoryPort,
        admin_repository: CompanyAdminRepositoryPort,
        employee_repository: EmployeeRepositoryPort,
        invite_repository: InviteRepositoryPort,
        user_repository: UserRepositoryPort,
        cache: Cache | None = None,
        audit: AuditLogger | None = None,
    ):
        self.company_repository = company_repository
        self.admin_repository = admin_repository
        self.employee_repository = employee_repository
        self.invite_repository = invite_repository
        self.user_repository = user_repository
        self._cache = cache
        self.audit = audit or audit_logger

    @property
    def cache(self) -> Cache:
        return self._cache or get_cache()

    async def require_admin(self, user_id: int) -> CompanyAdmin:
        admin = await self.admin_repository.find_active_by_user(user_id)
        if admin is None:
            raise CompanyError("ERR-FORBIDDEN", "Not a company admin")
        return admin

    async def require_permission(self, user_id: int, permission: str) -> CompanyAdmin:
        admin = await self.require_admin(user_id)
        if not getattr(admin.permissions, permission):
            raise CompanyError("ERR-FORBIDDEN", f"No permission to {PERMISSION_LABELS[permission]}")
        return admin

    async def get_company(self, company_id: int) -> Company:
        company = await self.company_repository.find_by_id(company_id)
        if company is None:
            raise CompanyError("ERR-NOT-FOUND", "Company not found")
        return company

    async def me(self, user_id: int) -> Dict[str, Any]:
        admin = await self.require_admin(user_id)
        company = await self.get_company(admin.companyId)
        by_status = await self.employee_repository.count_by_status(company.companyId)
        active_invites = await self.invite_repository.count_active(company.companyId, now_utc())
        return {
            "company": company,
            "admin": {"role": admin.role.value, "title": admin.title, "permissions": admin.permissions},
            "stats": {
                "employees": by_status,
                "totalEmployees": sum(by_status.values()),
                "activeInvites": active_invites,
            },
        }

    async def update_settings(
        self,
        user_id: int,
        changes: Dict[str, Any],
        audit: AuditLogger | None = None,
    ) -> Company:
        admin = await self.require_permission(user_id, "manageAdmins")
        company = await self.get_company(admin.companyId)

        values = company.settings.model_dump()
        for name in ("allowPublicDeals", "autoApproveEmployees"):
            if changes.get(name) is not None:
                values[name] = bool(changes[name])
        if "emailDomain" in changes:
            domain = (changes["emailDomain"] or "").strip().lower().lstrip("@")
            values["emailDomain"] = domain or None

        updated = await self.company_repository.update_settings(company.companyId, CompanySettings(**values))
        await (audit or self.audit).log_change(
            AuditAction.EMPLOYEE_UPDATED,
            "Company",
            company.companyId,
            "Company settings updated",
            before=company.settings.model_dump(),
            after=updated.settings.model_dump(),
        )
        return updated

    # employees

    async def list_employees(
        self,
        user_id: int,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        size: int = 20,
    ) -> Page[EmployeeListItem]:
        admin = await self.require_admin(user_id)
        status_filter = self._employee_status(status) if status else None
        page = max(page, 1)
        size = min(max(size, 1), 100)

        rows, total = await self.employee_repository.list_by_company(
            admin.companyId,
            status_filter,
            (search or "").strip() or None,
            page,
            size,
        )
        return Page(
            items=[_employee_item(employee, email) for employee, email in rows],
            total=total,
            page=page,
            size=size,
            pages=(total + size - 1) // size if size > 0 else 0,
        )

    @staticmethod
    def _employee_status(value: str) -> EmployeeStatus:
        try:
            return EmployeeStatus(value.upper())
        except ValueError:
            raise CompanyError("ERR-IVD-VALUE", f"Invalid status: {value}")

    async def _company_employee(self, company_id: int, employee_id: int) -> Employee:
        employee = await self.employee_repository.find_by_id(employee_id)
        if employee is None or employee.companyId != company_id:
            raise CompanyError("ERR-NOT-FOUND", "Employee not found")
        return employee

    async def update_employee(
        self,
        user_id: int,
        employee_id: int,
        changes: Dict[str, Any],
        audit: AuditLogger | None = None,
    ) -> EmployeeListItem:
        admin = await self.require_permission(user_id, "manageEmployees")
        employee = await self._company_employee(admin.companyId, employee_id)

        fields: Dict[str, Any] = {}
        if changes.get("status"):
            status = self._employee_status(changes["status"])
            fields["status"] = status
            if employee.status == EmployeeStatus.PENDING and status == EmployeeStatus.ACTIVE:
                fields["joinedAt"] = now_utc()
        for name in ("department", "jobTitle"):
            if name in changes:
                fields[name] = changes[name]

        updated = await self.employee_repository.update_fields(employee.employeeId, fields)
        if "status" in fields:
            await self.cache.delete(CacheKeys.company_stats(admin.companyId))

        await (audit or self.audit).log_change(
            AuditAction.EMPLOYEE_UPDATED,
            "Employee",
            employee.employeeId,
            "Employee updated by company admin",
            before={name: getattr(employee, name) for name in fields},
            after={name: getattr(updated, name) for name in fields},
        )
        email = await self.employee_repository.find_email(employee.employeeId)
        return _employee_item(updated, email)

    async def delete_employee(self, user_id: int, employee_id: int, audit: AuditLogger | None = None) -> None:
        admin = await self.require_permission(user_id, "manageEmployees")
        employee = await self._company_employee(admin.companyId, employee_id)
        await self.employee_repository.delete_employee(employee.employeeId)
        await self.cache.delete(CacheKeys.company_stats(admin.companyId))
        await (audit or self.audit).warn(
            AuditAction.EMPLOYEE_UPDATED,
            "Employee removed from company",
            resource="Employee",
            resource_id=employee.employeeId,
            metadata={"companyId": admin.companyId, "userId": employee.userId},
        )

    async def roster(self, user_id: int) -> List[Dict[str, Any]]:
        """Full roster for exports (viewReports)."""
        admin = await self.require_permission(user_id, "viewReports")
        rows = await self.employee_repository.list_all_by_company(admin.companyId)
        return [
            {
                "name": employee.full_name,
                "email": email or "",
                "department": employee.department or "",
                "jobTitle": employee.jobTitle or "",
                "status": employee.status.value,
                "joinedAt": employee.joinedAt.strftime("%Y-%m-%d") if employee.joinedAt else "",
            }
            for employee, email in rows
        ]

    # admins

    async def list_admins(self, user_id: int) -> List[CompanyAdmin]:
        admin = await self.require_admin(user_id)
        return await self.admin_repository.list_by_company(admin.companyId)

    @staticmethod
    def _admin_role(value: str | None) -> AdminRole:
        try:
            return AdminRole((value or "").upper())
        except ValueError:
            raise CompanyError("ERR-IVD-VALUE", "Invalid role")

    async def add_admin(
        self,
        user_id: int,
        email: str | None,
        role: str | None,
        title: str | None = None,
        audit: AuditLogger | None = None,
    ) -> CompanyAdmin:
        admin = await self.require_permission(user_id, "manageAdmins")
        if not email or not role:
            raise CompanyError("ERR-IVD-PARAM", "Email and role are required")
        new_role = self._admin_role(role)
        if new_role == AdminRole.OWNER and admin.role != AdminRole.OWNER:
            raise CompanyError("ERR-FORBIDDEN", "Only owners can add other owners")

        user = await self.user_repository.find_by_email(email.strip().lower())
        if user is None:
            raise CompanyError("ERR-NOT-FOUND", "User not found. They must register first.")
        if await self.admin_repository.find_by_user_and_company(user.userId, admin.companyId):
            raise CompanyError("ERR-DUP-VALUE", "User is already an admin of this company")

        created = await self.admin_repository.create_admin(
            user_id=user.userId,
            company_id=admin.companyId,
            role=new_role,
            permissions=default_permissions(new_role),
            invited_by=user_id,
            title=title,
        )
        if user.role != UserRole.COMPANY_ADMIN:
            await self.user_repository.update_fields(user.userId, {"role": UserRole.COMPANY_ADMIN})

        await (audit or self.audit).info(
            AuditAction.EMPLOYEE_UPDATED,
            f"Company admin added with role {new_role.value}",
            resource="CompanyAdmin",
            resource_id=created.adminId,
            metadata={"companyId": admin.companyId, "userId": user.userId},
        )
        return created

    async def _company_admin(self, company_id: int, admin_id: int) -> CompanyAdmin:
        target = await self.admin_repository.find_by_id(admin_id)
        if target is None or target.companyId != company_id:
            raise CompanyError("ERR-NOT-FOUND", "Admin not found")
        return target

    async def update_admin(
        self,
        user_id: int,
        admin_id: int,
        changes: Dict[str, Any],
        audit: AuditLogger | None = None,
    ) -> CompanyAdmin:
        admin = await self.require_permission(user_id, "manageAdmins")
        target = await self._company_admin(admin.companyId, admin_id)

        if target.role == AdminRole.OWNER and admin.role != AdminRole.OWNER:
            raise CompanyError("ERR-FORBIDDEN", "Cannot modify an owner")
        new_role = self._admin_role(changes["role"]) if changes.get("role") else None
        if new_role == AdminRole.OWNER and admin.role != AdminRole.OWNER:
            raise CompanyError("ERR-FORBIDDEN", "Cannot promote to owner")

        fields: Dict[str, Any] = {}
        if new_role is not None:
            fields["role"] = new_role
        if "title" in changes:
            fields["title"] = changes["title"]
        if changes.get("status"):
            try:
                fields["status"] = AdminStatus(changes["status"].upper())
            except ValueError:
                raise CompanyError("ERR-IVD-VALUE", "Invalid status")
        if changes.get("permissions"):
            merged = target.permissions.model_dump()
            merged.update({name: bool(value) for name, value in changes["permissions"].items() if name in merged})
            fields["permissions"] = AdminPermissions(**merged)

        updated = await self.admin_repository.update_fields(target.adminId, fields)
        await (audit or self.audit).log_change(
            AuditAction.EMPLOYEE_UPDATED,
            "CompanyAdmin",
            target.adminId,
            "Company admin updated",
            before={"role": target.role.value, "status": target.status.value, "title": target.title},
            after={"role": updated.role.value, "status": updated.status.value, "title": updated.title},
        )
        return updated

    async def remove_admin(self, user_id: int, admin_id: int, audit: AuditLogger | None = None) -> None:
        admin = await self.require_permission(user_id, "manageAdmins")
        target = await self._company_admin(admin.companyId, admin_id)

        if target.userId == user_id:
            raise CompanyError("ERR-IVD-VALUE", "Cannot remove yourself")
        if target.role == AdminRole.OWNER:
            if admin.role != AdminRole.OWNER:
                raise CompanyError("ERR-FORBIDDEN", "Only owners can remove other owners")
            if target.status == AdminStatus.ACTIVE and await self.admin_repository.count_active_owners(admin.companyId) <= 1:
                raise CompanyError("ERR-IVD-VALUE", "Cannot remove the last owner")

        await self.admin_repository.delete_admin(target.adminId)
        await (audit or self.audit).warn(
            AuditAction.EMPLOYEE_UPDATED,
            "Company admin removed",
            resource="CompanyAdmin",
            resource_id=target.adminId,
            metadata={"companyId": admin.companyId, "userId": target.userId},
        )
