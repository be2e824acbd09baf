import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List

from libs.common import AuditLogger, Cache, CacheKeys, ServiceError, audit_logger, get_cache, now_utc
from libs.common.timezone import add_months, ensure_utc
from libs.schemas import (
    AppealStatus,
    AuditAction,
    CompanyStatus,
    DurationUnit,
    Employee,
    EmployeeStatus,
    Merchant,
    MerchantStatus,
    ModerationAction,
    ModerationActionType,
    ModerationDuration,
    ModerationReason,
    ModerationTarget,
)

from services.admin.app.db.repositories.moderation import ModerationActionRepositoryPort
from services.company.app.db.repositories.companies import CompanyRepositoryPort
from services.company.app.db.repositories.employees import EmployeeRepositoryPort
from services.coupon.app.db.repositories.coupons import ClaimedCouponRepositoryPort
from services.merchant.app.db.repositories.discounts import DiscountRepositoryPort
from services.merchant.app.db.repositories.merchants import MerchantRepositoryPort

logger = logging.getLogger(__name__)

ROLE_PLATFORM_ADMIN = "PLATFORM_ADMIN"
ROLE_SYSTEM = "SYSTEM"

WARNINGS_BEFORE_SUSPENSION = 3
AUTO_SUSPENSION = ModerationDuration(value=7, unit=DurationUnit.DAYS)
SUSPENSION_APPEAL_DAYS = 14
BAN_APPEAL_DAYS = 30

_CLEARED_SUSPENSION = {
    "suspendedAt": None,
    "suspendedBy": None,
    "suspensionReason": None,
    "suspendedUntil": None,
}


class ModerationError(ServiceError):
    pass


def duration_expiry(duration: ModerationDuration | None, start: datetime) -> datetime | None:
    """
    End of a moderation duration.

    Hours, days and weeks add elapsed time; months add calendar months.
    Permanent (or no duration) never ends.
    """
    if duration is None or duration.unit == DurationUnit.PERMANENT or duration.value <= 0:
        return None
    if duration.unit == DurationUnit.HOURS:
        return start + timedelta(hours=duration.value)
    if duration.unit == DurationUnit.DAYS:
        return start + timedelta(days=duration.value)
    if duration.unit == DurationUnit.WEEKS:
        return start + timedelta(weeks=duration.value)
    return add_months(start, duration.value)


def _employee_state(employee: Employee) -> Dict[str, Any]:
    return {
        "status": employee.status.value,
        "warningCount": employee.warningCount,
        "suspendedUntil": employee.suspendedUntil.isoformat() if employee.suspendedUntil else None,
    }


def _merchant_state(merchant: Merchant) -> Dict[str, Any]:
    return {"status": merchant.status.value}


class ModerationService:
    """
    Warnings, suspensions and bans, each recorded as a ModerationAction.
    """

    def __init__(
        self,
        moderation_repository: ModerationActionRepositoryPort,
        employee_repository: EmployeeRepositoryPort,
        merchant_repository: MerchantRepositoryPort,
        discount_repository: DiscountRepositoryPort,
        company_repository: CompanyRepositoryPort,
        coupon_repository: ClaimedCouponRepositoryPort,
        cache: Cache | None = None,
        audit: AuditLogger | None = None,
    ):
        self.moderation_repository = moderation_repository
        self.employee_repository = employee_repository
        self.merchant_repository = merchant_repository
        self.discount_repository = discount_repository
        self.company_repository = company_repository
        self.coupon_repository = coupon_repository
        self._cache = cache
        self.audit = audit or audit_logger

    @property
    def cache(self) -> Cache:
        return self._cache or get_cache()

    async def _record(
        self,
        audit: AuditLogger | None,
        performed_by: int | None,
        action_type: ModerationActionType,
        reason: ModerationReason,
        target_type: ModerationTarget,
        target_id: int,
        previous_state: Dict[str, Any],
        new_state: Dict[str, Any],
        reason_details: str | None = None,
        duration: ModerationDuration | None = None,
        expires_at: datetime | None = None,
        appeal_days: int | None = None,
        performed_by_role: str = ROLE_PLATFORM_ADMIN,
    ) -> ModerationAction:
        now = now_utc()
        action = await self.moderation_repository.create_action(
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            action_type=action_type,
            reason=reason,
            target_type=target_type,
            target_id=target_id,
            reason_details=reason_details,
            duration=duration,
            expires_at=expires_at,
            appealable=appeal_days is not None,
            appeal_deadline=now + timedelta(days=appeal_days) if appeal_days is not None else None,
            previous_state=previous_state,
            new_state=new_state,
        )
        audit = audit or self.audit
        punitive = action_type in (ModerationActionType.SUSPENDED, ModerationActionType.BANNED)
        await (audit.warn if punitive else audit.info)(
            AuditAction.MODERATION_ACTION,
            f"{action_type.value} {target_type.value} {target_id}: {reason.value}",
            resource=target_type.value.capitalize(),
            resource_id=target_id,
            metadata={"actionId": action.actionId, "performedByRole": performed_by_role, "details": reason_details},
            changes={"before": previous_state, "after": new_state},
        )
        return action

    async def _employee(self, employee_id: int) -> Employee:
        employee = await self.employee_repository.find_by_id(employee_id)
        if employee is None:
            raise ModerationError("ERR-NOT-FOUND", "Employee not found")
        return employee

    async def _merchant(self, merchant_id: int) -> Merchant:
        merchant = await self.merchant_repository.find_by_id(merchant_id)
        if merchant is None:
            raise ModerationError("ERR-NOT-FOUND", "Merchant not found")
        return merchant

    async def warn_employee(
        self,
        admin_id: int | None,
        employee_id: int,
        reason: ModerationReason,
        details: str | None = None,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        """
        Issue a warning. The third warning suspends the employee for 7 days.
        """
        employee = await self._employee(employee_id)
        if employee.status == EmployeeStatus.BANNED:
            raise ModerationError("ERR-IVD-VALUE", "Employee is banned")

        count = employee.warningCount + 1
        updated = await self.employee_repository.update_fields(employee_id, {"warningCount": count})
        action = await self._record(
            audit,
            admin_id,
            ModerationActionType.WARNING_ISSUED,
            reason,
            ModerationTarget.EMPLOYEE,
            employee_id,
            _employee_state(employee),
            _employee_state(updated),
            reason_details=details,
        )

        if count >= WARNINGS_BEFORE_SUSPENSION and updated.status != EmployeeStatus.SUSPENDED:
            logger.info("employee %s reached %d warnings, suspending", employee_id, count)
            await self.suspend_employee(
                admin_id,
                employee_id,
                ModerationReason.TERMS_VIOLATION,
                f"Automatic suspension after {count} warnings",
                AUTO_SUSPENSION,
                audit=audit,
            )
        return action

    async def suspend_employee(
        self,
        admin_id: int | None,
        employee_id: int,
        reason: ModerationReason,
        details: str | None = None,
        duration: ModerationDuration | None = None,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        employee = await self._employee(employee_id)
        if employee.status == EmployeeStatus.BANNED:
            raise ModerationError("ERR-IVD-VALUE", "Cannot suspend a banned employee")

        now = now_utc()
        until = duration_expiry(duration, now)
        updated = await self.employee_repository.update_fields(
            employee_id,
            {
                "status": EmployeeStatus.SUSPENDED,
                "suspendedAt": now,
                "suspendedBy": admin_id,
                "suspensionReason": details or reason.value,
                "suspendedUntil": until,
            },
        )
        cancelled = await self.coupon_repository.cancel_active_by_employee(employee_id)
        logger.info("suspended employee %s until %s, %d coupons cancelled", employee_id, until, cancelled)
        return await self._record(
            audit,
            admin_id,
            ModerationActionType.SUSPENDED,
            reason,
            ModerationTarget.EMPLOYEE,
            employee_id,
            _employee_state(employee),
            {**_employee_state(updated), "cancelledCoupons": cancelled},
            reason_details=details,
            duration=duration or ModerationDuration(),
            expires_at=until,
            appeal_days=SUSPENSION_APPEAL_DAYS,
        )

    async def unsuspend_employee(
        self,
        admin_id: int | None,
        employee_id: int,
        details: str | None = None,
        audit: AuditLogger | None = None,
        performed_by_role: str = ROLE_PLATFORM_ADMIN,
    ) -> ModerationAction:
        employee = await self._employee(employee_id)
        if employee.status != EmployeeStatus.SUSPENDED:
            raise ModerationError("ERR-IVD-VALUE", "Employee is not suspended")

        updated = await self.employee_repository.update_fields(
            employee_id, {**_CLEARED_SUSPENSION, "status": EmployeeStatus.ACTIVE}
        )
        return await self._record(
            audit,
            admin_id,
            ModerationActionType.UNSUSPENDED,
            ModerationReason.ADMIN_DECISION,
            ModerationTarget.EMPLOYEE,
            employee_id,
            _employee_state(employee),
            _employee_state(updated),
            reason_details=details,
            performed_by_role=performed_by_role,
        )

    async def ban_employee(
        self,
        admin_id: int | None,
        employee_id: int,
        reason: ModerationReason,
        details: str | None = None,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        employee = await self._employee(employee_id)
        if employee.status == EmployeeStatus.BANNED:
            raise ModerationError("ERR-IVD-VALUE", "Employee is already banned")

        updated = await self.employee_repository.update_fields(
            employee_id,
            {
                **_CLEARED_SUSPENSION,
                "status": EmployeeStatus.BANNED,
                "bannedAt": now_utc(),
                "bannedBy": admin_id,
                "banReason": details or reason.value,
            },
        )
        cancelled = await self.coupon_repository.cancel_open_by_employee(employee_id)
        return await self._record(
            audit,
            admin_id,
            ModerationActionType.BANNED,
            reason,
            ModerationTarget.EMPLOYEE,
            employee_id,
            _employee_state(employee),
            {**_employee_state(updated), "cancelledCoupons": cancelled},
            reason_details=details,
            duration=ModerationDuration(),
            appeal_days=BAN_APPEAL_DAYS,
        )

    async def suspend_merchant(
        self,
        admin_id: int | None,
        merchant_id: int,
        reason: ModerationReason,
        details: str | None = None,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        merchant = await self._merchant(merchant_id)
        if merchant.status == MerchantStatus.SUSPENDED:
            raise ModerationError("ERR-IVD-VALUE", "Merchant is already suspended")

        updated = await self.merchant_repository.update_fields(merchant_id, {"status": MerchantStatus.SUSPENDED})
        deactivated = await self.discount_repository.deactivate_by_merchant(merchant_id)
        await self.cache.delete(CacheKeys.merchant_discounts(merchant_id))
        return await self._record(
            audit,
            admin_id,
            ModerationActionType.SUSPENDED,
            reason,
            ModerationTarget.MERCHANT,
            merchant_id,
            _merchant_state(merchant),
            {**_merchant_state(updated), "deactivatedDiscounts": deactivated},
            reason_details=details,
            appeal_days=SUSPENSION_APPEAL_DAYS,
        )

    async def reactivate_merchant(
        self,
        admin_id: int | None,
        merchant_id: int,
        details: str | None = None,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        merchant = await self._merchant(merchant_id)
        if merchant.status == MerchantStatus.ACTIVE:
            raise ModerationError("ERR-IVD-VALUE", "Merchant is already active")

        updated = await self.merchant_repository.update_fields(merchant_id, {"status": MerchantStatus.ACTIVE})
        return await self._record(
            audit,
            admin_id,
            ModerationActionType.ACTIVATED,
            ModerationReason.ADMIN_DECISION,
            ModerationTarget.MERCHANT,
            merchant_id,
            _merchant_state(merchant),
            _merchant_state(updated),
            reason_details=details,
        )

    async def suspend_company(
        self,
        admin_id: int | None,
        company_id: int,
        reason: ModerationReason,
        details: str | None = None,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        company = await self.company_repository.find_by_id(company_id)
        if company is None:
            raise ModerationError("ERR-NOT-FOUND", "Company not found")
        if company.status == CompanyStatus.SUSPENDED:
            raise ModerationError("ERR-IVD-VALUE", "Company is already suspended")

        await self.company_repository.set_status(company_id, CompanyStatus.SUSPENDED)
        deactivated = await self.employee_repository.deactivate_active_by_company(company_id)
        await self.cache.delete(CacheKeys.company_stats(company_id))
        return await self._record(
            audit,
            admin_id,
            ModerationActionType.SUSPENDED,
            reason,
            ModerationTarget.COMPANY,
            company_id,
            {"status": company.status.value},
            {"status": CompanyStatus.SUSPENDED.value, "deactivatedEmployees": deactivated},
            reason_details=details,
        )

    async def history(self, target_type: ModerationTarget, target_id: int) -> List[ModerationAction]:
        return await self.moderation_repository.history(target_type, target_id, limit=50)

    async def pending_appeals(self) -> List[ModerationAction]:
        return await self.moderation_repository.pending_appeals()

    async def _is_subject(self, user_id: int, action: ModerationAction) -> bool:
        if action.targetType == ModerationTarget.USER:
            return action.targetId == user_id
        if action.targetType == ModerationTarget.EMPLOYEE:
            employee = await self.employee_repository.find_by_id(action.targetId)
            return employee is not None and employee.userId == user_id
        if action.targetType == ModerationTarget.MERCHANT:
            merchant = await self.merchant_repository.find_by_id(action.targetId)
            return merchant is not None and merchant.userId == user_id
        return False

    async def submit_appeal(
        self,
        user_id: int,
        action_id: int,
        message: str | None,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        """
        Appeal an action taken against the caller.

        Raises:
            ModerationError: unknown or foreign action (404), not appealable (400),
                deadline passed (400), appeal already submitted (400)
        """
        action = await self.moderation_repository.find_by_id(action_id)
        if action is None or not await self._is_subject(user_id, action):
            raise ModerationError("ERR-NOT-FOUND", "Moderation action not found")
        if not action.appealable:
            raise ModerationError("ERR-IVD-VALUE", "This action cannot be appealed")
        deadline = ensure_utc(action.appealDeadline)
        if deadline is not None and deadline < now_utc():
            raise ModerationError("ERR-EXPIRED", "The appeal deadline has passed")
        if action.appealStatus != AppealStatus.NONE:
            raise ModerationError("ERR-ALREADY-USED", "An appeal was already submitted")
        if not (message or "").strip():
            raise ModerationError("ERR-IVD-PARAM", "Appeal message is required")

        updated = await self.moderation_repository.update_fields(
            action_id, {"appealStatus": AppealStatus.PENDING, "appealMessage": message.strip()}
        )
        await (audit or self.audit).info(
            AuditAction.MODERATION_ACTION,
            f"Appeal submitted for action {action_id}",
            resource="ModerationAction",
            resource_id=action_id,
        )
        return updated

    async def resolve_appeal(
        self,
        admin_id: int | None,
        action_id: int,
        approve: bool,
        audit: AuditLogger | None = None,
    ) -> ModerationAction:
        """
        Approve or reject a pending appeal.

        Approving reverses an employee suspension or ban and a merchant suspension.
        """
        action = await self.moderation_repository.find_by_id(action_id)
        if action is None:
            raise ModerationError("ERR-NOT-FOUND", "Moderation action not found")
        if action.appealStatus != AppealStatus.PENDING:
            raise ModerationError("ERR-IVD-VALUE", "No pending appeal for this action")

        updated = await self.moderation_repository.update_fields(
            action_id, {"appealStatus": AppealStatus.APPROVED if approve else AppealStatus.REJECTED}
        )
        if approve:
            await self._reverse(admin_id, action, audit)
        else:
            await (audit or self.audit).info(
                AuditAction.MODERATION_ACTION,
                f"Appeal rejected for action {action_id}",
                resource="ModerationAction",
                resource_id=action_id,
            )
        return updated

    async def _reverse(self, admin_id: int | None, action: ModerationAction, audit: AuditLogger | None) -> None:
        details = f"Appeal approved for action {action.actionId}"
        if action.targetType == ModerationTarget.EMPLOYEE and action.actionType in (
            ModerationActionType.SUSPENDED,
            ModerationActionType.BANNED,
        ):
            employee = await self._employee(action.targetId)
            if employee.status not in (EmployeeStatus.SUSPENDED, EmployeeStatus.BANNED):
                return
            updated = await self.employee_repository.update_fields(
                employee.employeeId,
                {
                    **_CLEARED_SUSPENSION,
                    "status": EmployeeStatus.ACTIVE,
                    "bannedAt": None,
                    "bannedBy": None,
                    "banReason": None,
                },
            )
            await self._record(
                audit,
                admin_id,
                ModerationActionType.ACTIVATED,
                ModerationReason.ADMIN_DECISION,
                ModerationTarget.EMPLOYEE,
                employee.employeeId,
                _employee_state(employee),
                _employee_state(updated),
                reason_details=details,
            )
        elif action.targetType == ModerationTarget.MERCHANT and action.actionType == ModerationActionType.SUSPENDED:
            merchant = await self._merchant(action.targetId)
            if merchant.status == MerchantStatus.SUSPENDED:
                await self.reactivate_merchant(admin_id, merchant.merchantId, details, audit=audit)

    async def process_expired_suspensions(self, now: datetime | None = None, audit: AuditLogger | None = None) -> int:
        """
        Lift every suspension whose end has passed.

        Returns:
            number of employees reactivated
        """
        now = now or now_utc()
        expired = await self.employee_repository.find_expired_suspensions(now)
        for employee in expired:
            await self.unsuspend_employee(
                None,
                employee.employeeId,
                "Suspension period ended",
                audit=audit,
                performed_by_role=ROLE_SYSTEM,
            )
        if expired:
            logger.info("lifted %d expired suspensions", len(expired))
        return len(expired)
