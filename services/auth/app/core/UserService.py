import logging
from typing import Any, Dict

from libs.common import AuditLogger, ServiceError, audit_logger, now_utc
from libs.schemas import ONBOARDING_STEPS, AuditAction, OnboardingProgress, User

from services.auth.app.db.repositories.users import UserRepositoryPort

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("firstName", "lastName", "personalEmail", "phoneNumber")


class UserError(ServiceError):
    pass


class UserService:
    def __init__(self, user_repository: UserRepositoryPort, audit: AuditLogger | None = None):
        self.user_repository = user_repository
        self.audit = audit or audit_logger

    async def get_user(self, user_id: int) -> User:
        user = await self.user_repository.find_by_id(user_id)
        if user is None:
            raise UserError("ERR-NOT-FOUND", "User not found")
        return user

    async def update_profile(
        self,
        user_id: int,
        changes: Dict[str, Any],
        audit: AuditLogger | None = None,
    ) -> User:
        user = await self.get_user(user_id)
        fields = {name: value for name, value in changes.items() if name in PROFILE_FIELDS}
        for name in ("firstName", "lastName"):
            if name in fields and not (fields[name] or "").strip():
                raise UserError("ERR-IVD-VALUE", f"{name} cannot be empty")
            if name in fields:
                fields[name] = fields[name].strip()
        if not fields:
            return user

        updated = await self.user_repository.update_fields(user_id, fields)
        await (audit or self.audit).log_change(
            AuditAction.PROFILE_UPDATED,
            "User",
            user_id,
            "Profile updated",
            before={name: getattr(user, name) for name in fields},
            after={name: getattr(updated, name) for name in fields},
        )
        return updated

    async def onboarding(self, user_id: int) -> Dict[str, Any]:
        progress = (await self.get_user(user_id)).onboardingProgress
        completed = progress.completed_steps()
        total = len(ONBOARDING_STEPS)
        return {
            "progress": progress,
            "completedSteps": completed,
            "totalSteps": total,
            "percentComplete": round(completed / total * 100),
            "isComplete": progress.is_complete(),
            "completedAt": progress.completedAt,
        }

    async def mark_step(self, user_id: int, step: str) -> OnboardingProgress | None:
        """
        Flag one onboarding step as done.

        completedAt is stamped the first time all steps are done. Unknown
        users are ignored; onboarding never fails the calling operation.
        """
        if step not in ONBOARDING_STEPS:
            raise ValueError(f"unknown onboarding step: {step}")

        user = await self.user_repository.find_by_id(user_id)
        if user is None:
            logger.warning("onboarding step %s for unknown user %s", step, user_id)
            return None

        progress = user.onboardingProgress
        if getattr(progress, step):
            return progress

        progress = progress.model_copy(update={step: True})
        if progress.is_complete() and progress.completedAt is None:
            progress.completedAt = now_utc()
        await self.user_repository.update_fields(user_id, {"onboardingProgress": progress})
        return progress
