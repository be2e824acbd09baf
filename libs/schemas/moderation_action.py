from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class ModerationActionType(str, Enum):
    WARNING_ISSUED = "WARNING_ISSUED"
    SUSPENDED = "SUSPENDED"
    UNSUSPENDED = "UNSUSPENDED"
    BANNED = "BANNED"
    ACTIVATED = "ACTIVATED"
    DEACTIVATED = "DEACTIVATED"


class ModerationReason(str, Enum):
    COUPON_ABUSE = "COUPON_ABUSE"
    FRAUD = "FRAUD"
    TERMS_VIOLATION = "TERMS_VIOLATION"
    INAPPROPRIATE_BEHAVIOR = "INAPPROPRIATE_BEHAVIOR"
    PAYMENT_ISSUE = "PAYMENT_ISSUE"
    ADMIN_DECISION = "ADMIN_DECISION"
    OTHER = "OTHER"


class ModerationTarget(str, Enum):
    USER = "USER"
    EMPLOYEE = "EMPLOYEE"
    MERCHANT = "MERCHANT"
    COMPANY = "COMPANY"
    DISCOUNT = "DISCOUNT"
    COUPON = "COUPON"


class DurationUnit(str, Enum):
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    PERMANENT = "permanent"


class AppealStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ModerationDuration(BaseModel):
    value: int = Field(0, ge=0)
    unit: DurationUnit = Field(DurationUnit.PERMANENT)


class ModerationAction(BaseModel):
    """
    Audit trail entry of a moderation decision.
    """

    actionId: int = Field(..., description="action primary key")
    performedBy: int | None = Field(None, description="acting user id (None for SYSTEM)")
    performedByRole: str = Field(..., description="PLATFORM_ADMIN, COMPANY_ADMIN or SYSTEM")
    actionType: ModerationActionType = Field(...)
    reason: ModerationReason = Field(...)
    reasonDetails: str | None = Field(None)
    targetType: ModerationTarget = Field(...)
    targetId: int = Field(...)
    duration: ModerationDuration | None = Field(None)
    expiresAt: datetime | None = Field(None)
    appealable: bool = Field(False)
    appealDeadline: datetime | None = Field(None)
    appealStatus: AppealStatus = Field(AppealStatus.NONE)
    appealMessage: str | None = Field(None)
    previousState: Dict[str, Any] = Field(default_factory=dict)
    newState: Dict[str, Any] = Field(default_factory=dict)
    notificationSent: bool = Field(False)
    createdAt: datetime | None = Field(None)

    class Config:
        from_attributes = True
