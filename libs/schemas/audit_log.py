from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    PASSWORD_RESET = "PASSWORD_RESET"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    COUPON_CLAIMED = "COUPON_CLAIMED"
    COUPON_REDEEMED = "COUPON_REDEEMED"
    DISCOUNT_CREATED = "DISCOUNT_CREATED"
    DISCOUNT_UPDATED = "DISCOUNT_UPDATED"
    DISCOUNT_DELETED = "DISCOUNT_DELETED"
    MERCHANT_UPDATED = "MERCHANT_UPDATED"
    EMPLOYEE_UPDATED = "EMPLOYEE_UPDATED"
    INVITE_CREATED = "INVITE_CREATED"
    INVITE_REVOKED = "INVITE_REVOKED"
    MODERATION_ACTION = "MODERATION_ACTION"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    RATE_LIMITED = "RATE_LIMITED"
    API_ERROR = "API_ERROR"


class AuditSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AuditLog(BaseModel):
    """
    Security/audit event.
    """

    logId: int | None = Field(None, description="primary key (set once stored)")
    action: AuditAction = Field(...)
    severity: AuditSeverity = Field(AuditSeverity.INFO)
    resource: str | None = Field(None, description="resource type, e.g. Merchant")
    resourceId: str | None = Field(None)
    description: str = Field(...)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    changes: Dict[str, Any] | None = Field(None, description="before/after diff")
    userId: int | None = Field(None)
    userEmail: str | None = Field(None)
    userRole: str | None = Field(None)
    ipAddress: str | None = Field(None)
    userAgent: str | None = Field(None)
    requestId: str | None = Field(None)
    success: bool = Field(True)
    errorMessage: str | None = Field(None)
    createdAt: datetime = Field(...)

    class Config:
        from_attributes = True
