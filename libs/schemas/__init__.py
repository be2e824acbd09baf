from libs.schemas.audit_log import AuditAction, AuditLog, AuditSeverity
from libs.schemas.claimed_coupon import (
    ClaimedCoupon,
    CouponStatus,
    CouponUsage,
    EmployeePass,
    PassStatus,
)
from libs.schemas.company import (
    AdminPermissions,
    AdminRole,
    AdminStatus,
    Company,
    CompanyAdmin,
    CompanySettings,
    CompanyStatus,
    default_permissions,
)
from libs.schemas.discount import PRIORITY_BY_TYPE, Discount, DiscountType
from libs.schemas.employee import Employee, EmployeeStatus
from libs.schemas.invite_code import InviteCode, InviteStatus
from libs.schemas.merchant import (
    BusinessMetrics,
    Merchant,
    MerchantLocation,
    MerchantStatus,
    PriceTier,
    SeatingCapacity,
    SubscriptionStatus,
)
from libs.schemas.moderation_action import (
    AppealStatus,
    DurationUnit,
    ModerationAction,
    ModerationActionType,
    ModerationDuration,
    ModerationReason,
    ModerationTarget,
)
from libs.schemas.referral import (
    MerchantReferral,
    MerchantReferralStatus,
    Referral,
    ReferralStatus,
)
from libs.schemas.user import ONBOARDING_STEPS, OnboardingProgress, User, UserRole

__all__ = [
    "AdminPermissions",
    "AdminRole",
    "AdminStatus",
    "AppealStatus",
    "AuditAction",
    "AuditLog",
    "AuditSeverity",
    "BusinessMetrics",
    "ClaimedCoupon",
    "Company",
    "CompanyAdmin",
    "CompanySettings",
    "CompanyStatus",
    "CouponStatus",
    "CouponUsage",
    "default_permissions",
    "Discount",
    "DiscountType",
    "DurationUnit",
    "Employee",
    "EmployeePass",
    "EmployeeStatus",
    "InviteCode",
    "InviteStatus",
    "Merchant",
    "MerchantLocation",
    "MerchantReferral",
    "MerchantReferralStatus",
    "MerchantStatus",
    "ModerationAction",
    "ModerationActionType",
    "ModerationDuration",
    "ModerationReason",
    "ModerationTarget",
    "ONBOARDING_STEPS",
    "OnboardingProgress",
    "PassStatus",
    "PRIORITY_BY_TYPE",
    "PriceTier",
    "Referral",
    "ReferralStatus",
    "SeatingCapacity",
    "SubscriptionStatus",
    "User",
    "UserRole",
]
