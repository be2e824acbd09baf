from .ModerationRequestSchema import ModerationRequestSchema, SuspendRequestSchema
from .MerchantRejectSchema import MerchantRejectSchema
from .AppealResolveSchema import AppealResolveSchema

__all__ = [
    "ModerationRequestSchema",
    "SuspendRequestSchema",
    "MerchantRejectSchema",
    "AppealResolveSchema",
]
