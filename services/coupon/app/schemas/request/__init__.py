from .CouponClaimSchema import CouponClaimSchema
from .CouponRedeemSchema import CouponRedeemSchema
from .PassVerifySchema import PassVerifySchema
from .AppealSchema import AppealSchema

__all__ = [
    "CouponClaimSchema",
    "CouponRedeemSchema",
    "PassVerifySchema",
    "AppealSchema",
]
