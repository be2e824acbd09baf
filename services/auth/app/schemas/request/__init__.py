from .RegisterSchema import RegisterSchema
from .LoginSchema import LoginSchema
from .EmailSchema import EmailSchema
from .ResetPasswordSchema import ResetPasswordSchema
from .ProfileUpdateSchema import ProfileUpdateSchema
from .ReferralInviteSchema import ReferralInviteSchema

__all__ = [
    "RegisterSchema",
    "LoginSchema",
    "EmailSchema",
    "ResetPasswordSchema",
    "ProfileUpdateSchema",
    "ReferralInviteSchema",
]
