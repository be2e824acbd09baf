from .RegisterResponse import RegisterResponse
from .LoginResponse import LoginResponse
from .MessageResponse import MessageResponse
from .VerifyInviteResponse import SuggestCompanyResponse, VerifyInviteResponse
from .UserProfileResponse import OnboardingResponse, UserProfileResponse
from .ReferralResponse import ReferralOverviewResponse, ReferralStats, ReferralValidateResponse

__all__ = [
    "RegisterResponse",
    "LoginResponse",
    "MessageResponse",
    "VerifyInviteResponse",
    "SuggestCompanyResponse",
    "UserProfileResponse",
    "OnboardingResponse",
    "ReferralOverviewResponse",
    "ReferralStats",
    "ReferralValidateResponse",
]
