from .CompanyResponse import AdminRoleInfo, CompanyMeResponse, CompanyStats
from .EmployeeListItem import EmployeeListItem
from .InviteResponse import InviteCreateResponse
from .SavingsResponse import MerchantSavings, SavingsResponse
from .MessageResponse import MessageResponse

__all__ = [
    "AdminRoleInfo",
    "CompanyMeResponse",
    "CompanyStats",
    "EmployeeListItem",
    "InviteCreateResponse",
    "MerchantSavings",
    "SavingsResponse",
    "MessageResponse",
]
