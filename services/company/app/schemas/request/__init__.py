from .SettingsUpdateSchema import SettingsUpdateSchema
from .EmployeeUpdateSchema import EmployeeUpdateSchema
from .AdminCreateSchema import AdminCreateSchema
from .AdminUpdateSchema import AdminUpdateSchema
from .InviteCreateSchema import InviteCreateSchema

__all__ = [
    "SettingsUpdateSchema",
    "EmployeeUpdateSchema",
    "AdminCreateSchema",
    "AdminUpdateSchema",
    "InviteCreateSchema",
]
