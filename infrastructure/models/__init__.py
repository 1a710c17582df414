"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import GivenNameModel, PasswordHistoryModel, SurnameModel, UserModel
from .refresh_token import BlacklistedTokenModel, RefreshTokenModel
from .permission import RoleModel, RolePermissionModel, UserPermissionModel, UserRoleModel
from .operation_log import OperationLogModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "GivenNameModel",
    "SurnameModel",
    "PasswordHistoryModel",
    "RefreshTokenModel",
    "BlacklistedTokenModel",
    "RoleModel",
    "RolePermissionModel",
    "UserRoleModel",
    "UserPermissionModel",
    "OperationLogModel",
]
