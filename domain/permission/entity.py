"""
权限领域实体

权限字符串是不透明标识，没有层级含义，匹配只做精确的字符串相等比较。
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, List, Optional


@dataclass
class Role:
    id: Optional[str]
    name: str
    description: str = ""


@dataclass
class RolePermission:
    id: Optional[str]
    role_id: str
    permission: str


@dataclass
class UserRole:
    id: Optional[str]
    user_id: str
    role_id: str
    assigned_by: str
    assigned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PermissionOverride:
    """用户级别的直接允许/拒绝，(user_id, permission) 唯一"""
    permission: str
    allowed: bool


@dataclass(frozen=True)
class UserPermissionSnapshot:
    """一次性从存储加载的用户权限原始数据"""
    role_permissions: List[str]
    overrides: List[PermissionOverride]
    organizational_unit_id: Optional[str]


@dataclass(frozen=True)
class ResolvedPermissions:
    """权限解析结果：角色权限（去重）、覆盖项、所属组织单元"""
    permissions: FrozenSet[str]
    overrides: List[PermissionOverride]
    organizational_unit_id: Optional[str]

    def find_override(self, permission: str) -> Optional[PermissionOverride]:
        for override in self.overrides:
            if override.permission == permission:
                return override
        return None
