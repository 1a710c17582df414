"""
权限仓储接口 - 角色、角色权限、用户角色与用户覆盖项
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .entity import (
    PermissionOverride,
    Role,
    RolePermission,
    UserPermissionSnapshot,
    UserRole,
)


class PermissionRepository(ABC):
    """权限仓储抽象接口"""

    @abstractmethod
    async def load_user_snapshot(self, user_id: str) -> Optional[UserPermissionSnapshot]:
        """一次查询加载角色权限、覆盖项与组织单元；用户不存在返回 None"""
        pass

    @abstractmethod
    async def get_overrides(self, user_id: str) -> List[PermissionOverride]:
        pass

    @abstractmethod
    async def get_organizational_unit(self, user_id: str) -> Tuple[bool, Optional[str]]:
        """
        获取用户所属组织单元

        Returns:
            (用户是否存在, 组织单元ID)
        """
        pass

    @abstractmethod
    async def get_role(self, role_id: str) -> Optional[Role]:
        pass

    @abstractmethod
    async def get_role_by_name(self, name: str) -> Optional[Role]:
        pass

    @abstractmethod
    async def create_role(self, role: Role) -> Role:
        pass

    @abstractmethod
    async def add_role_permission(self, role_id: str, permission: str) -> RolePermission:
        """角色已有该权限时抛出 Conflict"""
        pass

    @abstractmethod
    async def assign_role(self, user_role: UserRole) -> UserRole:
        """用户已有该角色时抛出 Conflict"""
        pass

    @abstractmethod
    async def get_override(self, user_id: str, permission: str) -> Optional[PermissionOverride]:
        pass

    @abstractmethod
    async def upsert_override(self, user_id: str, override: PermissionOverride) -> PermissionOverride:
        pass

    @abstractmethod
    async def delete_override(self, user_id: str, permission: str) -> bool:
        pass
