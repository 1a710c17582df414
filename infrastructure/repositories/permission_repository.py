"""
权限仓储实现 - 使用SQLAlchemy实现数据访问
"""
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import ConflictException
from domain.permission.entity import (
    PermissionOverride,
    Role,
    RolePermission,
    UserPermissionSnapshot,
    UserRole,
)
from domain.permission.repository import PermissionRepository
from infrastructure.models.base import as_utc
from infrastructure.models.permission import (
    RoleModel,
    RolePermissionModel,
    UserPermissionModel,
    UserRoleModel,
)
from infrastructure.models.user import UserModel


class SQLAlchemyPermissionRepository(PermissionRepository):
    """权限仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _role_entity(model: RoleModel) -> Role:
        return Role(id=model.id, name=model.name, description=model.description)

    async def load_user_snapshot(self, user_id: str) -> Optional[UserPermissionSnapshot]:
        exists, org_unit_id = await self.get_organizational_unit(user_id)
        if not exists:
            return None

        result = await self.session.execute(
            select(RolePermissionModel.permission)
            .join(UserRoleModel, UserRoleModel.role_id == RolePermissionModel.role_id)
            .where(UserRoleModel.user_id == user_id)
        )
        role_permissions = [row[0] for row in result.all()]
        return UserPermissionSnapshot(
            role_permissions=role_permissions,
            overrides=await self.get_overrides(user_id),
            organizational_unit_id=org_unit_id,
        )

    async def get_overrides(self, user_id: str) -> List[PermissionOverride]:
        result = await self.session.execute(
            select(UserPermissionModel).where(UserPermissionModel.user_id == user_id)
        )
        return [
            PermissionOverride(permission=m.permission, allowed=m.allowed)
            for m in result.scalars().all()
        ]

    async def get_organizational_unit(self, user_id: str) -> Tuple[bool, Optional[str]]:
        result = await self.session.execute(
            select(UserModel.organizational_unit_id).where(UserModel.id == user_id)
        )
        row = result.first()
        if row is None:
            return False, None
        return True, row[0]

    async def get_role(self, role_id: str) -> Optional[Role]:
        model = await self.session.get(RoleModel, role_id)
        return self._role_entity(model) if model else None

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        result = await self.session.execute(select(RoleModel).where(RoleModel.name == name))
        model = result.scalar_one_or_none()
        return self._role_entity(model) if model else None

    async def create_role(self, role: Role) -> Role:
        if await self.get_role_by_name(role.name):
            raise ConflictException("Role with this name already exists", field="name")
        model = RoleModel(id=role.id or str(uuid.uuid4()), name=role.name, description=role.description)
        self.session.add(model)
        await self.session.flush()
        return self._role_entity(model)

    async def add_role_permission(self, role_id: str, permission: str) -> RolePermission:
        result = await self.session.execute(
            select(RolePermissionModel.id).where(
                RolePermissionModel.role_id == role_id,
                RolePermissionModel.permission == permission,
            )
        )
        if result.first() is not None:
            raise ConflictException("Role already has this permission", field="permission")
        model = RolePermissionModel(id=str(uuid.uuid4()), role_id=role_id, permission=permission)
        self.session.add(model)
        await self.session.flush()
        return RolePermission(id=model.id, role_id=model.role_id, permission=model.permission)

    async def assign_role(self, user_role: UserRole) -> UserRole:
        result = await self.session.execute(
            select(UserRoleModel.id).where(
                UserRoleModel.user_id == user_role.user_id,
                UserRoleModel.role_id == user_role.role_id,
            )
        )
        if result.first() is not None:
            raise ConflictException("User already has this role", field="role_id")
        model = UserRoleModel(
            id=user_role.id or str(uuid.uuid4()),
            user_id=user_role.user_id,
            role_id=user_role.role_id,
            assigned_by=user_role.assigned_by,
            assigned_at=user_role.assigned_at,
        )
        self.session.add(model)
        await self.session.flush()
        return UserRole(
            id=model.id,
            user_id=model.user_id,
            role_id=model.role_id,
            assigned_by=model.assigned_by,
            assigned_at=as_utc(model.assigned_at),
        )

    async def _get_override_model(self, user_id: str, permission: str) -> Optional[UserPermissionModel]:
        result = await self.session.execute(
            select(UserPermissionModel).where(
                UserPermissionModel.user_id == user_id,
                UserPermissionModel.permission == permission,
            )
        )
        return result.scalar_one_or_none()

    async def get_override(self, user_id: str, permission: str) -> Optional[PermissionOverride]:
        model = await self._get_override_model(user_id, permission)
        if model is None:
            return None
        return PermissionOverride(permission=model.permission, allowed=model.allowed)

    async def upsert_override(self, user_id: str, override: PermissionOverride) -> PermissionOverride:
        model = await self._get_override_model(user_id, override.permission)
        if model is None:
            model = UserPermissionModel(
                id=str(uuid.uuid4()),
                user_id=user_id,
                permission=override.permission,
                allowed=override.allowed,
            )
            self.session.add(model)
        else:
            model.allowed = override.allowed
        await self.session.flush()
        return PermissionOverride(permission=model.permission, allowed=model.allowed)

    async def delete_override(self, user_id: str, permission: str) -> bool:
        result = await self.session.execute(
            delete(UserPermissionModel).where(
                UserPermissionModel.user_id == user_id,
                UserPermissionModel.permission == permission,
            )
        )
        return result.rowcount > 0
