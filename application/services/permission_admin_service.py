"""
权限管理服务 - 角色、角色权限、用户角色与用户覆盖项的维护

所有变更都在审计作用域内执行，前后值快照与变更处于同一事务。
"""
from typing import Callable, Optional

from application.dto import MessageDTO, PermissionOverrideDTO, RoleDTO
from core.logging_config import get_logger
from domain.audit.entity import AuditMeta
from domain.common.context import RequestContext
from domain.common.exceptions import (
    DomainValidationException,
    RoleNotFoundException,
    UserNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.permission.entity import PermissionOverride, Role, UserRole
from domain.permission.service import validate_permission_name


logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class PermissionAdminService:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    @staticmethod
    async def _require_user(uow: AbstractUnitOfWork, user_id: str) -> None:
        if await uow.user_repository.get_by_id(user_id) is None:
            raise UserNotFoundException(user_id)

    @staticmethod
    async def _require_role(uow: AbstractUnitOfWork, role_id: str) -> Role:
        role = await uow.permission_repository.get_role(role_id)
        if role is None:
            raise RoleNotFoundException(role_id)
        return role

    async def create_role(
        self,
        name: str,
        description: str = "",
        context: Optional[RequestContext] = None,
    ) -> RoleDTO:
        name = (name or "").strip()
        if not name:
            raise DomainValidationException("Role name is required", field="name")

        async with self._uow_factory(context=context) as uow:
            async with uow.audit(AuditMeta(entity_type="Role", action="create_role", detail=f"Role {name} created")):
                role = await uow.permission_repository.create_role(Role(id=None, name=name, description=description))

        logger.info("role_created", role_id=role.id, name=role.name)
        return RoleDTO(id=role.id, name=role.name, description=role.description)

    async def assign_permission_to_role(
        self,
        role_id: str,
        permission: str,
        context: Optional[RequestContext] = None,
    ) -> MessageDTO:
        validate_permission_name(permission)
        async with self._uow_factory(context=context) as uow:
            role = await self._require_role(uow, role_id)
            async with uow.audit(AuditMeta(
                entity_type="RolePermission",
                action="assign_permission",
                detail=f"Permission {permission} granted to role {role.name}",
            )):
                await uow.permission_repository.add_role_permission(role_id, permission)

        logger.info("role_permission_added", role_id=role_id, permission=permission)
        return MessageDTO(message="Permission assigned to role")

    async def assign_role_to_user(
        self,
        user_id: str,
        role_id: str,
        context: Optional[RequestContext] = None,
    ) -> MessageDTO:
        async with self._uow_factory(context=context) as uow:
            await self._require_user(uow, user_id)
            role = await self._require_role(uow, role_id)
            assigned_by = uow.context.actor_id or SYSTEM_ACTOR
            async with uow.audit(AuditMeta(
                entity_type="UserRole",
                action="assign_role",
                detail=f"Role {role.name} assigned",
            )):
                await uow.permission_repository.assign_role(
                    UserRole(id=None, user_id=user_id, role_id=role_id, assigned_by=assigned_by)
                )

        logger.info("role_assigned", user_id=user_id, role_id=role_id, assigned_by=assigned_by)
        return MessageDTO(message="Role assigned to user")

    async def override_permission_for_user(
        self,
        user_id: str,
        permission: str,
        allowed: bool,
        context: Optional[RequestContext] = None,
    ) -> PermissionOverrideDTO:
        """设置（或替换）用户对某权限的直接允许/拒绝"""
        validate_permission_name(permission)
        async with self._uow_factory(context=context) as uow:
            await self._require_user(uow, user_id)
            async with uow.audit(AuditMeta(
                entity_type="UserPermission",
                action="override_permission",
                detail=f"Permission {permission} {'allowed' if allowed else 'denied'} for user",
            )):
                saved = await uow.permission_repository.upsert_override(
                    user_id, PermissionOverride(permission=permission, allowed=allowed)
                )

        logger.info("permission_overridden", user_id=user_id, permission=permission, allowed=allowed)
        return PermissionOverrideDTO(permission=saved.permission, allowed=saved.allowed)

    async def remove_override(
        self,
        user_id: str,
        permission: str,
        context: Optional[RequestContext] = None,
    ) -> bool:
        async with self._uow_factory(context=context) as uow:
            async with uow.audit(AuditMeta(
                entity_type="UserPermission",
                action="remove_override",
                detail=f"Override for {permission} removed",
            )):
                removed = await uow.permission_repository.delete_override(user_id, permission)

        logger.info("permission_override_removed", user_id=user_id, permission=permission, removed=removed)
        return removed
