"""
审计仓储装饰器

在工作单元装配时包裹用户、历史密码与权限仓储：每个变更方法先执行底层调用，
再通过 AuditRecorder 写入前后值快照。读方法直接委托。

当前工作单元处于 uow.audit(meta) 作用域、且 meta.entity_type 为空或与本次变更实体一致时，
使用 meta 给出的操作名、说明与前后值；未给出的部分按变更本身推导。
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from domain.permission.entity import (
    PermissionOverride,
    Role,
    RolePermission,
    UserPermissionSnapshot,
    UserRole,
)
from domain.permission.repository import PermissionRepository
from domain.user.entity import PasswordHistoryEntry, User
from domain.user.repository import PasswordHistoryRepository, UserRepository

if TYPE_CHECKING:
    from domain.common.unit_of_work import AbstractUnitOfWork


class _AuditingRepository:
    """变更后记录审计的公共逻辑"""

    def __init__(self, inner, uow: "AbstractUnitOfWork") -> None:
        self._inner = inner
        self._uow = uow

    async def _audit(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        old_values: Optional[dict],
        new_values: Optional[dict],
    ) -> None:
        detail = None
        meta = self._uow.current_audit_meta
        if meta is not None and meta.entity_type in (None, entity_type):
            action = meta.action or action
            detail = meta.detail
            if meta.old_values is not None:
                old_values = meta.old_values
            if meta.new_values is not None:
                new_values = meta.new_values
        await self._uow.record_audit(
            action,
            entity_type,
            entity_id,
            old_values=old_values,
            new_values=new_values,
            detail=detail,
        )


class AuditedUserRepository(_AuditingRepository, UserRepository):
    ENTITY_TYPE = "User"

    async def create(self, user: User) -> User:
        created = await self._inner.create(user)
        await self._audit("create", self.ENTITY_TYPE, created.id, None, created.public_snapshot())
        return created

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return await self._inner.get_by_id(user_id)

    async def get_by_login_hmac(self, login_hmac: str) -> Optional[User]:
        return await self._inner.get_by_login_hmac(login_hmac)

    async def exists_by_login_hmac(self, login_hmac: str) -> bool:
        return await self._inner.exists_by_login_hmac(login_hmac)

    async def update_fields(self, user_id: str, **fields: Any) -> User:
        before = await self._inner.get_by_id(user_id)
        updated = await self._inner.update_fields(user_id, **fields)
        old_values = {name: getattr(before, name) for name in fields} if before else None
        new_values = {name: getattr(updated, name) for name in fields}
        await self._audit("update", self.ENTITY_TYPE, user_id, old_values, new_values)
        return updated

    async def increment_failed_attempts(self, user_id, at):
        attempts = await self._inner.increment_failed_attempts(user_id, at)
        await self._audit(
            "failed_attempt",
            self.ENTITY_TYPE,
            user_id,
            {"failed_login_attempts": attempts - 1},
            {"failed_login_attempts": attempts, "last_failed_login_at": at},
        )
        return attempts


class AuditedPasswordHistoryRepository(_AuditingRepository, PasswordHistoryRepository):
    ENTITY_TYPE = "PasswordHistory"

    async def add(self, entry: PasswordHistoryEntry) -> PasswordHistoryEntry:
        created = await self._inner.add(entry)
        await self._audit(
            "create",
            self.ENTITY_TYPE,
            created.id,
            None,
            {"user_id": created.user_id, "changed_by": created.changed_by, "changed_at": created.changed_at},
        )
        return created

    async def list_recent(self, user_id: str, limit: Optional[int] = None) -> List[PasswordHistoryEntry]:
        return await self._inner.list_recent(user_id, limit)

    async def delete_many(self, entry_ids: List[str]) -> int:
        deleted = await self._inner.delete_many(entry_ids)
        for entry_id in entry_ids:
            await self._audit("delete", self.ENTITY_TYPE, entry_id, {"id": entry_id}, None)
        return deleted


class AuditedPermissionRepository(_AuditingRepository, PermissionRepository):

    async def load_user_snapshot(self, user_id: str) -> Optional[UserPermissionSnapshot]:
        return await self._inner.load_user_snapshot(user_id)

    async def get_overrides(self, user_id: str) -> List[PermissionOverride]:
        return await self._inner.get_overrides(user_id)

    async def get_organizational_unit(self, user_id: str) -> Tuple[bool, Optional[str]]:
        return await self._inner.get_organizational_unit(user_id)

    async def get_role(self, role_id: str) -> Optional[Role]:
        return await self._inner.get_role(role_id)

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        return await self._inner.get_role_by_name(name)

    async def create_role(self, role: Role) -> Role:
        created = await self._inner.create_role(role)
        await self._audit(
            "create", "Role", created.id, None,
            {"name": created.name, "description": created.description},
        )
        return created

    async def add_role_permission(self, role_id: str, permission: str) -> RolePermission:
        created = await self._inner.add_role_permission(role_id, permission)
        await self._audit(
            "create", "RolePermission", created.id, None,
            {"role_id": role_id, "permission": permission},
        )
        return created

    async def assign_role(self, user_role: UserRole) -> UserRole:
        created = await self._inner.assign_role(user_role)
        await self._audit(
            "create", "UserRole", created.id, None,
            {
                "user_id": created.user_id,
                "role_id": created.role_id,
                "assigned_by": created.assigned_by,
            },
        )
        return created

    async def get_override(self, user_id: str, permission: str) -> Optional[PermissionOverride]:
        return await self._inner.get_override(user_id, permission)

    async def upsert_override(self, user_id: str, override: PermissionOverride) -> PermissionOverride:
        before = await self._inner.get_override(user_id, override.permission)
        saved = await self._inner.upsert_override(user_id, override)
        await self._audit(
            "update" if before else "create",
            "UserPermission",
            user_id,
            {"permission": before.permission, "allowed": before.allowed} if before else None,
            {"permission": saved.permission, "allowed": saved.allowed},
        )
        return saved

    async def delete_override(self, user_id: str, permission: str) -> bool:
        before = await self._inner.get_override(user_id, permission)
        deleted = await self._inner.delete_override(user_id, permission)
        if deleted:
            await self._audit(
                "delete",
                "UserPermission",
                user_id,
                {"permission": before.permission, "allowed": before.allowed} if before else None,
                None,
            )
        return deleted
