"""
权限解析服务 - 角色权限（可缓存）+ 用户覆盖项与组织单元（实时读取）
"""
from typing import Callable, Optional

from application.dto import PermissionOverrideDTO, ResolvedPermissionsDTO
from core.logging_config import get_logger
from domain.common.exceptions import UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.permission.entity import ResolvedPermissions
from domain.permission.service import evaluate_access
from infrastructure.cache.permissions_cache import PermissionsCache


logger = get_logger(__name__)


class PermissionResolver:
    """
    权限解析器

    缓存只保存角色派生的权限集合；覆盖项与组织单元属于安全敏感且易变的数据，
    每次都从存储实时读取，管理员撤销覆盖项立即生效。
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        cache: Optional[PermissionsCache] = None,
    ):
        self._uow_factory = uow_factory
        self._cache = cache or PermissionsCache()

    async def _load(self, user_id: str) -> Optional[ResolvedPermissions]:
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.permission_repository
            cached = self._cache.get(user_id)
            if cached is not None:
                exists, org_unit_id = await repo.get_organizational_unit(user_id)
                if not exists:
                    self._cache.invalidate(user_id)
                    return None
                return ResolvedPermissions(
                    permissions=cached,
                    overrides=await repo.get_overrides(user_id),
                    organizational_unit_id=org_unit_id,
                )

            snapshot = await repo.load_user_snapshot(user_id)
            if snapshot is None:
                return None
            permissions = frozenset(snapshot.role_permissions)
            self._cache.set(user_id, permissions)
            logger.debug("permissions_cache_filled", user_id=user_id, count=len(permissions))
            return ResolvedPermissions(
                permissions=permissions,
                overrides=snapshot.overrides,
                organizational_unit_id=snapshot.organizational_unit_id,
            )

    async def resolve(self, user_id: str) -> ResolvedPermissions:
        """解析用户的有效权限；用户不存在抛出 UserNotFound"""
        resolved = await self._load(user_id)
        if resolved is None:
            raise UserNotFoundException(user_id)
        return resolved

    async def can_access(
        self,
        user_id: str,
        permission: str,
        target_org_unit_id: Optional[str] = None,
    ) -> bool:
        """访问判定；未知用户一律拒绝"""
        resolved = await self._load(user_id)
        allowed = evaluate_access(resolved, permission, target_org_unit_id)
        logger.debug(
            "access_checked",
            user_id=user_id,
            permission=permission,
            target_org_unit_id=target_org_unit_id,
            allowed=allowed,
        )
        return allowed

    @staticmethod
    def to_dto(user_id: str, resolved: ResolvedPermissions) -> ResolvedPermissionsDTO:
        return ResolvedPermissionsDTO(
            user_id=user_id,
            permissions=sorted(resolved.permissions),
            overrides=[
                PermissionOverrideDTO(permission=o.permission, allowed=o.allowed)
                for o in resolved.overrides
            ],
            organizational_unit_id=resolved.organizational_unit_id,
        )
