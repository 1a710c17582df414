"""
API依赖项 - 服务装配、请求上下文、认证和授权
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from api.middleware.request_id import get_client_ip_from_request
from application.services.auth_service import AuthenticationService
from application.services.permission_admin_service import PermissionAdminService
from application.services.permission_service import PermissionResolver
from application.services.token_service import TokenLifecycleManager
from core.config import settings
from domain.common.context import RequestContext
from domain.common.exceptions import PermissionDeniedException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.cache.permissions_cache import PermissionsCache
from infrastructure.security.encrypted_index import EncryptedIndex


# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


@dataclass
class ServiceContainer:
    """一次装配完成的应用服务集合"""
    auth_service: AuthenticationService
    token_manager: TokenLifecycleManager
    permission_resolver: PermissionResolver
    permission_admin_service: PermissionAdminService


def build_container(
    uow_factory: Callable[..., AbstractUnitOfWork],
    encrypted_index: EncryptedIndex,
    *,
    cache: Optional[PermissionsCache] = None,
) -> ServiceContainer:
    """以显式构造参数装配全部协作者"""
    token_manager = TokenLifecycleManager(uow_factory)
    return ServiceContainer(
        auth_service=AuthenticationService(uow_factory, encrypted_index, token_manager),
        token_manager=token_manager,
        permission_resolver=PermissionResolver(
            uow_factory,
            cache or PermissionsCache(ttl_seconds=settings.permissions.cache_ttl_seconds),
        ),
        permission_admin_service=PermissionAdminService(uow_factory),
    )


@lru_cache
def get_container() -> ServiceContainer:
    # 权限缓存是进程级共享结构，容器只构建一次
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

    return build_container(SQLAlchemyUnitOfWork, EncryptedIndex.from_settings())


def get_auth_service(container: ServiceContainer = Depends(get_container)) -> AuthenticationService:
    return container.auth_service


def get_permission_resolver(container: ServiceContainer = Depends(get_container)) -> PermissionResolver:
    return container.permission_resolver


def get_permission_admin_service(
    container: ServiceContainer = Depends(get_container),
) -> PermissionAdminService:
    return container.permission_admin_service


def get_request_context(request: Request) -> RequestContext:
    """匿名请求上下文：来源IP与请求ID"""
    state = request.state
    return RequestContext(
        actor_id=None,
        ip_address=getattr(state, "client_ip", None) or get_client_ip_from_request(request),
        request_id=getattr(state, "request_id", None),
    )


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """从Bearer token中提取token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication credentials were not provided",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    token: str = Depends(get_token),
    container: ServiceContainer = Depends(get_container),
) -> str:
    """校验访问令牌，返回当前用户ID"""
    return container.token_manager.verify_access_token(token)


async def get_authenticated_context(
    context: RequestContext = Depends(get_request_context),
    user_id: str = Depends(get_current_user_id),
) -> RequestContext:
    return context.with_actor(user_id)


def require_permission(permission: str):
    """授权依赖：认证 → can_access → 执行；无权限时抛出 PermissionDenied"""

    async def _guard(
        context: RequestContext = Depends(get_authenticated_context),
        resolver: PermissionResolver = Depends(get_permission_resolver),
    ) -> RequestContext:
        if not await resolver.can_access(context.actor_id, permission):
            raise PermissionDeniedException(permission)
        return context

    return _guard
