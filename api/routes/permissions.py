"""
权限API路由 - 访问判定与权限管理
"""
from fastapi import APIRouter, Depends

from application.dto import (
    AccessCheckDTO,
    AccessResultDTO,
    AssignRoleDTO,
    MessageDTO,
    PermissionOverrideDTO,
    ResolvedPermissionsDTO,
    RoleCreateDTO,
    RoleDTO,
    RolePermissionDTO,
)
from application.services.permission_admin_service import PermissionAdminService
from application.services.permission_service import PermissionResolver
from api.dependencies import (
    get_authenticated_context,
    get_permission_admin_service,
    get_permission_resolver,
    require_permission,
)
from core.response import Response as ApiResponse, success_response
from domain.common.context import RequestContext


router = APIRouter(
    prefix="/permissions",
    tags=["权限"]
)


@router.get("/me", summary="当前用户的有效权限", response_model=ApiResponse[ResolvedPermissionsDTO])
async def my_permissions(
    context: RequestContext = Depends(get_authenticated_context),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    resolved = await resolver.resolve(context.actor_id)
    return success_response(data=PermissionResolver.to_dto(context.actor_id, resolved))


@router.post("/me/check", summary="访问判定", response_model=ApiResponse[AccessResultDTO])
async def check_access(
    payload: AccessCheckDTO,
    context: RequestContext = Depends(get_authenticated_context),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    allowed = await resolver.can_access(context.actor_id, payload.permission, payload.target_org_unit_id)
    return success_response(data=AccessResultDTO(allowed=allowed))


@router.get(
    "/users/{user_id}",
    summary="查看用户的有效权限",
    response_model=ApiResponse[ResolvedPermissionsDTO],
)
async def user_permissions(
    user_id: str,
    context: RequestContext = Depends(require_permission("permissions_read")),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    resolved = await resolver.resolve(user_id)
    return success_response(data=PermissionResolver.to_dto(user_id, resolved))


@router.post("/roles", summary="创建角色", response_model=ApiResponse[RoleDTO])
async def create_role(
    payload: RoleCreateDTO,
    context: RequestContext = Depends(require_permission("roles_create")),
    service: PermissionAdminService = Depends(get_permission_admin_service),
):
    role = await service.create_role(payload.name, payload.description, context=context)
    return success_response(data=role, message="Role created")


@router.post("/roles/{role_id}/permissions", summary="为角色分配权限", response_model=ApiResponse[MessageDTO])
async def assign_permission_to_role(
    role_id: str,
    payload: RolePermissionDTO,
    context: RequestContext = Depends(require_permission("permissions_assign")),
    service: PermissionAdminService = Depends(get_permission_admin_service),
):
    result = await service.assign_permission_to_role(role_id, payload.permission, context=context)
    return success_response(data=result, message=result.message)


@router.post("/users/{user_id}/roles", summary="为用户分配角色", response_model=ApiResponse[MessageDTO])
async def assign_role_to_user(
    user_id: str,
    payload: AssignRoleDTO,
    context: RequestContext = Depends(require_permission("roles_assign")),
    service: PermissionAdminService = Depends(get_permission_admin_service),
):
    result = await service.assign_role_to_user(user_id, payload.role_id, context=context)
    return success_response(data=result, message=result.message)


@router.put(
    "/users/{user_id}/overrides",
    summary="设置用户权限覆盖项",
    response_model=ApiResponse[PermissionOverrideDTO],
)
async def override_permission(
    user_id: str,
    payload: PermissionOverrideDTO,
    context: RequestContext = Depends(require_permission("permissions_override")),
    service: PermissionAdminService = Depends(get_permission_admin_service),
):
    result = await service.override_permission_for_user(
        user_id, payload.permission, payload.allowed, context=context
    )
    return success_response(data=result, message="Override saved")


@router.delete(
    "/users/{user_id}/overrides/{permission}",
    summary="删除用户权限覆盖项",
    response_model=ApiResponse[MessageDTO],
)
async def remove_override(
    user_id: str,
    permission: str,
    context: RequestContext = Depends(require_permission("permissions_override")),
    service: PermissionAdminService = Depends(get_permission_admin_service),
):
    removed = await service.remove_override(user_id, permission, context=context)
    message = "Override removed" if removed else "Override not found"
    return success_response(data=MessageDTO(message=message), message=message)
