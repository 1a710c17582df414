"""
认证API路由 - FastAPI表现层
"""
from fastapi import APIRouter, Depends

from application.dto import (
    ChangePasswordDTO,
    InitialPasswordChangeDTO,
    LockResultDTO,
    LockUserDTO,
    LoginDTO,
    MessageDTO,
    RefreshTokenDTO,
    RegisterDTO,
    RegisterResultDTO,
    ResetPasswordResultDTO,
    TokenDTO,
    UserIdentityDTO,
)
from application.services.auth_service import AuthenticationService
from api.dependencies import (
    get_auth_service,
    get_authenticated_context,
    get_request_context,
    require_permission,
)
from core.response import Response as ApiResponse, success_response
from domain.common.context import RequestContext


router = APIRouter(
    prefix="/auth",
    tags=["认证"]
)


@router.post("/register", summary="用户注册", response_model=ApiResponse[RegisterResultDTO])
async def register(
    payload: RegisterDTO,
    context: RequestContext = Depends(get_request_context),
    service: AuthenticationService = Depends(get_auth_service),
):
    """
    注册新用户

    - 登录名由名的首字母 + 姓派生，冲突时追加数字后缀
    - 首次登录前必须修改密码
    """
    result = await service.register(
        payload.first_name,
        payload.surname,
        payload.password,
        organizational_unit_id=payload.organizational_unit_id,
        sex_id=payload.sex_id,
        context=context,
    )
    return success_response(data=result, message="User registered")


@router.post("/login", summary="用户登录", response_model=ApiResponse[TokenDTO])
async def login(
    payload: LoginDTO,
    context: RequestContext = Depends(get_request_context),
    service: AuthenticationService = Depends(get_auth_service),
):
    """登录名不存在与密码错误返回相同的错误"""
    tokens = await service.login(payload.login, payload.password, context=context)
    return success_response(data=tokens, message="Login successful")


@router.post("/refresh", summary="刷新令牌", response_model=ApiResponse[TokenDTO])
async def refresh(
    payload: RefreshTokenDTO,
    context: RequestContext = Depends(get_request_context),
    service: AuthenticationService = Depends(get_auth_service),
):
    """一次性轮转：旧刷新令牌立即失效"""
    tokens = await service.refresh(payload.refresh_token, context=context)
    return success_response(data=tokens, message="Token refreshed")


@router.post("/logout", summary="登出", response_model=ApiResponse[MessageDTO])
async def logout(
    context: RequestContext = Depends(get_authenticated_context),
    service: AuthenticationService = Depends(get_auth_service),
):
    result = await service.logout(context)
    return success_response(data=result, message=result.message)


@router.post("/change-password", summary="修改密码", response_model=ApiResponse[MessageDTO])
async def change_password(
    payload: ChangePasswordDTO,
    context: RequestContext = Depends(get_authenticated_context),
    service: AuthenticationService = Depends(get_auth_service),
):
    result = await service.change_password(
        context.actor_id,
        payload.old_password,
        payload.new_password,
        payload.confirm_password,
        context=context,
    )
    return success_response(data=result, message=result.message)


@router.post("/initial-password", summary="首次登录修改密码", response_model=ApiResponse[MessageDTO])
async def change_initial_password(
    payload: InitialPasswordChangeDTO,
    context: RequestContext = Depends(get_request_context),
    service: AuthenticationService = Depends(get_auth_service),
):
    """必须修改密码的账户无法登录，在此以登录名 + 当前密码完成修改"""
    result = await service.change_initial_password(
        payload.login,
        payload.old_password,
        payload.new_password,
        payload.confirm_password,
        context=context,
    )
    return success_response(data=result, message=result.message)


@router.post(
    "/users/{user_id}/reset-password",
    summary="重置密码",
    response_model=ApiResponse[ResetPasswordResultDTO],
)
async def reset_password(
    user_id: str,
    context: RequestContext = Depends(require_permission("users_reset_password")),
    service: AuthenticationService = Depends(get_auth_service),
):
    result = await service.reset_password(user_id, context=context)
    return success_response(data=result, message="Password reset")


@router.post("/users/{user_id}/lock", summary="锁定账户", response_model=ApiResponse[LockResultDTO])
async def lock_user(
    user_id: str,
    payload: LockUserDTO,
    context: RequestContext = Depends(require_permission("users_lock")),
    service: AuthenticationService = Depends(get_auth_service),
):
    result = await service.lock_user(
        user_id,
        duration_minutes=payload.duration_minutes,
        reason=payload.reason,
        context=context,
    )
    return success_response(data=result, message="Account locked")


@router.post("/users/{user_id}/unlock", summary="解锁账户", response_model=ApiResponse[MessageDTO])
async def unlock_user(
    user_id: str,
    context: RequestContext = Depends(require_permission("users_lock")),
    service: AuthenticationService = Depends(get_auth_service),
):
    result = await service.unlock_user(user_id, context=context)
    return success_response(data=result, message=result.message)


@router.get("/users/{user_id}/identity", summary="查看用户标识", response_model=ApiResponse[UserIdentityDTO])
async def get_user_identity(
    user_id: str,
    context: RequestContext = Depends(require_permission("users_read")),
    service: AuthenticationService = Depends(get_auth_service),
):
    result = await service.get_user_identity(user_id)
    return success_response(data=result)
