"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from pydantic import BaseModel, Field, model_serializer
from shared.codes import BusinessCode
from typing import Optional
from datetime import datetime, timezone


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class RegisterDTO(DTOBase):
    """注册DTO（密码强度由领域层校验）"""
    first_name: str = Field(..., min_length=1, max_length=100, description="名")
    surname: str = Field(..., min_length=1, max_length=100, description="姓")
    password: str = Field(..., description="初始密码")
    organizational_unit_id: Optional[str] = Field(None, description="组织单元ID")
    sex_id: Optional[str] = None


class RegisterResultDTO(DTOBase):
    user_id: str
    login: str


class LoginDTO(DTOBase):
    """登录DTO"""
    login: str = Field(..., min_length=1, description="登录名")
    password: str = Field(..., min_length=1, description="密码")


class TokenDTO(DTOBase):
    """令牌DTO"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # 秒


class RefreshTokenDTO(DTOBase):
    """刷新令牌请求 DTO"""
    refresh_token: str


class ChangePasswordDTO(DTOBase):
    """修改密码DTO"""
    old_password: str = Field(..., description="原密码")
    new_password: str = Field(..., description="新密码")
    confirm_password: str = Field(..., description="确认新密码")


class InitialPasswordChangeDTO(ChangePasswordDTO):
    """首次登录修改密码DTO（未持有访问令牌，以登录名认证）"""
    login: str = Field(..., min_length=1, description="登录名")


class ResetPasswordResultDTO(DTOBase):
    """重置结果，临时密码只在此响应中出现一次"""
    temporary_password: str


class LockUserDTO(DTOBase):
    duration_minutes: Optional[int] = Field(None, ge=1, description="锁定时长，缺省为永久锁定")
    reason: Optional[str] = Field(None, max_length=255)


class LockResultDTO(DTOBase):
    locked_until: datetime
    reason: Optional[str] = None


class UserIdentityDTO(DTOBase):
    """解密后的用户标识，仅用于合法展示"""
    id: str
    login: str
    email: str
    is_active: bool
    is_locked: bool
    must_change_password: bool
    organizational_unit_id: Optional[str] = None


class PermissionOverrideDTO(DTOBase):
    permission: str
    allowed: bool


class ResolvedPermissionsDTO(DTOBase):
    user_id: str
    permissions: list[str]
    overrides: list[PermissionOverrideDTO]
    organizational_unit_id: Optional[str] = None


class AccessCheckDTO(DTOBase):
    permission: str
    target_org_unit_id: Optional[str] = None


class AccessResultDTO(DTOBase):
    allowed: bool


class RoleCreateDTO(DTOBase):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=255)


class RoleDTO(DTOBase):
    id: str
    name: str
    description: str = ""


class RolePermissionDTO(DTOBase):
    permission: str


class AssignRoleDTO(DTOBase):
    role_id: str


class MessageDTO(DTOBase):
    """消息响应DTO"""
    message: str
    code: int = BusinessCode.SUCCESS
