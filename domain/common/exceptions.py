"""领域层业务异常定义，供领域与基础设施使用。

每一类错误对外只暴露固定的消息文本，内部细节写入审计日志而非响应体。
核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class InvalidCredentialsException(BusinessException):
    """登录名不存在与密码错误对调用方不可区分"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.INVALID_CREDENTIALS,
            message="Invalid login or password",
            error_type="InvalidCredentials",
        )


class AccountLockedException(BusinessException):
    def __init__(self, locked_until: Optional[datetime] = None):
        self.locked_until = locked_until
        details = {"locked_until": locked_until.isoformat()} if locked_until else None
        super().__init__(
            code=BusinessCode.ACCOUNT_LOCKED,
            message="Account is locked",
            error_type="AccountLocked",
            details=details,
        )


class AccountInactiveException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.ACCOUNT_INACTIVE,
            message="Account is inactive",
            error_type="AccountInactive",
        )


class PasswordChangeRequiredException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.PASSWORD_CHANGE_REQUIRED,
            message="Password change required before login",
            error_type="PasswordChangeRequired",
        )


class PasswordMismatchException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.PASSWORD_MISMATCH,
            message="New password and confirmation do not match",
            error_type="PasswordMismatch",
            field="confirm_password",
        )


class PasswordReusedException(BusinessException):
    def __init__(self, history_size: int = 5):
        super().__init__(
            code=BusinessCode.PASSWORD_REUSED,
            message="New password must differ from recently used passwords",
            error_type="PasswordReused",
            details={"history_size": history_size},
            field="new_password",
        )


class InvalidOrExpiredTokenException(BusinessException):
    """令牌不存在、哈希不匹配、过期统一归入此类，不泄露失败原因"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_INVALID,
            message="Invalid or expired token",
            error_type="InvalidOrExpiredToken",
        )


class TokenRevokedException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_REVOKED,
            message="Token has been revoked",
            error_type="TokenRevoked",
        )


class NoActiveTokensException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.NO_ACTIVE_TOKENS,
            message="No active sessions",
            error_type="NoActiveTokens",
        )


class UserNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            code=BusinessCode.USER_NOT_FOUND,
            message="User not found",
            error_type="NotFound",
            details=details,
        )


class RoleNotFoundException(BusinessException):
    def __init__(self, role_id: Optional[str] = None):
        details = {"role_id": role_id} if role_id else None
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Role not found",
            error_type="NotFound",
            details=details,
        )


class CryptoException(BusinessException):
    def __init__(self, message: str = "Unable to decrypt value"):
        super().__init__(
            code=BusinessCode.CRYPTO_ERROR,
            message=message,
            error_type="CryptoError",
        )


class ConflictException(BusinessException):
    def __init__(self, message: str = "Resource already exists", *, field: Optional[str] = None):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=message,
            error_type="Conflict",
            field=field,
        )


class LoginAlreadyExistsException(ConflictException):
    def __init__(self, field: str = "login"):
        super().__init__(f"User with this {field} already exists", field=field)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class PermissionDeniedException(BusinessException):
    def __init__(self, permission: Optional[str] = None):
        details = {"permission": permission} if permission else None
        super().__init__(
            code=BusinessCode.PERMISSION_ERROR,
            message="Permission denied",
            error_type="PermissionDenied",
            details=details,
        )
