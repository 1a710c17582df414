"""
Shared business codes used across layers (Domain/Core/API).

This module provides a single source of truth to avoid drift between
multiple enum definitions scattered across the codebase.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """业务状态码定义（单一来源）"""

    # 成功
    SUCCESS = 0

    # 参数错误 (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # 业务错误 (2xxxx)
    BUSINESS_ERROR = 20000
    USER_NOT_FOUND = 20001
    CONFLICT = 20002
    INVALID_CREDENTIALS = 20003
    TOKEN_INVALID = 20004
    TOKEN_REVOKED = 20005
    NOT_FOUND = 20006  # 资源未找到（通用）
    NO_ACTIVE_TOKENS = 20007
    PASSWORD_MISMATCH = 20008
    PASSWORD_REUSED = 20009

    # 权限错误 (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002
    ACCOUNT_LOCKED = 30003
    ACCOUNT_INACTIVE = 30004
    PASSWORD_CHANGE_REQUIRED = 30005

    # 系统错误 (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    CRYPTO_ERROR = 40002


__all__ = ["BusinessCode"]
