"""
权限判定 - 纯函数，不访问存储
"""
import re
from typing import Optional

from domain.common.exceptions import DomainValidationException
from .entity import ResolvedPermissions


PERMISSION_PATTERN = re.compile(r"^[a-z0-9_:.\-]{3,100}$")


def validate_permission_name(permission: str) -> str:
    """业务规则：权限标识为小写字母、数字及 _ : . -，长度 3-100"""
    if not PERMISSION_PATTERN.fullmatch(permission or ""):
        raise DomainValidationException(
            "Permission must be 3-100 characters of a-z, 0-9, '_', ':', '.', '-'",
            field="permission",
        )
    return permission


def evaluate_access(
    resolved: Optional[ResolvedPermissions],
    permission: str,
    target_org_unit_id: Optional[str] = None,
) -> bool:
    """
    访问判定

    1. 存在与权限字符串完全相同的覆盖项时，以覆盖项的 allowed 为准（无视角色）
    2. 角色权限包含该权限时允许访问；但若给出目标组织单元，且与用户组织单元均非空且不同，则拒绝
    3. 其余情况拒绝
    """
    if resolved is None:
        return False

    override = resolved.find_override(permission)
    if override is not None:
        return override.allowed

    if permission in resolved.permissions:
        user_org = resolved.organizational_unit_id
        if target_org_unit_id and user_org and target_org_unit_id != user_org:
            return False
        return True

    return False
