"""
角色与权限数据库模型
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint
from datetime import datetime, timezone

from .base import Base


class RoleModel(Base):
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True)
    name = Column(String(100), unique=True, nullable=False, comment="角色名")
    description = Column(String(255), nullable=False, default="")


class RolePermissionModel(Base):
    __tablename__ = "role_permissions"

    id = Column(String(36), primary_key=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    permission = Column(String(100), nullable=False, comment="权限标识（精确匹配）")

    __table_args__ = (
        UniqueConstraint("role_id", "permission", name="uq_role_permissions_role_permission"),
    )


class UserRoleModel(Base):
    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    assigned_by = Column(String(36), nullable=False, comment="分配角色的管理员")
    assigned_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
    )


class UserPermissionModel(Base):
    """用户级覆盖项，(user_id, permission) 唯一"""
    __tablename__ = "user_permissions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permission = Column(String(100), nullable=False)
    allowed = Column(Boolean, nullable=False, comment="True 为允许，False 为拒绝")

    __table_args__ = (
        UniqueConstraint("user_id", "permission", name="uq_user_permissions_user_permission"),
    )
