"""
用户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Text
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GivenNameModel(Base):
    """名（规范化小写值唯一）"""
    __tablename__ = "given_names"

    id = Column(String(36), primary_key=True)
    value = Column(String(100), unique=True, nullable=False, comment="规范化后的名")


class SurnameModel(Base):
    """姓（规范化小写值唯一）"""
    __tablename__ = "surnames"

    id = Column(String(36), primary_key=True)
    value = Column(String(100), unique=True, nullable=False, comment="规范化后的姓")


class UserModel(Base):
    """
    用户数据库模型

    登录名与邮箱只以 HMAC / 密文 / 脱敏三种形式存储
    所有业务规则都在 domain.user.entity.User 中
    """
    __tablename__ = "users"

    # 主键
    id = Column(String(36), primary_key=True)

    # 受保护标识
    login_hmac = Column(String(64), unique=True, index=True, nullable=False, comment="登录名HMAC")
    login_encrypted = Column(Text, nullable=False, comment="登录名密文信封")
    login_masked = Column(String(100), nullable=False, comment="脱敏登录名")
    email_hmac = Column(String(64), unique=True, index=True, nullable=False, comment="邮箱HMAC")
    email_encrypted = Column(Text, nullable=False, comment="邮箱密文信封")
    email_masked = Column(String(255), nullable=False, comment="脱敏邮箱")
    key_version = Column(Integer, default=1, nullable=False, comment="加密字段使用的密钥版本")

    # 认证信息
    password_hash = Column(String(255), nullable=False, comment="密码哈希")
    must_change_password = Column(Boolean, default=False, nullable=False, comment="下次登录前必须修改密码")
    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    password_changed_by = Column(String(36), nullable=True)

    # 状态信息
    is_active = Column(Boolean, default=True, nullable=False, comment="是否激活")
    is_locked = Column(Boolean, default=False, nullable=False, comment="是否锁定")
    locked_until = Column(DateTime(timezone=True), nullable=True, comment="锁定到期时间")
    failed_login_attempts = Column(Integer, default=0, nullable=False, comment="连续登录失败次数")
    last_failed_login_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True, comment="最后登录时间")

    # 组织与姓名维度
    organizational_unit_id = Column(String(36), nullable=True, index=True, comment="组织单元ID")
    sex_id = Column(String(36), nullable=True)
    first_name_id = Column(String(36), ForeignKey("given_names.id"), nullable=True)
    surname_id = Column(String(36), ForeignKey("surnames.id"), nullable=True)

    # 时间信息
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<UserModel(id={self.id}, login='{self.login_masked}')>"


class PasswordHistoryModel(Base):
    """历史密码"""
    __tablename__ = "password_history"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    password_hash = Column(String(255), nullable=False)
    changed_by = Column(String(36), nullable=True, comment="修改人")
    changed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_password_history_user_changed", "user_id", "changed_at"),
    )
