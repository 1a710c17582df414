"""
刷新令牌与黑名单数据库模型 - SQLAlchemy ORM模型
支持令牌轮转（Refresh Token Rotation）
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from datetime import datetime, timezone

from .base import Base


class RefreshTokenModel(Base):
    """
    刷新令牌数据库模型

    - 只存储令牌密文的加盐哈希，不存储原始令牌
    - 令牌被轮转或登出时删除，同时在黑名单中留下墓碑
    """
    __tablename__ = "refresh_tokens"

    # 主键，同时作为令牌 JWT 中的 jti
    id = Column(String(36), primary_key=True)

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True, comment="用户ID")

    token_hash = Column(String(160), nullable=False, comment="令牌加盐SHA-256哈希")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, comment="过期时间")

    __table_args__ = (
        Index("ix_refresh_tokens_user_expires", "user_id", "expires_at"),
    )

    def __repr__(self):
        return f"<RefreshTokenModel(id={self.id}, user_id={self.user_id})>"


class BlacklistedTokenModel(Base):
    """被替换或撤销的刷新令牌墓碑（只增不改）"""
    __tablename__ = "blacklisted_tokens"

    jti = Column(String(36), primary_key=True, comment="原令牌ID")
    user_id = Column(String(36), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True, comment="原令牌过期时间")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<BlacklistedTokenModel(jti={self.jti}, user_id={self.user_id})>"
