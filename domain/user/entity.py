"""
用户领域实体 - 包含核心业务规则

登录名与邮箱从不以明文保存：只保存 HMAC（等值查找）、AES-GCM 密文（可恢复展示）
以及脱敏形式（日志与审计展示）。
"""
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass, field


# 永久锁定使用的远期哨兵时间
PERMANENT_LOCK_UNTIL = datetime(9999, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


@dataclass
class ProtectedField:
    """一个敏感标识的三种存储形式"""
    hmac: str
    encrypted: str
    masked: str


@dataclass
class User:
    """用户实体 - 领域核心"""

    id: Optional[str]
    login_hmac: str
    login_encrypted: str
    login_masked: str
    email_hmac: str
    email_encrypted: str
    email_masked: str
    password_hash: str
    key_version: int = 1
    is_active: bool = True
    is_locked: bool = False
    locked_until: Optional[datetime] = None
    failed_login_attempts: int = 0
    last_failed_login_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    must_change_password: bool = False
    password_changed_at: Optional[datetime] = None
    password_changed_by: Optional[str] = None
    organizational_unit_id: Optional[str] = None
    sex_id: Optional[str] = None
    first_name_id: Optional[str] = None
    surname_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_lock_active(self, now: Optional[datetime] = None) -> bool:
        """业务规则：锁定且未到期（未设置到期时间视为永久锁定）"""
        if not self.is_locked:
            return False
        if self.locked_until is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.locked_until > now

    def lock_state(self) -> dict:
        """锁定状态快照（用于审计前后值）"""
        return {
            "is_locked": self.is_locked,
            "locked_until": self.locked_until.isoformat() if self.locked_until else None,
            "failed_login_attempts": self.failed_login_attempts,
        }

    def public_snapshot(self) -> dict:
        """可安全写入审计日志的字段（不含任何哈希或密文）"""
        return {
            "id": self.id,
            "login_masked": self.login_masked,
            "email_masked": self.email_masked,
            "is_active": self.is_active,
            "is_locked": self.is_locked,
            "must_change_password": self.must_change_password,
            "organizational_unit_id": self.organizational_unit_id,
            "key_version": self.key_version,
        }


@dataclass
class PasswordHistoryEntry:
    """历史密码（最新在前）"""
    id: Optional[str]
    user_id: str
    password_hash: str
    changed_by: Optional[str]
    changed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PersonName:
    """姓名维度记录（规范化后的小写值）"""
    id: str
    value: str


@dataclass
class RefreshTokenRecord:
    """已签发刷新令牌的持久化记录（只保存令牌的单向哈希）"""
    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class BlacklistedToken:
    """被替换或撤销的刷新令牌墓碑，按原令牌 jti 索引"""
    jti: str
    user_id: str
    expires_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
