"""
用户领域服务 - 密码策略、凭据校验与登录锁定状态机、登录名派生
"""
from typing import Callable, Optional
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import secrets
import string

from .entity import User
from .repository import UserRepository
from domain.common.exceptions import (
    AccountInactiveException,
    AccountLockedException,
    DomainValidationException,
    InvalidCredentialsException,
    PasswordChangeRequiredException,
)


SPECIAL_CHARACTERS = "!@#$%^&*()-_=+[]{};:,.?"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PasswordService:
    """密码服务 - 处理密码相关的业务逻辑"""

    ITERATIONS = 100000

    def __init__(self, min_length: int = 12):
        self.min_length = min_length

    @classmethod
    def hash_password(cls, password: str) -> str:
        """密码哈希（PBKDF2-SHA256，随机盐）"""
        salt = secrets.token_hex(32)
        pwd_hash = hashlib.pbkdf2_hmac('sha256',
                                       password.encode('utf-8'),
                                       salt.encode('utf-8'),
                                       cls.ITERATIONS)
        return f"{salt}${pwd_hash.hex()}"

    @classmethod
    def verify_password(cls, plain_password: str, hashed_password: str) -> bool:
        """验证密码（常量时间比较）"""
        try:
            salt, pwd_hash = hashed_password.split('$')
        except ValueError:
            return False
        new_hash = hashlib.pbkdf2_hmac('sha256',
                                      plain_password.encode('utf-8'),
                                      salt.encode('utf-8'),
                                      cls.ITERATIONS)
        return hmac.compare_digest(new_hash.hex(), pwd_hash)

    def validate_password_strength(self, password: str) -> None:
        """业务规则：长度、大写字母、数字、特殊字符"""
        if len(password) < self.min_length:
            raise DomainValidationException(
                f"Password must be at least {self.min_length} characters long",
                field="password",
            )
        if not any(c.isupper() for c in password):
            raise DomainValidationException(
                "Password must contain at least one uppercase letter", field="password"
            )
        if not any(c.isdigit() for c in password):
            raise DomainValidationException(
                "Password must contain at least one digit", field="password"
            )
        if all(c.isalnum() for c in password):
            raise DomainValidationException(
                "Password must contain at least one special character", field="password"
            )

    def generate_temporary_password(self, length: int = 16) -> str:
        """生成满足密码策略的随机临时密码"""
        length = max(length, self.min_length)
        required = [
            secrets.choice(string.ascii_uppercase),
            secrets.choice(string.ascii_lowercase),
            secrets.choice(string.digits),
            secrets.choice(SPECIAL_CHARACTERS),
        ]
        alphabet = string.ascii_letters + string.digits + SPECIAL_CHARACTERS
        chars = required + [secrets.choice(alphabet) for _ in range(length - len(required))]
        secrets.SystemRandom().shuffle(chars)
        return "".join(chars)


class CredentialVerifier:
    """
    凭据校验与锁定状态机

    Active ⇄ Locked(until)：
    - 失败次数达到阈值 → Locked(now + lock_duration)
    - 锁定到期后仍需重新校验密码，只有登录成功才清零失败计数
    """

    def __init__(
        self,
        user_repository: UserRepository,
        password_service: Optional[PasswordService] = None,
        *,
        max_failed_attempts: int = 5,
        lock_duration: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.user_repository = user_repository
        self.password_service = password_service or PasswordService()
        self.max_failed_attempts = max_failed_attempts
        self.lock_duration = lock_duration
        self._clock = clock

    async def verify(self, user: User, presented_password: str) -> None:
        """校验密码；失败时原子递增失败计数，达到阈值则锁定账户"""
        if self.password_service.verify_password(presented_password, user.password_hash):
            return

        now = self._clock()
        attempts = await self.user_repository.increment_failed_attempts(user.id, now)
        user.failed_login_attempts = attempts
        user.last_failed_login_at = now

        if attempts >= self.max_failed_attempts:
            locked_until = now + self.lock_duration
            await self.user_repository.update_fields(
                user.id, is_locked=True, locked_until=locked_until
            )
            user.is_locked = True
            user.locked_until = locked_until
            raise AccountLockedException(locked_until)

        raise InvalidCredentialsException()

    def check_account_state(self, user: User) -> None:
        """账户状态：停用、锁定未到期（或永久锁定）"""
        if not user.is_active:
            raise AccountInactiveException()
        if user.is_lock_active(self._clock()):
            raise AccountLockedException(user.locked_until)

    def check_restrictions(self, user: User) -> None:
        """账户限制：停用、锁定未到期（或永久锁定）、需修改密码"""
        self.check_account_state(user)
        if user.must_change_password:
            raise PasswordChangeRequiredException()

    async def reset_success(self, user: User) -> User:
        """登录成功：清零失败计数、解除锁定、记录登录时间"""
        return await self.user_repository.update_fields(
            user.id,
            failed_login_attempts=0,
            is_locked=False,
            locked_until=None,
            last_login_at=self._clock(),
        )


def normalize_name(value: str, field: str) -> str:
    """姓名规范化：去除首尾空白并转小写"""
    normalized = (value or "").strip().lower()
    if not normalized:
        raise DomainValidationException(f"{field} is required", field=field)
    return normalized


class UserDomainService:
    """用户领域服务 - 编排注册相关的业务规则"""

    def __init__(self, user_repository: UserRepository):
        self.user_repository = user_repository

    @staticmethod
    def base_login(first_name: str, surname: str) -> str:
        """登录名基础部分：名的首字母 + 姓"""
        return f"{first_name[0]}{surname}"

    async def generate_unique_login(
        self,
        first_name: str,
        surname: str,
        login_hmac: Callable[[str], str],
    ) -> str:
        """在候选登录名的 HMAC 已被占用时追加递增数字后缀"""
        base = self.base_login(first_name, surname)
        candidate = base
        suffix = 1
        while await self.user_repository.exists_by_login_hmac(login_hmac(candidate)):
            candidate = f"{base}{suffix}"
            suffix += 1
        return candidate
