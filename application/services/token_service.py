"""
令牌服务 - 处理JWT令牌签发、刷新令牌一次性轮转与黑名单撤销
"""
from typing import Callable, Optional, Tuple
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import secrets
import uuid

import jwt

from domain.user.entity import BlacklistedToken, RefreshTokenRecord, User
from domain.common.context import RequestContext
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.exceptions import (
    AccountInactiveException,
    InvalidOrExpiredTokenException,
    NoActiveTokensException,
    TokenRevokedException,
)
from application.dto import TokenDTO
from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenLifecycleManager:
    """
    令牌生命周期管理 - 实现刷新令牌轮转（Refresh Token Rotation）

    安全特性：
    1. 刷新令牌只能使用一次：轮转时旧令牌进入黑名单并被删除，随后签发新令牌对
    2. 数据库只保存刷新令牌的加盐哈希，按候选集逐条常量时间比较
    3. 令牌只携带脱敏邮箱，从不携带明文标识
    4. 存在性、哈希、过期三类失败统一为 InvalidOrExpiredToken，只有显式撤销单独报告
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_token_ttl: Optional[timedelta] = None,
        refresh_token_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._uow_factory = uow_factory
        self._secret_key = secret_key or settings.SECRET_KEY
        self._algorithm = algorithm or settings.ALGORITHM
        self.access_token_ttl = access_token_ttl or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_token_ttl = refresh_token_ttl or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        self._clock = clock

    @staticmethod
    def hash_token_secret(token: str) -> str:
        """计算令牌的加盐SHA-256哈希（salt$hex）"""
        salt = secrets.token_hex(16)
        digest = hashlib.sha256(f"{salt}{token}".encode("utf-8")).hexdigest()
        return f"{salt}${digest}"

    @staticmethod
    def verify_token_secret(token: str, stored_hash: str) -> bool:
        try:
            salt, digest = stored_hash.split("$")
        except ValueError:
            return False
        candidate = hashlib.sha256(f"{salt}{token}".encode("utf-8")).hexdigest()
        return hmac.compare_digest(candidate, digest)

    def _encode(self, user: User, token_type: str, jti: str, expires_at: datetime) -> str:
        to_encode = {
            "sub": str(user.id),
            "email": user.email_masked,
            "type": token_type,
            "jti": jti,
            "iat": self._clock(),
            "exp": expires_at,
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def _decode(self, token: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.PyJWTError as e:
            logger.info("token_decode_failed", token_type=expected_type, error=type(e).__name__)
            raise InvalidOrExpiredTokenException()

        if payload.get("type") != expected_type or not payload.get("sub"):
            logger.info("token_claims_invalid", token_type=expected_type)
            raise InvalidOrExpiredTokenException()
        return payload

    def create_access_token(self, user: User) -> str:
        """创建访问令牌"""
        return self._encode(user, "access", str(uuid.uuid4()), self._clock() + self.access_token_ttl)

    async def _issue(self, user: User, uow: AbstractUnitOfWork) -> TokenDTO:
        now = self._clock()
        jti = str(uuid.uuid4())
        expires_at = now + self.refresh_token_ttl
        refresh_token = self._encode(user, "refresh", jti, expires_at)

        await uow.refresh_token_repository.create(
            RefreshTokenRecord(
                id=jti,
                user_id=user.id,
                token_hash=self.hash_token_secret(refresh_token),
                expires_at=expires_at,
                created_at=now,
            )
        )
        return TokenDTO(
            access_token=self.create_access_token(user),
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=int(self.access_token_ttl.total_seconds()),
        )

    async def issue(self, user: User, *, uow: Optional[AbstractUnitOfWork] = None) -> TokenDTO:
        """签发访问令牌与刷新令牌；传入 uow 时在调用方事务内持久化"""
        if uow is not None:
            return await self._issue(user, uow)
        async with self._uow_factory() as uow_local:
            return await self._issue(user, uow_local)

    async def refresh(
        self,
        refresh_token: str,
        context: Optional[RequestContext] = None,
    ) -> TokenDTO:
        """
        刷新令牌轮转 - 核心安全逻辑

        流程：
        1. 验证令牌签名、类型与过期时间
        2. 加载该主体全部未过期的令牌记录，逐条比较哈希
        3. 命中记录的ID在黑名单中则拒绝
        4. 同一事务内：写入黑名单墓碑 → 删除旧令牌 → 签发并保存新令牌对
        """
        payload = self._decode(refresh_token, "refresh")
        user_id = payload["sub"]
        now = self._clock()

        async with self._uow_factory(context=context) as uow:
            candidates = await uow.refresh_token_repository.get_valid_tokens(now, user_id=user_id)
            matched = None
            for record in candidates:
                if self.verify_token_secret(refresh_token, record.token_hash):
                    matched = record
                    break

            if matched is None:
                logger.warning("refresh_token_rejected", user_id=user_id, candidates=len(candidates))
                raise InvalidOrExpiredTokenException()

            if await uow.blacklist_repository.exists(matched.id):
                logger.warning("refresh_token_revoked_reuse", user_id=user_id, jti=matched.id)
                raise TokenRevokedException()

            user = await uow.user_repository.get_by_id(user_id)
            if user is None:
                raise InvalidOrExpiredTokenException()
            if not user.is_active:
                raise AccountInactiveException()

            # 先写墓碑再删除：中途失败时旧令牌只会处于已撤销状态
            tombstoned = await uow.blacklist_repository.add(
                BlacklistedToken(
                    jti=matched.id,
                    user_id=matched.user_id,
                    expires_at=matched.expires_at,
                    created_at=now,
                )
            )
            if not tombstoned:
                logger.warning("refresh_token_concurrent_rotation", user_id=user_id, jti=matched.id)
                raise TokenRevokedException()
            if not await uow.refresh_token_repository.delete(matched.id):
                logger.warning("refresh_token_already_consumed", user_id=user_id, jti=matched.id)
                raise InvalidOrExpiredTokenException()
            tokens = await self._issue(user, uow)

        logger.info("refresh_token_rotated", user_id=user_id, old_jti=matched.id)
        return tokens

    async def revoke_all(self, user_id: str, *, uow: Optional[AbstractUnitOfWork] = None) -> int:
        """撤销用户所有刷新令牌（登出）：全部写入黑名单后删除原记录"""
        if uow is None:
            async with self._uow_factory() as uow_local:
                return await self._revoke_all(user_id, uow_local)
        return await self._revoke_all(user_id, uow)

    async def _revoke_all(self, user_id: str, uow: AbstractUnitOfWork) -> int:
        now = self._clock()
        tokens = await uow.refresh_token_repository.get_valid_tokens(now, user_id=user_id)
        if not tokens:
            raise NoActiveTokensException()

        await uow.blacklist_repository.add_many([
            BlacklistedToken(jti=t.id, user_id=t.user_id, expires_at=t.expires_at, created_at=now)
            for t in tokens
        ])
        await uow.refresh_token_repository.delete_many([t.id for t in tokens])
        logger.info("user_tokens_revoked", user_id=user_id, count=len(tokens))
        return len(tokens)

    def verify_access_token(self, token: str) -> str:
        """校验访问令牌并返回用户ID；签名错误、过期或类型不符统一抛出 InvalidOrExpiredToken"""
        return self._decode(token, "access")["sub"]

    async def cleanup_expired(self) -> Tuple[int, int]:
        """清理已过期的刷新令牌与过了原过期时间的黑名单墓碑"""
        now = self._clock()
        async with self._uow_factory() as uow:
            tokens = await uow.refresh_token_repository.cleanup_expired(now)
            tombstones = await uow.blacklist_repository.cleanup_expired(now)
        logger.info("expired_tokens_cleaned", tokens=tokens, tombstones=tombstones)
        return tokens, tombstones
