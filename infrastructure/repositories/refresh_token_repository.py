"""
刷新令牌仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, and_
from sqlalchemy.exc import IntegrityError

from domain.user.entity import BlacklistedToken, RefreshTokenRecord
from domain.user.refresh_token_repository import (
    BlacklistedTokenRepository,
    RefreshTokenRepository,
)
from infrastructure.models.base import as_utc
from infrastructure.models.refresh_token import BlacklistedTokenModel, RefreshTokenModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyRefreshTokenRepository(RefreshTokenRepository):
    """刷新令牌仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefreshTokenModel) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            id=model.id,
            user_id=model.user_id,
            token_hash=model.token_hash,
            expires_at=as_utc(model.expires_at),
            created_at=as_utc(model.created_at),
        )

    async def create(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        """创建刷新令牌记录"""
        db_token = RefreshTokenModel(
            id=record.id,
            user_id=record.user_id,
            token_hash=record.token_hash,
            expires_at=record.expires_at,
            created_at=record.created_at,
        )
        self.session.add(db_token)
        await self.session.flush()

        logger.info("refresh_token_created", jti=record.id, user_id=record.user_id)
        return self._to_entity(db_token)

    async def get_valid_tokens(
        self,
        now: datetime,
        user_id: Optional[str] = None,
    ) -> List[RefreshTokenRecord]:
        conditions = [RefreshTokenModel.expires_at > now]
        if user_id is not None:
            conditions.append(RefreshTokenModel.user_id == user_id)
        result = await self.session.execute(
            select(RefreshTokenModel)
            .where(and_(*conditions))
            .order_by(RefreshTokenModel.created_at.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def delete(self, token_id: str) -> bool:
        result = await self.session.execute(
            delete(RefreshTokenModel).where(RefreshTokenModel.id == token_id)
        )
        return result.rowcount > 0

    async def delete_many(self, token_ids: List[str]) -> int:
        if not token_ids:
            return 0
        result = await self.session.execute(
            delete(RefreshTokenModel).where(RefreshTokenModel.id.in_(token_ids))
        )
        return result.rowcount

    async def cleanup_expired(self, before: datetime) -> int:
        """清理过期令牌"""
        result = await self.session.execute(
            delete(RefreshTokenModel).where(RefreshTokenModel.expires_at <= before)
        )
        if result.rowcount:
            logger.info("refresh_tokens_cleaned", count=result.rowcount)
        return result.rowcount


class SQLAlchemyBlacklistedTokenRepository(BlacklistedTokenRepository):
    """令牌黑名单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_model(entry: BlacklistedToken) -> BlacklistedTokenModel:
        return BlacklistedTokenModel(
            jti=entry.jti,
            user_id=entry.user_id,
            expires_at=entry.expires_at,
            created_at=entry.created_at,
        )

    async def add(self, entry: BlacklistedToken) -> bool:
        try:
            async with self.session.begin_nested():
                self.session.add(self._to_model(entry))
                await self.session.flush()
        except IntegrityError:
            # 并发的轮转或登出已写入同一 jti 的墓碑
            logger.warning("blacklist_entry_exists", jti=entry.jti, user_id=entry.user_id)
            return False
        return True

    async def add_many(self, entries: List[BlacklistedToken]) -> int:
        added = 0
        for entry in entries:
            if await self.add(entry):
                added += 1
        return added

    async def exists(self, jti: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(BlacklistedTokenModel)
            .where(BlacklistedTokenModel.jti == jti)
        )
        return result.scalar() > 0

    async def cleanup_expired(self, before: datetime) -> int:
        result = await self.session.execute(
            delete(BlacklistedTokenModel).where(BlacklistedTokenModel.expires_at <= before)
        )
        if result.rowcount:
            logger.info("blacklisted_tokens_cleaned", count=result.rowcount)
        return result.rowcount
