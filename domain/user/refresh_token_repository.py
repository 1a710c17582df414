"""
刷新令牌仓储接口 - 定义刷新令牌与黑名单数据访问的抽象接口

这两张表不参与自动审计（避免审计写入引发的递归变更）。
"""
from abc import ABC, abstractmethod
from typing import Optional, List
from datetime import datetime

from .entity import RefreshTokenRecord, BlacklistedToken


class RefreshTokenRepository(ABC):
    """刷新令牌仓储抽象接口"""

    @abstractmethod
    async def create(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        """创建刷新令牌记录"""
        pass

    @abstractmethod
    async def get_valid_tokens(
        self,
        now: datetime,
        user_id: Optional[str] = None,
    ) -> List[RefreshTokenRecord]:
        """
        获取未过期的令牌记录

        Args:
            now: 当前时间，expires_at 晚于该时间的记录视为有效
            user_id: 仅返回该用户的令牌（可选）
        """
        pass

    @abstractmethod
    async def delete(self, token_id: str) -> bool:
        """删除单条令牌（轮转时消费旧令牌）"""
        pass

    @abstractmethod
    async def delete_many(self, token_ids: List[str]) -> int:
        """批量删除令牌"""
        pass

    @abstractmethod
    async def cleanup_expired(self, before: datetime) -> int:
        """
        清理过期令牌

        Returns:
            清理的令牌数量
        """
        pass


class BlacklistedTokenRepository(ABC):
    """令牌黑名单仓储抽象接口（只增不改）"""

    @abstractmethod
    async def add(self, entry: BlacklistedToken) -> bool:
        """写入墓碑；同一 jti 已存在时返回 False"""
        pass

    @abstractmethod
    async def add_many(self, entries: List[BlacklistedToken]) -> int:
        """批量写入墓碑，返回新写入的数量"""
        pass

    @abstractmethod
    async def exists(self, jti: str) -> bool:
        """检查令牌是否已进入黑名单"""
        pass

    @abstractmethod
    async def cleanup_expired(self, before: datetime) -> int:
        """删除原始过期时间早于 before 的墓碑"""
        pass
