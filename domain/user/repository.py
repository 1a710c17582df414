"""
用户仓储接口 - 定义数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional, List
from .entity import User, PasswordHistoryEntry, PersonName


class UserRepository(ABC):
    """用户仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, user: User) -> User:
        """创建用户（login_hmac/email_hmac 冲突时抛出 Conflict）"""
        pass

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """根据ID获取用户"""
        pass

    @abstractmethod
    async def get_by_login_hmac(self, login_hmac: str) -> Optional[User]:
        """根据登录名HMAC获取用户"""
        pass

    @abstractmethod
    async def exists_by_login_hmac(self, login_hmac: str) -> bool:
        """检查登录名HMAC是否已被占用"""
        pass

    @abstractmethod
    async def update_fields(self, user_id: str, **fields: Any) -> User:
        """部分字段更新，返回更新后的用户；用户不存在时抛出 UserNotFound"""
        pass

    @abstractmethod
    async def increment_failed_attempts(self, user_id: str, at: datetime) -> int:
        """
        原子地递增失败计数并记录失败时间

        必须在存储层完成自增（而非读后写），避免并发错误密码请求丢失计数。

        Returns:
            递增后的失败次数
        """
        pass


class PersonNameRepository(ABC):
    """姓名维度仓储（规范化值去重，复用或创建）"""

    @abstractmethod
    async def get_or_create_first_name(self, value: str) -> PersonName:
        pass

    @abstractmethod
    async def get_or_create_surname(self, value: str) -> PersonName:
        pass


class PasswordHistoryRepository(ABC):
    """历史密码仓储"""

    @abstractmethod
    async def add(self, entry: PasswordHistoryEntry) -> PasswordHistoryEntry:
        pass

    @abstractmethod
    async def list_recent(self, user_id: str, limit: Optional[int] = None) -> List[PasswordHistoryEntry]:
        """按时间倒序（最新在前）返回历史记录"""
        pass

    @abstractmethod
    async def delete_many(self, entry_ids: List[str]) -> int:
        pass
