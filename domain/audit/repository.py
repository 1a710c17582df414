"""
审计日志仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import OperationLog


class AuditLogRepository(ABC):
    """审计日志仓储（只追加）"""

    @abstractmethod
    async def append(self, entry: OperationLog) -> None:
        """追加一条审计记录"""
        pass

    @abstractmethod
    async def list_entries(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[OperationLog]:
        """按条件查询审计记录（按时间先后）"""
        pass
