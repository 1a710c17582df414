"""
审计日志仓储实现（只追加，不提供更新与删除）
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.audit.entity import OperationLog
from domain.audit.repository import AuditLogRepository
from infrastructure.models.base import as_utc
from infrastructure.models.operation_log import OperationLogModel


class SQLAlchemyAuditLogRepository(AuditLogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: OperationLogModel) -> OperationLog:
        return OperationLog(
            id=model.id,
            user_id=model.user_id,
            action=model.action,
            action_details=model.action_details,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            old_values=model.old_values,
            new_values=model.new_values,
            ip_address=model.ip_address,
            retention_until=as_utc(model.retention_until),
            timestamp=as_utc(model.timestamp),
        )

    async def append(self, entry: OperationLog) -> None:
        """在保存点内写入：审计写入失败只回滚保存点，不影响外层业务变更"""
        async with self.session.begin_nested():
            self.session.add(OperationLogModel(
                id=entry.id,
                user_id=entry.user_id,
                action=entry.action,
                action_details=entry.action_details,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                old_values=entry.old_values,
                new_values=entry.new_values,
                ip_address=entry.ip_address,
                timestamp=entry.timestamp,
                retention_until=entry.retention_until,
            ))
            await self.session.flush()

    async def list_entries(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[OperationLog]:
        query = select(OperationLogModel)
        if entity_type is not None:
            query = query.where(OperationLogModel.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(OperationLogModel.entity_id == entity_id)
        if action is not None:
            query = query.where(OperationLogModel.action == action)
        query = query.order_by(OperationLogModel.timestamp.asc()).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]
