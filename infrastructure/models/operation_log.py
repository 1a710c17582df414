"""
审计日志数据库模型（只追加）
"""
from sqlalchemy import JSON, Column, DateTime, Index, String, Text
from datetime import datetime, timezone

from .base import Base


class OperationLogModel(Base):
    __tablename__ = "operation_logs"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=True, index=True, comment="操作者，匿名或失败尝试为空")
    action = Column(String(100), nullable=False)
    action_details = Column(Text, nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(36), nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(String(45), nullable=False, default="system")
    timestamp = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    retention_until = Column(DateTime(timezone=True), nullable=False, comment="保留期限")

    __table_args__ = (
        Index("ix_operation_logs_entity", "entity_type", "entity_id"),
    )
