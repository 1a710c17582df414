"""
审计领域实体
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class OperationLog:
    """只追加的审计记录，保留期内不可修改或删除"""
    id: str
    user_id: Optional[str]
    action: str
    action_details: str
    entity_type: str
    entity_id: Optional[str]
    old_values: Optional[dict[str, Any]]
    new_values: Optional[dict[str, Any]]
    ip_address: str
    retention_until: datetime
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AuditMeta:
    """
    业务层为一次变更提供的审计元数据

    未提供的字段由审计仓储装饰器按变更本身推导（操作名、前后快照）。
    entity_type 为空时作用于作用域内所有实体的变更，否则只作用于该类实体。
    """
    entity_type: Optional[str] = None
    action: Optional[str] = None
    detail: Optional[str] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
