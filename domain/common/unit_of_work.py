"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from domain.audit.entity import AuditMeta, OperationLog
from domain.audit.repository import AuditLogRepository
from domain.audit.service import AuditRecorder
from domain.common.context import RequestContext, SYSTEM_CONTEXT
from domain.permission.repository import PermissionRepository
from domain.user.refresh_token_repository import (
    BlacklistedTokenRepository,
    RefreshTokenRepository,
)
from domain.user.repository import (
    PasswordHistoryRepository,
    PersonNameRepository,
    UserRepository,
)


class AbstractUnitOfWork(ABC):
    """
    应用层事务边界控制抽象

    同一个工作单元内的业务变更与审计写入处于同一事务：提交其一即提交其二。
    """

    user_repository: UserRepository
    person_name_repository: PersonNameRepository
    password_history_repository: PasswordHistoryRepository
    refresh_token_repository: RefreshTokenRepository
    blacklist_repository: BlacklistedTokenRepository
    permission_repository: PermissionRepository
    audit_log_repository: AuditLogRepository
    audit_recorder: AuditRecorder

    def __init__(
        self,
        *,
        readonly: bool = False,
        context: Optional[RequestContext] = None,
    ) -> None:
        self._committed = False
        self._readonly = readonly
        self.context = context or SYSTEM_CONTEXT
        self._audit_meta: Optional[AuditMeta] = None
        self.user_repository = None  # type: ignore[assignment]
        self.person_name_repository = None  # type: ignore[assignment]
        self.password_history_repository = None  # type: ignore[assignment]
        self.refresh_token_repository = None  # type: ignore[assignment]
        self.blacklist_repository = None  # type: ignore[assignment]
        self.permission_repository = None  # type: ignore[assignment]
        self.audit_log_repository = None  # type: ignore[assignment]
        self.audit_recorder = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @property
    def current_audit_meta(self) -> Optional[AuditMeta]:
        return self._audit_meta

    @asynccontextmanager
    async def audit(self, meta: AuditMeta) -> AsyncIterator[AuditMeta]:
        """
        审计作用域：作用域内经审计仓储发生的变更使用 meta 描述的操作名与前后值

        相当于 withAudit(meta, fn)，fn 即 async with 块内的代码。
        """
        previous = self._audit_meta
        self._audit_meta = meta
        try:
            yield meta
        finally:
            self._audit_meta = previous

    async def record_audit(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        *,
        old_values: Optional[dict] = None,
        new_values: Optional[dict] = None,
        detail: Optional[str] = None,
    ) -> Optional[OperationLog]:
        """以当前请求上下文的操作者与IP写入审计记录"""
        return await self.audit_recorder.record(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=self.context.actor_id,
            ip_address=self.context.ip_address,
            old_values=old_values,
            new_values=new_values,
            detail=detail,
        )

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
