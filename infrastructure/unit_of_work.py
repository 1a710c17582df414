"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable
import inspect

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from domain.audit.service import AuditRecorder
from domain.common.context import RequestContext
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.audited import (
    AuditedPasswordHistoryRepository,
    AuditedPermissionRepository,
    AuditedUserRepository,
)
from infrastructure.repositories.operation_log_repository import SQLAlchemyAuditLogRepository
from infrastructure.repositories.permission_repository import SQLAlchemyPermissionRepository
from infrastructure.repositories.refresh_token_repository import (
    SQLAlchemyBlacklistedTokenRepository,
    SQLAlchemyRefreshTokenRepository,
)
from infrastructure.repositories.user_repository import (
    SQLAlchemyPasswordHistoryRepository,
    SQLAlchemyPersonNameRepository,
    SQLAlchemyUserRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work

    用户、历史密码与权限仓储在此处被审计装饰器包裹；
    令牌、黑名单与审计日志仓储不包裹，避免递归审计。
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
        context: Optional[RequestContext] = None,
    ) -> None:
        super().__init__(readonly=readonly, context=context)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    def _wire_repositories(self, session: AsyncSession) -> None:
        self.audit_log_repository = SQLAlchemyAuditLogRepository(session)
        self.audit_recorder = AuditRecorder(
            self.audit_log_repository,
            retention_years=settings.audit.retention_years,
            excluded_entities=settings.audit.excluded_entities,
        )
        self.user_repository = AuditedUserRepository(SQLAlchemyUserRepository(session), self)
        self.person_name_repository = SQLAlchemyPersonNameRepository(session)
        self.password_history_repository = AuditedPasswordHistoryRepository(
            SQLAlchemyPasswordHistoryRepository(session), self
        )
        self.permission_repository = AuditedPermissionRepository(
            SQLAlchemyPermissionRepository(session), self
        )
        self.refresh_token_repository = SQLAlchemyRefreshTokenRepository(session)
        self.blacklist_repository = SQLAlchemyBlacklistedTokenRepository(session)

    def _clear_repositories(self) -> None:
        self.user_repository = None
        self.person_name_repository = None
        self.password_history_repository = None
        self.permission_repository = None
        self.refresh_token_repository = None
        self.blacklist_repository = None
        self.audit_log_repository = None
        self.audit_recorder = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._wire_repositories(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly and not self.session.in_transaction():
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self._clear_repositories()

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
