"""
审计记录器 - 为每次凭据与权限变更持久化前后值快照
"""
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Optional

from core.logging_config import get_logger
from .entity import OperationLog
from .repository import AuditLogRepository


logger = get_logger(__name__)

DEFAULT_RETENTION_YEARS = 5
DEFAULT_EXCLUDED_ENTITIES = ("OperationLog", "RefreshToken", "BlacklistedToken")

REDACTED = "[REDACTED]"
REDACTED_KEYS = frozenset({
    "password",
    "password_hash",
    "token_hash",
    "login_hmac",
    "login_encrypted",
    "email_hmac",
    "email_encrypted",
})


def add_years(moment: datetime, years: int) -> datetime:
    """日历年相加，2月29日落到非闰年时取2月28日"""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def redact_snapshot(values: Any) -> Any:
    """递归去除哈希、密文等字段，并把时间转换为 ISO 字符串以便 JSON 存储"""
    if values is None:
        return None
    if isinstance(values, dict):
        return {
            key: REDACTED if key in REDACTED_KEYS else redact_snapshot(value)
            for key, value in values.items()
        }
    if isinstance(values, (list, tuple)):
        return [redact_snapshot(v) for v in values]
    if isinstance(values, (datetime, date)):
        return values.isoformat()
    return values


class AuditRecorder:
    """
    审计记录器

    - 写入时计算保留期限（默认当前时间 + 5 年）
    - 审计日志、刷新令牌、黑名单三类实体不被审计，避免递归变更
    - 持久化失败只记录错误日志，不向外抛出，业务操作不因审计失败而失败
    """

    def __init__(
        self,
        repository: AuditLogRepository,
        *,
        retention_years: int = DEFAULT_RETENTION_YEARS,
        excluded_entities: Iterable[str] = DEFAULT_EXCLUDED_ENTITIES,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._retention_years = retention_years
        self._excluded = frozenset(excluded_entities)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def is_excluded(self, entity_type: str) -> bool:
        return entity_type in self._excluded

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        actor_id: Optional[str],
        ip_address: Optional[str],
        old_values: Optional[dict] = None,
        new_values: Optional[dict] = None,
        detail: Optional[str] = None,
    ) -> Optional[OperationLog]:
        """写入一条审计记录；被排除的实体或写入失败时返回 None"""
        if self.is_excluded(entity_type):
            return None

        now = self._clock()
        entry = OperationLog(
            id=str(uuid.uuid4()),
            user_id=actor_id,
            action=action,
            action_details=detail or f"Audit for {entity_type}.{action}",
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=redact_snapshot(old_values),
            new_values=redact_snapshot(new_values),
            ip_address=ip_address or "system",
            retention_until=add_years(now, self._retention_years),
            timestamp=now,
        )

        try:
            await self._repository.append(entry)
        except Exception as exc:
            logger.error(
                "audit_write_failed",
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                error=str(exc),
                exc_info=True,
            )
            return None

        logger.debug("audit_recorded", action=action, entity_type=entity_type, entity_id=entity_id)
        return entry
