"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
import uuid
from datetime import datetime
from typing import Any, Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, select, func, update
from sqlalchemy.exc import IntegrityError

from domain.user.entity import User, PasswordHistoryEntry, PersonName
from domain.user.repository import (
    PasswordHistoryRepository,
    PersonNameRepository,
    UserRepository,
)
from infrastructure.models.base import as_utc
from infrastructure.models.user import (
    GivenNameModel,
    PasswordHistoryModel,
    SurnameModel,
    UserModel,
)
from core.logging_config import get_logger
from domain.common.exceptions import (
    LoginAlreadyExistsException,
    UserNotFoundException,
)


logger = get_logger(__name__)

_DATETIME_FIELDS = (
    "locked_until",
    "last_failed_login_at",
    "last_login_at",
    "password_changed_at",
    "created_at",
    "updated_at",
)

_UPDATABLE_FIELDS = frozenset({
    "password_hash",
    "is_active",
    "is_locked",
    "locked_until",
    "failed_login_attempts",
    "last_failed_login_at",
    "last_login_at",
    "must_change_password",
    "password_changed_at",
    "password_changed_by",
    "organizational_unit_id",
    "key_version",
    "login_encrypted",
    "email_encrypted",
})


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        user = User(
            id=model.id,
            login_hmac=model.login_hmac,
            login_encrypted=model.login_encrypted,
            login_masked=model.login_masked,
            email_hmac=model.email_hmac,
            email_encrypted=model.email_encrypted,
            email_masked=model.email_masked,
            password_hash=model.password_hash,
            key_version=model.key_version,
            is_active=model.is_active,
            is_locked=model.is_locked,
            failed_login_attempts=model.failed_login_attempts,
            must_change_password=model.must_change_password,
            password_changed_by=model.password_changed_by,
            organizational_unit_id=model.organizational_unit_id,
            sex_id=model.sex_id,
            first_name_id=model.first_name_id,
            surname_id=model.surname_id,
        )
        for name in _DATETIME_FIELDS:
            setattr(user, name, as_utc(getattr(model, name)))
        return user

    def _to_model(self, entity: User) -> UserModel:
        """将领域实体转换为数据库模型"""
        return UserModel(
            id=entity.id or str(uuid.uuid4()),
            login_hmac=entity.login_hmac,
            login_encrypted=entity.login_encrypted,
            login_masked=entity.login_masked,
            email_hmac=entity.email_hmac,
            email_encrypted=entity.email_encrypted,
            email_masked=entity.email_masked,
            password_hash=entity.password_hash,
            key_version=entity.key_version,
            is_active=entity.is_active,
            is_locked=entity.is_locked,
            locked_until=entity.locked_until,
            failed_login_attempts=entity.failed_login_attempts,
            last_failed_login_at=entity.last_failed_login_at,
            last_login_at=entity.last_login_at,
            must_change_password=entity.must_change_password,
            password_changed_at=entity.password_changed_at,
            password_changed_by=entity.password_changed_by,
            organizational_unit_id=entity.organizational_unit_id,
            sex_id=entity.sex_id,
            first_name_id=entity.first_name_id,
            surname_id=entity.surname_id,
        )

    async def _get_model(self, user_id: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id)
        )
        return result.scalar_one_or_none()

    async def create(self, user: User) -> User:
        """创建用户"""
        db_user = self._to_model(user)
        try:
            async with self.session.begin_nested():
                self.session.add(db_user)
                await self.session.flush()
        except IntegrityError as e:
            msg = str(e).lower()
            field = "email" if "email_hmac" in msg else "login"
            logger.warning("create_user_conflict", field=field, login_masked=user.login_masked)
            raise LoginAlreadyExistsException(field)
        await self.session.refresh(db_user)
        return self._to_entity(db_user)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """根据ID获取用户"""
        db_user = await self._get_model(user_id)
        return self._to_entity(db_user) if db_user else None

    async def get_by_login_hmac(self, login_hmac: str) -> Optional[User]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.login_hmac == login_hmac)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def exists_by_login_hmac(self, login_hmac: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(UserModel)
            .where(UserModel.login_hmac == login_hmac)
        )
        return result.scalar() > 0

    async def update_fields(self, user_id: str, **fields: Any) -> User:
        """部分字段更新"""
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        db_user = await self._get_model(user_id)
        if not db_user:
            raise UserNotFoundException(user_id)

        for name, value in fields.items():
            setattr(db_user, name, value)
        await self.session.flush()
        await self.session.refresh(db_user)
        return self._to_entity(db_user)

    async def increment_failed_attempts(self, user_id: str, at: datetime) -> int:
        """在数据库端自增失败计数（UPDATE ... SET n = n + 1 RETURNING n）"""
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(
                failed_login_attempts=UserModel.failed_login_attempts + 1,
                last_failed_login_at=at,
            )
            .returning(UserModel.failed_login_attempts)
            .execution_options(synchronize_session="fetch")
        )
        attempts = result.scalar_one_or_none()
        if attempts is None:
            raise UserNotFoundException(user_id)
        return attempts


class SQLAlchemyPersonNameRepository(PersonNameRepository):
    """姓名维度仓储：按规范化值复用或创建"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_or_create(self, model_cls, value: str) -> PersonName:
        result = await self.session.execute(
            select(model_cls).where(model_cls.value == value)
        )
        existing = result.scalar_one_or_none()
        if existing:
            return PersonName(id=existing.id, value=existing.value)

        created = model_cls(id=str(uuid.uuid4()), value=value)
        self.session.add(created)
        await self.session.flush()
        return PersonName(id=created.id, value=created.value)

    async def get_or_create_first_name(self, value: str) -> PersonName:
        return await self._get_or_create(GivenNameModel, value)

    async def get_or_create_surname(self, value: str) -> PersonName:
        return await self._get_or_create(SurnameModel, value)


class SQLAlchemyPasswordHistoryRepository(PasswordHistoryRepository):
    """历史密码仓储"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PasswordHistoryModel) -> PasswordHistoryEntry:
        return PasswordHistoryEntry(
            id=model.id,
            user_id=model.user_id,
            password_hash=model.password_hash,
            changed_by=model.changed_by,
            changed_at=as_utc(model.changed_at),
        )

    async def add(self, entry: PasswordHistoryEntry) -> PasswordHistoryEntry:
        db_entry = PasswordHistoryModel(
            id=entry.id or str(uuid.uuid4()),
            user_id=entry.user_id,
            password_hash=entry.password_hash,
            changed_by=entry.changed_by,
            changed_at=entry.changed_at,
        )
        self.session.add(db_entry)
        await self.session.flush()
        return self._to_entity(db_entry)

    async def list_recent(self, user_id: str, limit: Optional[int] = None) -> List[PasswordHistoryEntry]:
        query = (
            select(PasswordHistoryModel)
            .where(PasswordHistoryModel.user_id == user_id)
            .order_by(PasswordHistoryModel.changed_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def delete_many(self, entry_ids: List[str]) -> int:
        if not entry_ids:
            return 0
        result = await self.session.execute(
            delete(PasswordHistoryModel).where(PasswordHistoryModel.id.in_(entry_ids))
        )
        return result.rowcount
