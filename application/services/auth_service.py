"""
认证应用服务 - 编排凭据校验、令牌生命周期与审计

注册 / 登录 / 登出 / 刷新 / 修改密码 / 重置密码 / 锁定与解锁。
每个用例都以显式的 RequestContext 获得操作者与来源IP。
"""
from typing import Callable, Optional
from datetime import datetime, timedelta, timezone

from application.dto import (
    LockResultDTO,
    MessageDTO,
    RegisterResultDTO,
    ResetPasswordResultDTO,
    TokenDTO,
    UserIdentityDTO,
)
from application.services.token_service import TokenLifecycleManager
from core.config import settings
from core.logging_config import get_logger
from domain.audit.entity import AuditMeta
from domain.common.context import RequestContext, SYSTEM_CONTEXT
from domain.common.exceptions import (
    AccountInactiveException,
    AccountLockedException,
    DomainValidationException,
    InvalidCredentialsException,
    InvalidOrExpiredTokenException,
    PasswordChangeRequiredException,
    PasswordMismatchException,
    PasswordReusedException,
    UserNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import PERMANENT_LOCK_UNTIL, PasswordHistoryEntry, User
from domain.user.service import (
    CredentialVerifier,
    PasswordService,
    UserDomainService,
    normalize_name,
)
from infrastructure.security.encrypted_index import EncryptedIndex, mask


logger = get_logger(__name__)

# 未知登录名时用于等量 PBKDF2 计算的哈希，任何密码都不会与之匹配
_DUMMY_PASSWORD_HASH = "0" * 64 + "$" + "0" * 64

_RESTRICTION_REASONS = {
    AccountInactiveException: "account_inactive",
    AccountLockedException: "account_locked",
    PasswordChangeRequiredException: "password_change_required",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthenticationService:
    """认证应用服务 - 处理应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        encrypted_index: EncryptedIndex,
        token_manager: TokenLifecycleManager,
        *,
        password_service: Optional[PasswordService] = None,
        max_failed_attempts: Optional[int] = None,
        lock_duration: Optional[timedelta] = None,
        password_history_size: Optional[int] = None,
        temp_password_length: Optional[int] = None,
        email_domain: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        security = settings.security
        self._uow_factory = uow_factory
        self._index = encrypted_index
        self._tokens = token_manager
        self._passwords = password_service or PasswordService(min_length=security.password_min_length)
        self._max_failed_attempts = max_failed_attempts or security.max_failed_attempts
        self._lock_duration = lock_duration or timedelta(minutes=security.lock_duration_minutes)
        self._history_size = password_history_size or security.password_history_size
        self._temp_password_length = temp_password_length or security.temp_password_length
        self._email_domain = email_domain or security.email_domain
        self._clock = clock

    def _verifier(self, uow: AbstractUnitOfWork) -> CredentialVerifier:
        return CredentialVerifier(
            uow.user_repository,
            self._passwords,
            max_failed_attempts=self._max_failed_attempts,
            lock_duration=self._lock_duration,
            clock=self._clock,
        )

    @staticmethod
    async def _get_user(uow: AbstractUnitOfWork, user_id: str) -> User:
        user = await uow.user_repository.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(user_id)
        return user

    async def register(
        self,
        first_name: str,
        surname: str,
        password: str,
        organizational_unit_id: Optional[str] = None,
        sex_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> RegisterResultDTO:
        """注册新用户：登录名 = 名首字母 + 姓（冲突时追加数字），首次登录前必须修改密码"""
        first = normalize_name(first_name, "first_name")
        last = normalize_name(surname, "surname")
        self._passwords.validate_password_strength(password)
        password_hash = self._passwords.hash_password(password)
        now = self._clock()

        async with self._uow_factory(context=context) as uow:
            given_name = await uow.person_name_repository.get_or_create_first_name(first)
            family_name = await uow.person_name_repository.get_or_create_surname(last)

            login = await UserDomainService(uow.user_repository).generate_unique_login(
                first, last, self._index.hmac
            )
            email = f"{login}@{self._email_domain}"
            login_field = self._index.protect(login)
            email_field = self._index.protect(email)

            user = User(
                id=None,
                login_hmac=login_field.hmac,
                login_encrypted=login_field.encrypted,
                login_masked=login_field.masked,
                email_hmac=email_field.hmac,
                email_encrypted=email_field.encrypted,
                email_masked=email_field.masked,
                password_hash=password_hash,
                key_version=self._index.current_key_version,
                must_change_password=True,
                organizational_unit_id=organizational_unit_id,
                sex_id=sex_id,
                first_name_id=given_name.id,
                surname_id=family_name.id,
                created_at=now,
                updated_at=now,
            )
            async with uow.audit(AuditMeta(entity_type="User", action="register", detail="User registered")):
                created = await uow.user_repository.create(user)

            # 初始密码同样计入历史，防止修改密码时“改回”初始密码
            await uow.password_history_repository.add(
                PasswordHistoryEntry(
                    id=None,
                    user_id=created.id,
                    password_hash=password_hash,
                    changed_by=uow.context.actor_id or created.id,
                    changed_at=now,
                )
            )

        logger.info("user_registered", user_id=created.id, login_masked=created.login_masked)
        return RegisterResultDTO(user_id=created.id, login=login)

    async def _record_login_failure(
        self,
        uow: AbstractUnitOfWork,
        user: Optional[User],
        login_masked: str,
        reason: str,
        action: str = "login_failed",
    ) -> None:
        """登录失败统一的审计结构：不区分未知登录名与密码错误的字段形状"""
        await uow.record_audit(
            action,
            "User",
            user.id if user else None,
            old_values=None,
            new_values={
                "login_masked": login_masked,
                "reason": reason,
                "failed_login_attempts": user.failed_login_attempts if user else None,
            },
            detail="Authentication failed",
        )
        # 失败计数与审计必须持久化，即使随后向调用方抛出异常
        await uow.commit()
        logger.warning(action, login_masked=login_masked)

    async def _authenticate(
        self,
        uow: AbstractUnitOfWork,
        login: str,
        password: str,
        action: str = "login_failed",
    ) -> User:
        """
        按登录名 + 密码认证（失败计数与锁定状态机）

        未知登录名同样执行一次 PBKDF2 校验，使其与密码错误在耗时上不可区分。
        """
        login_masked = mask(login)
        user = await uow.user_repository.get_by_login_hmac(self._index.hmac(login))
        if user is None:
            self._passwords.verify_password(password, _DUMMY_PASSWORD_HASH)
            await self._record_login_failure(uow, None, login_masked, "unknown_login", action)
            raise InvalidCredentialsException()

        try:
            await self._verifier(uow).verify(user, password)
        except AccountLockedException:
            await self._record_login_failure(uow, user, login_masked, "account_locked", action)
            raise
        except InvalidCredentialsException:
            await self._record_login_failure(uow, user, login_masked, "invalid_password", action)
            raise
        return user

    async def login(
        self,
        login: str,
        password: str,
        context: Optional[RequestContext] = None,
    ) -> TokenDTO:
        """用户登录"""
        login_masked = mask(login)

        async with self._uow_factory(context=context) as uow:
            user = await self._authenticate(uow, login, password)

            verifier = self._verifier(uow)
            try:
                verifier.check_restrictions(user)
            except (AccountInactiveException, AccountLockedException, PasswordChangeRequiredException) as exc:
                await self._record_login_failure(uow, user, login_masked, _RESTRICTION_REASONS[type(exc)])
                raise

            async with uow.audit(AuditMeta(entity_type="User", action="login", detail="User logged in")):
                user = await verifier.reset_success(user)
            tokens = await self._tokens.issue(user, uow=uow)

        logger.info("login_succeeded", user_id=user.id, login_masked=login_masked)
        return tokens

    async def logout(self, context: RequestContext) -> MessageDTO:
        """撤销当前操作者的全部刷新令牌"""
        user_id = context.actor_id
        if not user_id:
            raise InvalidOrExpiredTokenException()

        async with self._uow_factory(context=context) as uow:
            revoked = await self._tokens.revoke_all(user_id, uow=uow)
            await uow.record_audit(
                "logout",
                "User",
                user_id,
                new_values={"revoked_tokens": revoked},
                detail="User logged out",
            )

        logger.info("logout", user_id=user_id, revoked=revoked)
        return MessageDTO(message="Logged out successfully")

    async def refresh(self, refresh_token: str, context: Optional[RequestContext] = None) -> TokenDTO:
        return await self._tokens.refresh(refresh_token, context=context)

    async def _apply_new_password(
        self,
        uow: AbstractUnitOfWork,
        user_id: str,
        new_password: str,
        **extra_fields,
    ) -> str:
        """历史校验 → 更新密码（审计范围内） → 写入历史并裁剪，返回操作者"""
        history = await uow.password_history_repository.list_recent(user_id, limit=self._history_size)
        if any(self._passwords.verify_password(new_password, h.password_hash) for h in history):
            raise PasswordReusedException(self._history_size)

        now = self._clock()
        changed_by = uow.context.actor_id or user_id
        new_hash = self._passwords.hash_password(new_password)
        async with uow.audit(AuditMeta(entity_type="User", action="change_password", detail="Password changed")):
            await uow.user_repository.update_fields(
                user_id,
                password_hash=new_hash,
                must_change_password=False,
                password_changed_at=now,
                password_changed_by=changed_by,
                **extra_fields,
            )

        await uow.password_history_repository.add(
            PasswordHistoryEntry(
                id=None,
                user_id=user_id,
                password_hash=new_hash,
                changed_by=changed_by,
                changed_at=now,
            )
        )
        entries = await uow.password_history_repository.list_recent(user_id)
        stale = [e.id for e in entries[self._history_size:]]
        if stale:
            await uow.password_history_repository.delete_many(stale)
        return changed_by

    async def change_password(
        self,
        user_id: str,
        old_password: str,
        new_password: str,
        confirm_password: str,
        context: Optional[RequestContext] = None,
    ) -> MessageDTO:
        """修改密码"""
        if new_password != confirm_password:
            raise PasswordMismatchException()

        async with self._uow_factory(context=context) as uow:
            user = await self._get_user(uow, user_id)
            if not self._passwords.verify_password(old_password, user.password_hash):
                raise InvalidCredentialsException()

            self._passwords.validate_password_strength(new_password)
            changed_by = await self._apply_new_password(uow, user_id, new_password)

        logger.info("password_changed", user_id=user_id, changed_by=changed_by)
        return MessageDTO(message="Password changed successfully")

    async def change_initial_password(
        self,
        login: str,
        old_password: str,
        new_password: str,
        confirm_password: str,
        context: Optional[RequestContext] = None,
    ) -> MessageDTO:
        """
        首次登录修改密码

        must_change_password 的账户无法登录获得访问令牌，因此以登录名 + 当前密码认证。
        认证走与登录相同的失败计数与锁定状态机；新密码的格式校验先于认证，
        因此 422 与旧密码是否正确无关。
        停用、锁定中或未被要求修改密码的账户一律拒绝，凭据保持不变。
        """
        if new_password != confirm_password:
            raise PasswordMismatchException()
        self._passwords.validate_password_strength(new_password)

        action = "initial_password_change_failed"
        async with self._uow_factory(context=context) as uow:
            user = await self._authenticate(uow, login, old_password, action)

            try:
                self._verifier(uow).check_account_state(user)
            except (AccountInactiveException, AccountLockedException) as exc:
                await self._record_login_failure(uow, user, user.login_masked, _RESTRICTION_REASONS[type(exc)], action)
                raise
            if not user.must_change_password:
                await self._record_login_failure(uow, user, user.login_masked, "password_change_not_required", action)
                raise InvalidCredentialsException()

            uow.context = uow.context.with_actor(user.id)
            await self._apply_new_password(uow, user.id, new_password, failed_login_attempts=0)

        logger.info("initial_password_changed", user_id=user.id)
        return MessageDTO(message="Password changed successfully")

    async def reset_password(
        self,
        user_id: str,
        context: Optional[RequestContext] = None,
    ) -> ResetPasswordResultDTO:
        """管理员重置密码：生成临时密码，下次登录前必须修改"""
        temporary_password = self._passwords.generate_temporary_password(self._temp_password_length)

        async with self._uow_factory(context=context) as uow:
            await self._get_user(uow, user_id)
            async with uow.audit(AuditMeta(
                entity_type="User",
                action="reset_password",
                detail="Password reset to a temporary value",
            )):
                await uow.user_repository.update_fields(
                    user_id,
                    password_hash=self._passwords.hash_password(temporary_password),
                    must_change_password=True,
                    password_changed_at=self._clock(),
                    password_changed_by=uow.context.actor_id,
                )

        logger.info("password_reset", user_id=user_id)
        return ResetPasswordResultDTO(temporary_password=temporary_password)

    async def lock_user(
        self,
        user_id: str,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> LockResultDTO:
        """锁定账户；未给出时长时为永久锁定"""
        if duration_minutes is not None:
            if duration_minutes <= 0:
                raise DomainValidationException(
                    "Lock duration must be a positive number of minutes", field="duration_minutes"
                )
            locked_until = self._clock() + timedelta(minutes=duration_minutes)
        else:
            locked_until = PERMANENT_LOCK_UNTIL

        async with self._uow_factory(context=context) as uow:
            user = await self._get_user(uow, user_id)
            before = user.lock_state()
            user.is_locked = True
            user.locked_until = locked_until
            async with uow.audit(AuditMeta(
                entity_type="User",
                action="lock_user",
                detail=reason or "Account locked by administrator",
                old_values=before,
                new_values=user.lock_state(),
            )):
                await uow.user_repository.update_fields(user_id, is_locked=True, locked_until=locked_until)

        logger.info("user_locked", user_id=user_id, locked_until=locked_until.isoformat())
        return LockResultDTO(locked_until=locked_until, reason=reason)

    async def unlock_user(
        self,
        user_id: str,
        context: Optional[RequestContext] = None,
    ) -> MessageDTO:
        """解除锁定并清零失败计数"""
        async with self._uow_factory(context=context) as uow:
            user = await self._get_user(uow, user_id)
            before = user.lock_state()
            user.is_locked = False
            user.locked_until = None
            user.failed_login_attempts = 0
            async with uow.audit(AuditMeta(
                entity_type="User",
                action="unlock_user",
                detail="Account unlocked by administrator",
                old_values=before,
                new_values=user.lock_state(),
            )):
                await uow.user_repository.update_fields(
                    user_id, is_locked=False, locked_until=None, failed_login_attempts=0
                )

        logger.info("user_unlocked", user_id=user_id)
        return MessageDTO(message="Account unlocked")

    async def get_user_identity(self, user_id: str) -> UserIdentityDTO:
        """解密登录名与邮箱用于合法展示"""
        async with self._uow_factory(readonly=True, context=SYSTEM_CONTEXT) as uow:
            user = await self._get_user(uow, user_id)

        return UserIdentityDTO(
            id=user.id,
            login=self._index.decrypt(user.login_encrypted),
            email=self._index.decrypt(user.email_encrypted),
            is_active=user.is_active,
            is_locked=user.is_locked,
            must_change_password=user.must_change_password,
            organizational_unit_id=user.organizational_unit_id,
        )
