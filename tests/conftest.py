"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CRYPTO__HMAC_KEYS", '{"1": "%s"}' % ("11" * 32))
os.environ.setdefault("CRYPTO__ENCRYPTION_KEYS", '{"1": "%s"}' % ("22" * 32))

from datetime import datetime, timedelta, timezone
from functools import partial

import pytest
import pytest_asyncio


HMAC_KEY_V1 = "11" * 32
ENCRYPTION_KEY_V1 = "22" * 32
INITIAL_PASSWORD = "Initial#Pass123"
ACTIVE_PASSWORD = "Active#Pass456"


class ManualClock:
    """可手动推进的时钟；每次读取前进 1 毫秒，保证时间戳严格递增"""

    def __init__(self, now=None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self):
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    # PBKDF2 默认迭代次数对测试来说太慢
    from domain.user.service import PasswordService
    monkeypatch.setattr(PasswordService, "ITERATIONS", 1000)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def encrypted_index():
    from infrastructure.security.encrypted_index import EncryptedIndex
    return EncryptedIndex({1: HMAC_KEY_V1}, {1: ENCRYPTION_KEY_V1})


@pytest_asyncio.fixture
async def engine():
    from infrastructure.database import build_engine, create_tables

    eng = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    from infrastructure.database import build_session_factory
    return build_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def token_manager(uow_factory):
    from application.services.token_service import TokenLifecycleManager
    return TokenLifecycleManager(uow_factory, secret_key="unit-test-secret")


@pytest.fixture
def auth_service(uow_factory, encrypted_index, token_manager, clock):
    from application.services.auth_service import AuthenticationService
    return AuthenticationService(uow_factory, encrypted_index, token_manager, clock=clock)


@pytest.fixture
def permissions_cache():
    from infrastructure.cache.permissions_cache import PermissionsCache
    return PermissionsCache(ttl_seconds=60)


@pytest.fixture
def permission_resolver(uow_factory, permissions_cache):
    from application.services.permission_service import PermissionResolver
    return PermissionResolver(uow_factory, permissions_cache)


@pytest.fixture
def admin_service(uow_factory):
    from application.services.permission_admin_service import PermissionAdminService
    return PermissionAdminService(uow_factory)


@pytest.fixture
def audit_entries(uow_factory):
    """按条件读取已提交的审计记录"""

    async def _read(**filters):
        async with uow_factory(readonly=True) as uow:
            return await uow.audit_log_repository.list_entries(**filters)

    return _read


@pytest.fixture
def load_user(uow_factory):
    async def _load(user_id):
        async with uow_factory(readonly=True) as uow:
            return await uow.user_repository.get_by_id(user_id)

    return _load


@pytest_asyncio.fixture
async def active_user(auth_service):
    """已注册并完成首次改密、可以直接登录的用户"""
    registered = await auth_service.register("Ada", "Lovelace", INITIAL_PASSWORD)
    await auth_service.change_password(
        registered.user_id, INITIAL_PASSWORD, ACTIVE_PASSWORD, ACTIVE_PASSWORD
    )
    return {"user_id": registered.user_id, "login": registered.login, "password": ACTIVE_PASSWORD}
