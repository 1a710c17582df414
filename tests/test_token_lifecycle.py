from datetime import datetime, timedelta, timezone

import jwt
import pytest

from application.services.token_service import TokenLifecycleManager
from domain.common.exceptions import (
    AccountInactiveException,
    InvalidOrExpiredTokenException,
    NoActiveTokensException,
    TokenRevokedException,
)
from domain.user.entity import BlacklistedToken
from infrastructure.repositories.refresh_token_repository import SQLAlchemyBlacklistedTokenRepository


SECRET = "unit-test-secret"


async def _issue_for(active_user, load_user, token_manager):
    user = await load_user(active_user["user_id"])
    return user, await token_manager.issue(user)


def test_token_secret_hash_is_salted():
    first = TokenLifecycleManager.hash_token_secret("abc")
    second = TokenLifecycleManager.hash_token_secret("abc")
    assert first != second
    assert TokenLifecycleManager.verify_token_secret("abc", first)
    assert not TokenLifecycleManager.verify_token_secret("abd", first)
    assert not TokenLifecycleManager.verify_token_secret("abc", "garbage")


@pytest.mark.asyncio
async def test_issue_returns_distinct_tokens_with_masked_claims(active_user, load_user, token_manager):
    user, tokens = await _issue_for(active_user, load_user, token_manager)

    assert tokens.access_token != tokens.refresh_token
    assert tokens.token_type == "bearer"
    assert tokens.expires_in == 15 * 60

    access = jwt.decode(tokens.access_token, SECRET, algorithms=["HS256"])
    refresh = jwt.decode(tokens.refresh_token, SECRET, algorithms=["HS256"])
    assert access["type"] == "access"
    assert refresh["type"] == "refresh"
    assert access["sub"] == refresh["sub"] == user.id
    assert refresh["email"] == user.email_masked
    assert "alovelace" not in refresh["email"]
    assert abs(refresh["exp"] - refresh["iat"] - 7 * 24 * 3600) <= 1


@pytest.mark.asyncio
async def test_refresh_token_is_single_use(active_user, load_user, token_manager):
    _, tokens = await _issue_for(active_user, load_user, token_manager)

    rotated = await token_manager.refresh(tokens.refresh_token)
    assert rotated.refresh_token != tokens.refresh_token
    assert token_manager.verify_access_token(rotated.access_token) == active_user["user_id"]

    with pytest.raises((InvalidOrExpiredTokenException, TokenRevokedException)):
        await token_manager.refresh(tokens.refresh_token)

    # 新令牌仍然可用一次
    await token_manager.refresh(rotated.refresh_token)


@pytest.mark.asyncio
async def test_rotation_leaves_tombstone(active_user, load_user, token_manager, uow_factory):
    _, tokens = await _issue_for(active_user, load_user, token_manager)
    old_jti = jwt.decode(tokens.refresh_token, SECRET, algorithms=["HS256"])["jti"]

    await token_manager.refresh(tokens.refresh_token)

    async with uow_factory(readonly=True) as uow:
        assert await uow.blacklist_repository.exists(old_jti)
        remaining = await uow.refresh_token_repository.get_valid_tokens(
            datetime.now(timezone.utc), user_id=active_user["user_id"]
        )
    assert old_jti not in {r.id for r in remaining}
    assert len(remaining) == 1


@pytest.mark.asyncio
async def test_blacklisted_record_reports_revoked(active_user, load_user, token_manager, uow_factory):
    _, tokens = await _issue_for(active_user, load_user, token_manager)
    claims = jwt.decode(tokens.refresh_token, SECRET, algorithms=["HS256"])

    async with uow_factory() as uow:
        await uow.blacklist_repository.add(
            BlacklistedToken(
                jti=claims["jti"],
                user_id=claims["sub"],
                expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            )
        )

    with pytest.raises(TokenRevokedException):
        await token_manager.refresh(tokens.refresh_token)


@pytest.mark.asyncio
async def test_refresh_rejects_access_token_and_garbage(active_user, load_user, token_manager):
    _, tokens = await _issue_for(active_user, load_user, token_manager)
    with pytest.raises(InvalidOrExpiredTokenException):
        await token_manager.refresh(tokens.access_token)
    with pytest.raises(InvalidOrExpiredTokenException):
        await token_manager.refresh("not-a-jwt")


@pytest.mark.asyncio
async def test_refresh_with_foreign_signature(active_user, load_user, token_manager, uow_factory):
    user = await load_user(active_user["user_id"])
    forged = TokenLifecycleManager(uow_factory, secret_key="another-secret")
    tokens = await forged.issue(user)
    with pytest.raises(InvalidOrExpiredTokenException):
        await token_manager.refresh(tokens.refresh_token)


@pytest.mark.asyncio
async def test_expired_refresh_token(active_user, load_user, uow_factory):
    past = datetime.now(timezone.utc) - timedelta(days=8)
    stale_manager = TokenLifecycleManager(uow_factory, secret_key=SECRET, clock=lambda: past)
    user = await load_user(active_user["user_id"])
    tokens = await stale_manager.issue(user)

    fresh_manager = TokenLifecycleManager(uow_factory, secret_key=SECRET)
    with pytest.raises(InvalidOrExpiredTokenException):
        await fresh_manager.refresh(tokens.refresh_token)


@pytest.mark.asyncio
async def test_refresh_for_inactive_user(active_user, load_user, token_manager, uow_factory):
    _, tokens = await _issue_for(active_user, load_user, token_manager)
    async with uow_factory() as uow:
        await uow.user_repository.update_fields(active_user["user_id"], is_active=False)

    with pytest.raises(AccountInactiveException):
        await token_manager.refresh(tokens.refresh_token)


@pytest.mark.asyncio
async def test_revoke_all(active_user, load_user, token_manager):
    user, first = await _issue_for(active_user, load_user, token_manager)
    second = await token_manager.issue(user)

    assert await token_manager.revoke_all(user.id) == 2

    for tokens in (first, second):
        with pytest.raises((InvalidOrExpiredTokenException, TokenRevokedException)):
            await token_manager.refresh(tokens.refresh_token)

    with pytest.raises(NoActiveTokensException):
        await token_manager.revoke_all(user.id)


@pytest.mark.asyncio
async def test_verify_access_token(active_user, load_user, token_manager):
    _, tokens = await _issue_for(active_user, load_user, token_manager)
    assert token_manager.verify_access_token(tokens.access_token) == active_user["user_id"]
    with pytest.raises(InvalidOrExpiredTokenException):
        token_manager.verify_access_token(tokens.refresh_token)


@pytest.mark.asyncio
async def test_cleanup_expired(active_user, load_user, uow_factory):
    user = await load_user(active_user["user_id"])
    past = datetime.now(timezone.utc) - timedelta(days=30)
    stale_manager = TokenLifecycleManager(uow_factory, secret_key=SECRET, clock=lambda: past)
    await stale_manager.issue(user)
    async with uow_factory() as uow:
        await uow.blacklist_repository.add(
            BlacklistedToken(jti="old-jti", user_id=user.id, expires_at=past + timedelta(days=7))
        )

    current_manager = TokenLifecycleManager(uow_factory, secret_key=SECRET)
    live = await current_manager.issue(user)

    assert await current_manager.cleanup_expired() == (1, 1)

    # 未过期的令牌不受影响
    await current_manager.refresh(live.refresh_token)


async def _tombstone(uow_factory, refresh_token):
    claims = jwt.decode(refresh_token, SECRET, algorithms=["HS256"])
    async with uow_factory() as uow:
        await uow.blacklist_repository.add(
            BlacklistedToken(
                jti=claims["jti"],
                user_id=claims["sub"],
                expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            )
        )


@pytest.mark.asyncio
async def test_concurrent_rotation_loses_to_existing_tombstone(
    active_user, load_user, token_manager, uow_factory, monkeypatch
):
    _, tokens = await _issue_for(active_user, load_user, token_manager)
    # 另一个请求在本次查询黑名单之后、写入墓碑之前完成了轮转
    await _tombstone(uow_factory, tokens.refresh_token)

    async def not_yet_visible(self, jti):
        return False

    monkeypatch.setattr(SQLAlchemyBlacklistedTokenRepository, "exists", not_yet_visible)

    with pytest.raises(TokenRevokedException):
        await token_manager.refresh(tokens.refresh_token)

    # 失败的轮转整体回滚，没有签发新令牌
    async with uow_factory(readonly=True) as uow:
        remaining = await uow.refresh_token_repository.get_valid_tokens(
            datetime.now(timezone.utc), user_id=active_user["user_id"]
        )
    assert len(remaining) == 1


@pytest.mark.asyncio
async def test_duplicate_tombstone_keeps_transaction_usable(active_user, load_user, token_manager, uow_factory):
    user = await load_user(active_user["user_id"])
    expires_at = datetime.now(timezone.utc) + timedelta(days=7)

    async with uow_factory() as uow:
        assert await uow.blacklist_repository.add(BlacklistedToken(jti="jti-1", user_id=user.id, expires_at=expires_at))
    async with uow_factory() as uow:
        assert not await uow.blacklist_repository.add(
            BlacklistedToken(jti="jti-1", user_id=user.id, expires_at=expires_at)
        )
        assert await uow.blacklist_repository.add_many([
            BlacklistedToken(jti="jti-1", user_id=user.id, expires_at=expires_at),
            BlacklistedToken(jti="jti-2", user_id=user.id, expires_at=expires_at),
        ]) == 1

    async with uow_factory(readonly=True) as uow:
        assert await uow.blacklist_repository.exists("jti-2")


@pytest.mark.asyncio
async def test_logout_tolerates_tombstone_written_by_rotation(active_user, load_user, token_manager, uow_factory):
    _, tokens = await _issue_for(active_user, load_user, token_manager)
    await _tombstone(uow_factory, tokens.refresh_token)

    assert await token_manager.revoke_all(active_user["user_id"]) == 1
    with pytest.raises((InvalidOrExpiredTokenException, TokenRevokedException)):
        await token_manager.refresh(tokens.refresh_token)
