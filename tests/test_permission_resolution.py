import pytest

from domain.common.exceptions import UserNotFoundException
from domain.permission.entity import PermissionOverride, ResolvedPermissions
from domain.permission.service import evaluate_access


def resolved(permissions=(), overrides=(), org_unit="org-a"):
    return ResolvedPermissions(
        permissions=frozenset(permissions),
        overrides=list(overrides),
        organizational_unit_id=org_unit,
    )


class TestEvaluateAccess:

    def test_role_permission_grants(self):
        assert evaluate_access(resolved(["users_read"]), "users_read")

    def test_missing_permission_denied(self):
        assert not evaluate_access(resolved(["users_read"]), "users_write")

    def test_exact_match_only(self):
        assert not evaluate_access(resolved(["users"]), "users_read")
        assert not evaluate_access(resolved(["users_read"]), "users")

    def test_deny_override_beats_role(self):
        r = resolved(["users_read"], [PermissionOverride("users_read", False)])
        assert not evaluate_access(r, "users_read")

    def test_allow_override_without_role(self):
        r = resolved([], [PermissionOverride("reports_export", True)])
        assert evaluate_access(r, "reports_export")

    def test_allow_override_ignores_org_scope(self):
        r = resolved([], [PermissionOverride("reports_export", True)], org_unit="org-a")
        assert evaluate_access(r, "reports_export", target_org_unit_id="org-b")

    def test_org_mismatch_denies_role_permission(self):
        r = resolved(["users_read"], org_unit="org-a")
        assert not evaluate_access(r, "users_read", target_org_unit_id="org-b")
        assert evaluate_access(r, "users_read", target_org_unit_id="org-a")

    def test_org_scope_skipped_when_either_side_missing(self):
        assert evaluate_access(resolved(["users_read"], org_unit=None), "users_read", "org-b")
        assert evaluate_access(resolved(["users_read"], org_unit="org-a"), "users_read", None)

    def test_unknown_user_denied(self):
        assert not evaluate_access(None, "users_read")


async def _user_with_role(auth_service, admin_service, permissions, org_unit="org-a"):
    registered = await auth_service.register(
        "Grace", "Hopper", "Initial#Pass123", organizational_unit_id=org_unit
    )
    role = await admin_service.create_role(f"role-{registered.login}")
    for permission in permissions:
        await admin_service.assign_permission_to_role(role.id, permission)
    await admin_service.assign_role_to_user(registered.user_id, role.id)
    return registered.user_id, role.id


@pytest.mark.asyncio
async def test_resolve_unions_roles_and_deduplicates(auth_service, admin_service, permission_resolver):
    user_id, _ = await _user_with_role(auth_service, admin_service, ["users_read", "roles_assign"])
    second = await admin_service.create_role("auditors")
    await admin_service.assign_permission_to_role(second.id, "users_read")
    await admin_service.assign_permission_to_role(second.id, "audit_read")
    await admin_service.assign_role_to_user(user_id, second.id)

    result = await permission_resolver.resolve(user_id)
    assert result.permissions == frozenset({"users_read", "roles_assign", "audit_read"})
    assert result.organizational_unit_id == "org-a"
    assert result.overrides == []


@pytest.mark.asyncio
async def test_resolve_unknown_user(permission_resolver):
    with pytest.raises(UserNotFoundException):
        await permission_resolver.resolve("00000000-0000-0000-0000-000000000000")
    assert not await permission_resolver.can_access("00000000-0000-0000-0000-000000000000", "users_read")


@pytest.mark.asyncio
async def test_cache_holds_role_permissions_only(
    auth_service, admin_service, permission_resolver, permissions_cache
):
    user_id, role_id = await _user_with_role(auth_service, admin_service, ["users_read"])
    assert await permission_resolver.can_access(user_id, "users_read")
    assert permissions_cache.get(user_id) == frozenset({"users_read"})

    # 角色变更在 TTL 内不可见
    await admin_service.assign_permission_to_role(role_id, "roles_assign")
    assert not await permission_resolver.can_access(user_id, "roles_assign")

    # 覆盖项始终实时读取
    await admin_service.override_permission_for_user(user_id, "users_read", False)
    assert not await permission_resolver.can_access(user_id, "users_read")

    await admin_service.remove_override(user_id, "users_read")
    assert await permission_resolver.can_access(user_id, "users_read")

    permissions_cache.invalidate(user_id)
    assert await permission_resolver.can_access(user_id, "roles_assign")


@pytest.mark.asyncio
async def test_org_scoped_access(auth_service, admin_service, permission_resolver):
    user_id, _ = await _user_with_role(auth_service, admin_service, ["users_manage"], org_unit="org-a")
    assert await permission_resolver.can_access(user_id, "users_manage", "org-a")
    assert not await permission_resolver.can_access(user_id, "users_manage", "org-b")
    assert await permission_resolver.can_access(user_id, "users_manage")


@pytest.mark.asyncio
async def test_to_dto_sorts_permissions(auth_service, admin_service, permission_resolver):
    user_id, _ = await _user_with_role(auth_service, admin_service, ["b_perm", "a_perm"])
    await admin_service.override_permission_for_user(user_id, "c_perm", True)
    dto = permission_resolver.to_dto(user_id, await permission_resolver.resolve(user_id))
    assert dto.permissions == ["a_perm", "b_perm"]
    assert [(o.permission, o.allowed) for o in dto.overrides] == [("c_perm", True)]
