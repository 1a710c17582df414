import pytest
import pytest_asyncio
from sqlalchemy import select

from domain.common.context import RequestContext
from domain.common.exceptions import (
    ConflictException,
    DomainValidationException,
    RoleNotFoundException,
    UserNotFoundException,
)
from infrastructure.models import UserRoleModel


ADMIN = RequestContext(actor_id="admin-1", ip_address="198.51.100.4")


@pytest_asyncio.fixture
async def registered_user(auth_service):
    result = await auth_service.register("Edsger", "Dijkstra", "Initial#Pass123", organizational_unit_id="org-a")
    return result.user_id


@pytest.mark.asyncio
async def test_create_role_is_audited(admin_service, audit_entries):
    role = await admin_service.create_role("  auditors ", "Read-only audit access", context=ADMIN)
    assert role.name == "auditors"

    entries = await audit_entries(entity_type="Role", entity_id=role.id)
    assert [e.action for e in entries] == ["create_role"]
    assert entries[0].user_id == "admin-1"
    assert entries[0].ip_address == "198.51.100.4"
    assert entries[0].new_values == {"name": "auditors", "description": "Read-only audit access"}


@pytest.mark.asyncio
async def test_create_role_conflict_and_blank_name(admin_service):
    await admin_service.create_role("operators")
    with pytest.raises(ConflictException):
        await admin_service.create_role("operators")
    with pytest.raises(DomainValidationException):
        await admin_service.create_role("   ")


@pytest.mark.asyncio
async def test_role_permission_rules(admin_service):
    role = await admin_service.create_role("operators")
    await admin_service.assign_permission_to_role(role.id, "users_read")

    with pytest.raises(ConflictException):
        await admin_service.assign_permission_to_role(role.id, "users_read")
    with pytest.raises(RoleNotFoundException):
        await admin_service.assign_permission_to_role("missing-role", "users_read")
    with pytest.raises(DomainValidationException):
        await admin_service.assign_permission_to_role(role.id, "Users Read")


@pytest.mark.asyncio
async def test_assign_role_defaults_to_system_actor(admin_service, registered_user, uow_factory):
    role = await admin_service.create_role("operators")
    await admin_service.assign_role_to_user(registered_user, role.id)

    async with uow_factory(readonly=True) as uow:
        assigned_by = await uow.session.scalar(
            select(UserRoleModel.assigned_by).where(UserRoleModel.user_id == registered_user)
        )
    assert assigned_by == "system"

    with pytest.raises(ConflictException):
        await admin_service.assign_role_to_user(registered_user, role.id, context=ADMIN)


@pytest.mark.asyncio
async def test_assign_role_records_admin(admin_service, registered_user, audit_entries):
    role = await admin_service.create_role("operators")
    await admin_service.assign_role_to_user(registered_user, role.id, context=ADMIN)

    entry = (await audit_entries(action="assign_role"))[0]
    assert entry.entity_type == "UserRole"
    assert entry.new_values["assigned_by"] == "admin-1"
    assert entry.action_details == "Role operators assigned"


@pytest.mark.asyncio
async def test_assign_role_missing_targets(admin_service, registered_user):
    role = await admin_service.create_role("operators")
    with pytest.raises(UserNotFoundException):
        await admin_service.assign_role_to_user("missing-user", role.id)
    with pytest.raises(RoleNotFoundException):
        await admin_service.assign_role_to_user(registered_user, "missing-role")


@pytest.mark.asyncio
async def test_override_upsert_records_create_then_update(admin_service, registered_user, audit_entries):
    first = await admin_service.override_permission_for_user(registered_user, "reports_export", True, context=ADMIN)
    second = await admin_service.override_permission_for_user(registered_user, "reports_export", False, context=ADMIN)
    assert first.allowed is True
    assert second.allowed is False

    entries = await audit_entries(entity_type="UserPermission", entity_id=registered_user)
    assert [e.action for e in entries] == ["override_permission", "override_permission"]
    assert entries[0].old_values is None
    assert entries[0].new_values == {"permission": "reports_export", "allowed": True}
    assert entries[1].old_values == {"permission": "reports_export", "allowed": True}
    assert entries[1].new_values == {"permission": "reports_export", "allowed": False}


@pytest.mark.asyncio
async def test_override_validation(admin_service, registered_user):
    with pytest.raises(UserNotFoundException):
        await admin_service.override_permission_for_user("missing-user", "reports_export", True)
    with pytest.raises(DomainValidationException):
        await admin_service.override_permission_for_user(registered_user, "x", True)


@pytest.mark.asyncio
async def test_remove_override(admin_service, registered_user, audit_entries):
    await admin_service.override_permission_for_user(registered_user, "reports_export", True)

    assert await admin_service.remove_override(registered_user, "reports_export") is True
    assert await admin_service.remove_override(registered_user, "reports_export") is False

    removals = await audit_entries(action="remove_override")
    assert len(removals) == 1
    assert removals[0].old_values == {"permission": "reports_export", "allowed": True}
    assert removals[0].new_values is None


@pytest.mark.asyncio
async def test_permission_name_with_trailing_newline_rejected(admin_service, registered_user):
    role = await admin_service.create_role("operators")
    with pytest.raises(DomainValidationException):
        await admin_service.assign_permission_to_role(role.id, "users_read\n")
    with pytest.raises(DomainValidationException):
        await admin_service.override_permission_for_user(registered_user, "reports_export\n", True)
