from datetime import datetime, timezone

import pytest

from domain.audit.repository import AuditLogRepository
from domain.audit.service import AuditRecorder, REDACTED, add_years, redact_snapshot


class ListAuditRepository(AuditLogRepository):

    def __init__(self, fail=False):
        self.entries = []
        self.fail = fail

    async def append(self, entry):
        if self.fail:
            raise RuntimeError("disk full")
        self.entries.append(entry)

    async def list_entries(self, *, entity_type=None, entity_id=None, action=None, limit=100):
        return self.entries[:limit]


FIXED_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_record_persists_entry_with_retention():
    repo = ListAuditRepository()
    recorder = AuditRecorder(repo, clock=lambda: FIXED_NOW)

    entry = await recorder.record(
        action="update",
        entity_type="User",
        entity_id="u-1",
        actor_id="admin-1",
        ip_address="10.0.0.5",
        old_values={"is_locked": False},
        new_values={"is_locked": True},
    )

    assert repo.entries == [entry]
    assert entry.user_id == "admin-1"
    assert entry.ip_address == "10.0.0.5"
    assert entry.timestamp == FIXED_NOW
    assert entry.retention_until == datetime(2031, 3, 1, 9, 30, tzinfo=timezone.utc)
    assert entry.action_details == "Audit for User.update"


@pytest.mark.asyncio
@pytest.mark.parametrize("entity_type", ["OperationLog", "RefreshToken", "BlacklistedToken"])
async def test_excluded_entities_are_not_recorded(entity_type):
    repo = ListAuditRepository()
    result = await AuditRecorder(repo).record(
        action="create", entity_type=entity_type, entity_id="x", actor_id=None, ip_address=None
    )
    assert result is None
    assert repo.entries == []


@pytest.mark.asyncio
async def test_missing_ip_defaults_to_system():
    repo = ListAuditRepository()
    entry = await AuditRecorder(repo).record(
        action="create", entity_type="Role", entity_id="r-1", actor_id=None, ip_address=None
    )
    assert entry.ip_address == "system"
    assert entry.user_id is None


@pytest.mark.asyncio
async def test_persistence_failure_is_swallowed():
    recorder = AuditRecorder(ListAuditRepository(fail=True))
    result = await recorder.record(
        action="create", entity_type="Role", entity_id="r-1", actor_id=None, ip_address="1.2.3.4"
    )
    assert result is None


@pytest.mark.asyncio
async def test_snapshots_are_redacted():
    repo = ListAuditRepository()
    entry = await AuditRecorder(repo).record(
        action="update",
        entity_type="User",
        entity_id="u-1",
        actor_id="u-1",
        ip_address="127.0.0.1",
        old_values={"password_hash": "salt$abc", "changed_at": FIXED_NOW},
        new_values={"password_hash": "salt$def", "login_encrypted": "{...}", "must_change_password": False},
    )
    assert entry.old_values == {"password_hash": REDACTED, "changed_at": FIXED_NOW.isoformat()}
    assert entry.new_values == {
        "password_hash": REDACTED,
        "login_encrypted": REDACTED,
        "must_change_password": False,
    }


def test_redact_snapshot_nested():
    assert redact_snapshot({"items": [{"token_hash": "x", "id": 1}]}) == {
        "items": [{"token_hash": REDACTED, "id": 1}]
    }
    assert redact_snapshot(None) is None


def test_add_years_leap_day():
    leap = datetime(2028, 2, 29, tzinfo=timezone.utc)
    assert add_years(leap, 5) == datetime(2033, 2, 28, tzinfo=timezone.utc)
    assert add_years(leap, 4) == datetime(2032, 2, 29, tzinfo=timezone.utc)
