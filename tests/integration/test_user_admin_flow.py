from __future__ import annotations

from datetime import datetime, timezone

import pytest

from bookadmin.models import AuditLog, User
from bookadmin.services.errors import ConflictError
from bookadmin.services.user_service import UserAdminService


@pytest.mark.integration
@pytest.mark.asyncio
async def test_revoke_role_unsets_role_and_audits(database, audit_sink, super_admin) -> None:
    await User(uid="u-42", email="editor@example.com", role="content_admin", user_type="admin").insert()
    service = UserAdminService(audit_sink)

    profile = await service.revoke_admin_role("u-42", "岗位调整", super_admin)
    assert profile.role is None
    assert profile.user_type == "reader"

    raw = await User.get_motor_collection().find_one({"uid": "u-42"})
    assert "role" not in raw
    assert raw["user_type"] == "reader"
    assert raw["updated_by"] == "sa-1"

    await audit_sink.flush()
    log = await AuditLog.find_one(AuditLog.resource_id == "u-42")
    assert log.action == "revoke_role"
    assert log.metadata["before"] == "content_admin"
    assert log.metadata["after"] is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_legacy_documents_are_normalized_on_read(database, audit_sink, admin_actor) -> None:
    now = datetime.now(timezone.utc)
    await User.get_motor_collection().insert_one(
        {"uid": "legacy-1", "email": "old@example.com", "role": "analyst", "status": "active",
         "created_at": now, "updated_at": now}
    )
    service = UserAdminService(audit_sink)

    profile = await service.get_user("legacy-1", admin_actor)
    assert profile.role == "admin"
    assert profile.user_type == "admin"

    raw = await User.get_motor_collection().find_one({"uid": "legacy-1"})
    assert "user_type" not in raw
    assert raw["role"] == "analyst"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_last_super_admin_cannot_be_revoked(database, audit_sink, super_admin) -> None:
    await User(uid="sa-1", email="root@example.com", role="super_admin", user_type="admin").insert()
    service = UserAdminService(audit_sink)

    with pytest.raises(ConflictError):
        await service.revoke_admin_role("sa-1", None, super_admin)

    user = await User.find_one(User.uid == "sa-1")
    assert user.role == "super_admin"
