from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest
from fastapi import HTTPException
from beanie import PydanticObjectId

from bookadmin.apps.admin.controllers import deps
from bookadmin.main import create_app
from bookadmin.models import Setting, SettingHistory
from bookadmin.models.setting import SettingSnapshot
from bookadmin.services import audit_service
from bookadmin.services.errors import ConflictError, ForbiddenError, InvalidError, NotFoundError, UnavailableError
from bookadmin.services.role_service import Actor
from bookadmin.services.user_service import UserProfile


def _sensitive_setting() -> Setting:
    return Setting.model_construct(
        key="ai_ops_policy.provider_config",
        category="ai_ops_policy",
        label="AI 服务配置",
        value_type="json",
        value={"api_key": "sk-secret"},
        sensitive=True,
        version=3,
        last_updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def _history_entry() -> SettingHistory:
    return SettingHistory.model_construct(
        id=PydanticObjectId(),
        setting_key="feature_flags.new_search",
        category="feature_flags",
        action="update",
        actor_uid="sa-1",
        actor_role="super_admin",
        timestamp=datetime(2026, 1, 2, tzinfo=timezone.utc),
        version_before=3,
        version_after=4,
        before=SettingSnapshot(value=False, value_type="boolean"),
        after=SettingSnapshot(value=True, value_type="boolean"),
    )


class FakeSettingStore:
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.updates: list[dict] = []

    async def get(self, key, actor):
        if self.error:
            raise self.error
        return _sensitive_setting()

    async def list_settings(self, actor, filters):
        return [_sensitive_setting()]

    async def list_history(self, key, actor, limit=100):
        return [_history_entry()]

    async def parse_raw_value(self, key, raw_value, actor, value_type=None):
        return raw_value.strip().lower() == "true"

    async def update(self, key, value, actor, **kwargs):
        if self.error:
            raise self.error
        self.updates.append({"key": key, "value": value, **kwargs})
        return _history_entry()

    async def rollback(self, key, history_id, actor, **kwargs):
        if self.error:
            raise self.error
        return _history_entry()


class FakeUserService:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def revoke_admin_role(self, uid, reason, actor):
        self.calls.append(("revoke", uid, reason))
        return UserProfile(uid=uid, email="u@example.com", user_type="reader")

    async def assign_admin_role(self, uid, role, reason, actor):
        self.calls.append(("assign", uid, role))
        return UserProfile(uid=uid, role=role, user_type="admin")


@pytest.fixture
def setting_store() -> FakeSettingStore:
    return FakeSettingStore()


@pytest.fixture
def user_admin() -> FakeUserService:
    return FakeUserService()


def _build_app(actor: Actor | None, setting_store, user_admin):
    app = create_app()
    app.state.setting_store = setting_store
    app.state.user_service = user_admin
    if actor is not None:
        app.dependency_overrides[deps.get_actor] = lambda: actor
    return app


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.unit
def test_get_actor_reads_session() -> None:
    request = SimpleNamespace(session={"admin_uid": "u-1", "admin_email": "a@example.com", "admin_role": "analyst"})
    actor = deps.get_actor(request)

    assert actor == Actor(uid="u-1", email="a@example.com", role="admin")

    with pytest.raises(HTTPException) as exc_info:
        deps.get_actor(SimpleNamespace(session={"admin_uid": "u-1", "admin_role": "reader"}))
    assert exc_info.value.status_code == 401


@pytest.mark.unit
@pytest.mark.asyncio
async def test_requests_without_session_are_unauthorized(setting_store, user_admin) -> None:
    app = _build_app(None, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.get("/admin/api/me/permissions")

    assert response.status_code == 401


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sensitive_value_is_redacted_for_admin(setting_store, user_admin, admin_actor) -> None:
    app = _build_app(admin_actor, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.get("/admin/api/settings/ai_ops_policy.provider_config")
        listing = await client.get("/admin/api/settings", params={"sensitive": "sensitive"})

    assert response.status_code == 200
    body = response.json()
    assert body["value"] == "[REDACTED]"
    assert body["summary"] == "[REDACTED]"
    assert body["high_risk"] is True
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["value"] == "[REDACTED]"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sensitive_value_is_visible_to_super_admin(setting_store, user_admin, super_admin) -> None:
    app = _build_app(super_admin, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.get("/admin/api/settings/ai_ops_policy.provider_config")

    assert response.json()["value"] == {"api_key": "sk-secret"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_setting_returns_new_version(setting_store, user_admin, super_admin) -> None:
    app = _build_app(super_admin, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.put(
            "/admin/api/settings/feature_flags.new_search",
            json={"raw_value": "true", "reason": "灰度", "expected_version": 3},
        )

    assert response.status_code == 200
    assert response.json()["version"] == 4
    assert response.json()["entry"]["after"]["value"] is True
    assert setting_store.updates == [
        {
            "key": "feature_flags.new_search",
            "value": True,
            "value_type": None,
            "reason": "灰度",
            "expected_version": 3,
        }
    ]


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (NotFoundError("配置项不存在"), 404, "not_found"),
        (ForbiddenError("无权限"), 403, "forbidden"),
        (ConflictError("该配置已被其他管理员修改，请刷新后重试"), 409, "conflict"),
        (InvalidError("取值必须为布尔值"), 422, "invalid"),
        (UnavailableError("存储服务暂不可用"), 503, "unavailable"),
    ],
)
async def test_service_errors_map_to_status_codes(setting_store, user_admin, super_admin, error, status_code, code) -> None:
    setting_store.error = error
    app = _build_app(super_admin, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.post(
            "/admin/api/settings/feature_flags.new_search/rollback",
            json={"history_id": str(PydanticObjectId())},
        )

    assert response.status_code == status_code
    assert response.json() == {"code": code, "detail": error.message}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_history_endpoint(setting_store, user_admin, admin_actor) -> None:
    app = _build_app(admin_actor, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.get("/admin/api/settings/feature_flags.new_search/history", params={"limit": 10})

    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["version_after"] == 4
    assert isinstance(items[0]["id"], str)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_revoke_role_endpoint(setting_store, user_admin, super_admin) -> None:
    app = _build_app(super_admin, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.request("DELETE", "/admin/api/users/u-42/role", json={"reason": "岗位调整"})
        without_body = await client.delete("/admin/api/users/u-43/role")

    assert response.status_code == 200
    assert response.json()["role"] is None
    assert response.json()["user_type"] == "reader"
    assert without_body.status_code == 200
    assert user_admin.calls == [("revoke", "u-42", "岗位调整"), ("revoke", "u-43", None)]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_audit_logs_endpoint(monkeypatch, setting_store, user_admin, super_admin) -> None:
    captured = {}

    async def fake_list_audit_logs(actor, filters, page=1, page_size=25):
        captured["filters"] = filters
        captured["page"] = page
        return [], 0

    monkeypatch.setattr(audit_service, "list_audit_logs", fake_list_audit_logs)
    app = _build_app(super_admin, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.get("/admin/api/audit-logs", params={"action": "revoke_role", "page": 2})

    assert response.status_code == 200
    assert response.json() == {"items": [], "total": 0, "page": 2, "page_size": 25}
    assert captured["filters"].action == "revoke_role"
    assert captured["page"] == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_my_permissions(setting_store, user_admin, admin_actor) -> None:
    app = _build_app(admin_actor, setting_store, user_admin)

    async with _client(app) as client:
        response = await client.get("/admin/api/me/permissions")

    body = response.json()
    assert body["role"] == "admin"
    assert body["permissions"]["settings"]["update"] is False
    assert body["permissions"]["users"]["revoke_role"] is True
