"""平台配置控制器。"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from bookadmin.services import permission_service
from bookadmin.services.role_service import Actor
from bookadmin.services.setting_format import redact_history_entry, redact_setting, summarize_setting_value
from bookadmin.services.setting_service import SettingFilters, SettingStore
from bookadmin.apps.admin.controllers.deps import get_actor, get_setting_store

router = APIRouter(prefix="/admin/api", tags=["settings"])


class SettingUpdatePayload(BaseModel):
    """更新请求；raw_value 为编辑框原始文本，提供时优先按配置类型解析。"""

    value: Any = None
    raw_value: str | None = None
    value_type: str | None = None
    reason: str | None = Field(default=None, max_length=500)
    expected_version: int | None = Field(default=None, ge=0)


class SettingRollbackPayload(BaseModel):
    history_id: str = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=500)
    expected_version: int | None = Field(default=None, ge=0)


def _serialize_setting(setting, actor: Actor) -> dict[str, Any]:
    can_view_sensitive = permission_service.can_perform(actor.role, "settings", "read_sensitive")
    payload = redact_setting(setting, can_view_sensitive)
    payload["summary"] = summarize_setting_value(payload["value"], setting.value_type)
    return payload


@router.get("/settings")
async def list_settings(
    category: str = "",
    editable: Literal["all", "editable", "readonly"] = "all",
    sensitive: Literal["all", "sensitive", "normal"] = "all",
    environment_scope: Literal["all", "global", "dev", "staging", "prod"] = "all",
    search: str = "",
    sort_field: Literal["key", "category", "last_updated_at"] = "last_updated_at",
    sort_direction: Literal["asc", "desc"] = "desc",
    actor: Actor = Depends(get_actor),
    store: SettingStore = Depends(get_setting_store),
) -> dict[str, Any]:
    """配置列表（敏感值按角色脱敏）。"""
    filters = SettingFilters(
        category=category.strip(),
        editable=editable,
        sensitive=sensitive,
        environment_scope=environment_scope,
        search=search,
        sort_field=sort_field,
        sort_direction=sort_direction,
    )
    settings = await store.list_settings(actor, filters)
    return {
        "items": [_serialize_setting(item, actor) for item in settings],
        "total": len(settings),
    }


@router.get("/settings/{key}")
async def get_setting(
    key: str,
    actor: Actor = Depends(get_actor),
    store: SettingStore = Depends(get_setting_store),
) -> dict[str, Any]:
    setting = await store.get(key, actor)
    return _serialize_setting(setting, actor)


@router.get("/settings/{key}/history")
async def list_setting_history(
    key: str,
    limit: int = Query(default=50, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    store: SettingStore = Depends(get_setting_store),
) -> dict[str, Any]:
    entries = await store.list_history(key, actor, limit=limit)
    return {"items": [redact_history_entry(entry) for entry in entries]}


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    payload: SettingUpdatePayload,
    actor: Actor = Depends(get_actor),
    store: SettingStore = Depends(get_setting_store),
) -> dict[str, Any]:
    """更新配置值，返回新生成的历史记录。"""
    value = payload.value
    if payload.raw_value is not None:
        value = await store.parse_raw_value(key, payload.raw_value, actor, payload.value_type)

    entry = await store.update(
        key,
        value,
        actor,
        value_type=payload.value_type,
        reason=payload.reason,
        expected_version=payload.expected_version,
    )
    return {"version": entry.version_after, "entry": redact_history_entry(entry)}


@router.post("/settings/{key}/rollback")
async def rollback_setting(
    key: str,
    payload: SettingRollbackPayload,
    actor: Actor = Depends(get_actor),
    store: SettingStore = Depends(get_setting_store),
) -> dict[str, Any]:
    """回滚到指定历史版本（生成新版本，不改写历史）。"""
    entry = await store.rollback(
        key,
        payload.history_id,
        actor,
        reason=payload.reason,
        expected_version=payload.expected_version,
    )
    return {"version": entry.version_after, "entry": redact_history_entry(entry)}
