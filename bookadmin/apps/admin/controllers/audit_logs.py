"""审计日志控制器（仅超级管理员）。"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query

from bookadmin.models import AuditLog
from bookadmin.services import audit_service
from bookadmin.services.role_service import Actor
from bookadmin.apps.admin.controllers.deps import get_actor

router = APIRouter(prefix="/admin/api", tags=["audit_logs"])


def serialize_audit_log(log: AuditLog) -> dict[str, Any]:
    payload = log.model_dump(mode="json", exclude={"id", "revision_id"})
    payload["id"] = str(log.id) if log.id is not None else None
    return payload


@router.get("/audit-logs")
async def list_audit_logs(
    actor_uid: str = "",
    actor_email: str = "",
    action: str = "",
    resource_type: str = "",
    resource_id: str = "",
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=audit_service.AUDIT_PAGE_SIZE_MAX),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """审计日志分页列表（新记录在前）。"""
    filters = audit_service.AuditLogFilters(
        actor_uid=actor_uid,
        actor_email=actor_email,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        date_from=date_from,
        date_to=date_to,
    )
    items, total = await audit_service.list_audit_logs(actor, filters, page=page, page_size=page_size)
    return {
        "items": [serialize_audit_log(item) for item in items],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/audit-logs/{log_id}")
async def get_audit_log(log_id: str, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
    log = await audit_service.get_audit_log(actor, log_id)
    return serialize_audit_log(log)
