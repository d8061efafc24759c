"""后台审计日志模型（全局只追加）。"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, get_args

from beanie import Document
from pymongo import IndexModel
from pydantic import Field

from .user import AdminRole

AuditAction = Literal[
    "assign_role",
    "revoke_role",
    "suspend_user",
    "activate_user",
    "approve_author",
    "reject_author",
    "setting_update",
    "setting_rollback",
    "view_setting_sensitive",
]
AuditResourceType = Literal["user", "settings"]

AUDIT_ACTIONS: tuple[str, ...] = get_args(AuditAction)
AUDIT_RESOURCE_TYPES: tuple[str, ...] = get_args(AuditResourceType)


class AuditLog(Document):
    """一次管理操作的审计记录。"""

    actor_uid: str
    actor_email: str = ""
    actor_role: AdminRole
    action: AuditAction
    resource_type: AuditResourceType
    resource_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    # 由数据库服务端时钟写入，避免客户端时钟漂移影响排序
    timestamp: datetime | None = None

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("timestamp", -1)], name="idx_audit_timestamp"),
            IndexModel([("actor_uid", 1), ("timestamp", -1)], name="idx_audit_actor"),
            IndexModel([("action", 1), ("timestamp", -1)], name="idx_audit_action"),
            IndexModel(
                [("resource_type", 1), ("resource_id", 1), ("timestamp", -1)],
                name="idx_audit_resource",
            ),
        ]
