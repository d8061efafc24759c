"""配置变更历史模型（只追加）。"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from beanie import Document
from pymongo import IndexModel
from pydantic import Field

from .setting import SettingCategory, SettingSnapshot
from .user import AdminRole

SettingHistoryAction = Literal["update", "rollback"]


class SettingHistory(Document):
    """配置项的一次变更记录；写入后不再修改或删除。"""

    setting_key: str = Field(..., min_length=2, max_length=128)
    category: SettingCategory = "general_app"
    action: SettingHistoryAction
    actor_uid: str
    actor_role: AdminRole
    # 由数据库服务端时钟写入
    timestamp: datetime | None = None
    version_before: int = Field(..., ge=0)
    version_after: int = Field(..., ge=1)
    before: SettingSnapshot | None = None
    after: SettingSnapshot | None = None
    reason: str | None = None
    source_history_id: str | None = None

    class Settings:
        name = "setting_history"
        indexes = [
            IndexModel(
                [("setting_key", 1), ("timestamp", -1), ("version_after", -1)],
                name="idx_setting_history_key_time",
            ),
        ]
