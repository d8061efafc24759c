"""平台配置项模型。"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Literal, get_args

from beanie import Document
from pymongo import IndexModel
from pydantic import BaseModel, Field

from .user import AdminRole

SettingValueType = Literal[
    "boolean",
    "number",
    "string",
    "enum",
    "json",
    "string_list",
    "number_list",
]
SettingCategory = Literal[
    "general_app",
    "feature_flags",
    "moderation_policy",
    "user_management_policy",
    "review_policy",
    "report_policy",
    "ai_ops_policy",
    "security_policy",
]

SettingEnvironmentScope = Literal["global", "dev", "staging", "prod"]

SETTING_VALUE_TYPES: tuple[str, ...] = get_args(SettingValueType)
SETTING_CATEGORIES: tuple[str, ...] = get_args(SettingCategory)
SETTING_ENVIRONMENT_SCOPES: tuple[str, ...] = get_args(SettingEnvironmentScope)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SettingValidationRules(BaseModel):
    """配置值的附加校验规则。"""

    required: bool = False
    minimum: float | None = None
    maximum: float | None = None
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    regex: str | None = None


class SettingSnapshot(BaseModel):
    """变更瞬间的值拷贝，与线上文档解耦。"""

    value: Any = None
    value_type: SettingValueType
    sensitive: bool = False


class Setting(Document):
    """平台配置项（按 key 唯一）。"""

    key: str = Field(..., min_length=2, max_length=128)
    category: SettingCategory = "general_app"
    label: str = Field(default="", max_length=120)
    description: str = Field(default="", max_length=500)
    value_type: SettingValueType
    value: Any = None
    allowed_values: list[str | int | float] | None = None
    validation: SettingValidationRules | None = None
    editable: bool = True
    sensitive: bool = False
    # 生效环境，仅作标注与筛选，不影响读取
    environment_scope: SettingEnvironmentScope = "global"
    version: int = Field(default=0, ge=0)
    last_updated_at: datetime = Field(default_factory=utc_now)
    last_updated_by: str | None = None
    updated_by_role: AdminRole | None = None

    class Settings:
        name = "settings"
        indexes = [
            IndexModel([("key", 1)], unique=True, name="uniq_setting_key"),
            IndexModel([("category", 1), ("key", 1)], name="idx_setting_category"),
        ]

    def snapshot(self) -> SettingSnapshot:
        return SettingSnapshot(
            value=copy.deepcopy(self.value),
            value_type=self.value_type,
            sensitive=self.sensitive,
        )
