"""平台配置服务层：版本化写入、变更历史与回滚。

每次写入都在同一个 MongoDB 事务里完成两件事：按读取时的 version 做
compare-and-set 更新配置文档，并追加一条历史记录。version 只增不减，
回滚同样生成新版本，历史记录从不修改或删除。
"""

from __future__ import annotations

import copy
import json
import logging
import math
import re
from typing import TYPE_CHECKING, Any, Literal

from beanie import PydanticObjectId
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClientSession
from pydantic import BaseModel

from bookadmin.config import SETTING_HISTORY_LIMIT, SETTING_REASON_MIN_LENGTH
from bookadmin.models import Setting, SettingHistory
from bookadmin.models.setting import SETTING_VALUE_TYPES, SettingSnapshot
from bookadmin.services import permission_service
from bookadmin.services.audit_service import AuditSink
from bookadmin.services.errors import ConflictError, ForbiddenError, InvalidError, NotFoundError, UnavailableError, storage_errors
from bookadmin.services.pipeline import set_stage
from bookadmin.services.role_service import Actor
from bookadmin.services.setting_format import mask_snapshot, parse_editor_value

if TYPE_CHECKING:
    from bookadmin.db import Database

logger = logging.getLogger(__name__)

STALE_VERSION_MESSAGE = "该配置已被其他管理员修改，请刷新后重试"
SETTINGS_LIST_LIMIT = 300

DEFAULT_SETTINGS: list[dict[str, Any]] = [
    {
        "key": "feature_flags.new_search",
        "category": "feature_flags",
        "label": "新版搜索",
        "description": "启用新版书籍搜索",
        "value_type": "boolean",
        "value": False,
    },
    {
        "key": "general_app.maintenance_mode",
        "category": "general_app",
        "label": "维护模式",
        "description": "开启后前台仅展示维护公告",
        "value_type": "boolean",
        "value": False,
    },
    {
        "key": "general_app.support_email",
        "category": "general_app",
        "label": "客服邮箱",
        "value_type": "string",
        "value": "support@example.com",
        "validation": {"required": True, "regex": r"^[^@\s]+@[^@\s]+\.[^@\s]+$"},
    },
    {
        "key": "general_app.app_version",
        "category": "general_app",
        "label": "应用版本",
        "description": "由发布流程写入，后台只读",
        "value_type": "string",
        "value": "1.0.0",
        "editable": False,
    },
    {
        "key": "review_policy.max_review_length",
        "category": "review_policy",
        "label": "书评最大长度",
        "value_type": "number",
        "value": 5000,
        "validation": {"minimum": 100, "maximum": 20000},
    },
    {
        "key": "moderation_policy.profanity_filter_level",
        "category": "moderation_policy",
        "label": "敏感词过滤级别",
        "value_type": "enum",
        "value": "medium",
        "allowed_values": ["off", "low", "medium", "high"],
    },
    {
        "key": "report_policy.auto_escalation_threshold",
        "category": "report_policy",
        "label": "举报自动升级阈值",
        "value_type": "number",
        "value": 5,
        "validation": {"minimum": 1, "maximum": 100},
    },
    {
        "key": "user_management_policy.signup_enabled",
        "category": "user_management_policy",
        "label": "开放注册",
        "value_type": "boolean",
        "value": True,
    },
    {
        "key": "security_policy.allowed_admin_domains",
        "category": "security_policy",
        "label": "管理员邮箱域名白名单",
        "value_type": "string_list",
        "value": ["example.com"],
        "validation": {"min_length": 1},
    },
    {
        "key": "ai_ops_policy.provider_config",
        "category": "ai_ops_policy",
        "label": "AI 服务配置",
        "value_type": "json",
        "value": {"provider": "default", "max_concurrency": 2},
        "sensitive": True,
    },
]


class SettingFilters(BaseModel):
    """配置列表查询条件。"""

    category: str = ""
    editable: Literal["all", "editable", "readonly"] = "all"
    sensitive: Literal["all", "sensitive", "normal"] = "all"
    environment_scope: Literal["all", "global", "dev", "staging", "prod"] = "all"
    search: str = ""
    sort_field: Literal["key", "category", "last_updated_at"] = "last_updated_at"
    sort_direction: Literal["asc", "desc"] = "desc"


# ---- 值校验 ----


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_value_type(value_type: str, value: Any) -> None:
    """按值类型校验取值形态。"""

    if value_type not in SETTING_VALUE_TYPES:
        raise InvalidError(f"未知的值类型：{value_type}")

    if value_type == "boolean" and not isinstance(value, bool):
        raise InvalidError("取值必须为布尔值")
    if value_type == "number" and not _is_number(value):
        raise InvalidError("取值必须为有效数字")
    if value_type == "string" and not isinstance(value, str):
        raise InvalidError("取值必须为字符串")
    if value_type == "enum" and not (isinstance(value, str) or _is_number(value)):
        raise InvalidError("枚举值必须为字符串或数字")
    if value_type == "json" and not isinstance(value, dict):
        raise InvalidError("JSON 配置必须为对象")
    if value_type == "string_list":
        if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
            raise InvalidError("取值必须为字符串列表")
    if value_type == "number_list":
        if not isinstance(value, list) or any(not _is_number(item) for item in value):
            raise InvalidError("取值必须为数字列表")


def validate_enum_value(setting: Setting, value_type: str, value: Any) -> None:
    if value_type != "enum" or not setting.allowed_values:
        return
    if value not in setting.allowed_values:
        allowed = ", ".join(str(item) for item in setting.allowed_values)
        raise InvalidError(f"取值必须为以下之一：{allowed}")


def validate_value_constraints(setting: Setting, value: Any) -> None:
    """按配置项的 validation 规则校验取值。"""

    rules = setting.validation
    if rules is None:
        return

    if rules.required:
        missing = (
            value is None
            or (isinstance(value, str) and not value.strip())
            or (isinstance(value, list) and not value)
        )
        if missing:
            raise InvalidError("取值不能为空")

    if _is_number(value):
        if rules.minimum is not None and value < rules.minimum:
            raise InvalidError(f"取值不能小于 {rules.minimum:g}")
        if rules.maximum is not None and value > rules.maximum:
            raise InvalidError(f"取值不能大于 {rules.maximum:g}")

    if isinstance(value, str):
        if rules.min_length is not None and len(value) < rules.min_length:
            raise InvalidError(f"长度不能少于 {rules.min_length} 个字符")
        if rules.max_length is not None and len(value) > rules.max_length:
            raise InvalidError(f"长度不能超过 {rules.max_length} 个字符")
        if rules.regex:
            try:
                pattern = re.compile(rules.regex)
            except re.error:
                raise InvalidError(f"配置项 {setting.key} 的校验正则无效") from None
            if not pattern.search(value):
                raise InvalidError("取值格式不符合要求")

    if isinstance(value, list):
        if rules.min_length is not None and len(value) < rules.min_length:
            raise InvalidError(f"列表至少需要 {rules.min_length} 项")
        if rules.max_length is not None and len(value) > rules.max_length:
            raise InvalidError(f"列表最多允许 {rules.max_length} 项")


def validate_setting_value(setting: Setting, value_type: str, value: Any) -> None:
    validate_value_type(value_type, value)
    validate_enum_value(setting, value_type, value)
    validate_value_constraints(setting, value)


def validate_reason(reason: str | None, min_length: int = SETTING_REASON_MIN_LENGTH) -> str | None:
    """清洗变更原因；配置了最小长度时强制要求填写。"""

    cleaned = str(reason or "").strip()
    if min_length > 0 and len(cleaned) < min_length:
        raise InvalidError(f"变更原因至少需要 {min_length} 个字符")
    return cleaned or None


def ensure_editable(setting: Setting) -> None:
    """只读配置项任何角色都不能修改。"""

    if not setting.editable:
        raise ForbiddenError(f"配置项 {setting.key} 为只读，不允许修改")


def ensure_expected_version(setting: Setting, expected_version: int | None) -> None:
    if expected_version is None:
        return
    if setting.version != expected_version:
        raise ConflictError(STALE_VERSION_MESSAGE)


def values_equal(left: Any, right: Any) -> bool:
    try:
        return json.dumps(left, sort_keys=True) == json.dumps(right, sort_keys=True)
    except (TypeError, ValueError):
        return left == right


def _audit_snapshot(snapshot: SettingSnapshot | None) -> dict[str, Any] | None:
    """审计日志只保存脱敏后的快照，原值仅留在配置历史中。"""

    return mask_snapshot(snapshot.model_dump() if snapshot is not None else None)


# ---- 存储访问 ----


async def find_setting(key: str, session: AsyncIOMotorClientSession | None = None) -> Setting | None:
    return await Setting.find_one(Setting.key == key, session=session)


async def find_all_settings(limit: int = SETTINGS_LIST_LIMIT) -> list[Setting]:
    return await Setting.find_all().sort("key").limit(limit).to_list()


async def find_history_entry(
    history_id: str,
    session: AsyncIOMotorClientSession | None = None,
) -> SettingHistory | None:
    try:
        object_id = PydanticObjectId(history_id)
    except Exception:
        return None
    return await SettingHistory.get(object_id, session=session)


async def find_history_entries(key: str, limit: int) -> list[SettingHistory]:
    return (
        await SettingHistory.find(SettingHistory.setting_key == key)
        .sort("-timestamp", "-version_after")
        .limit(limit)
        .to_list()
    )


async def compare_and_set_setting(
    key: str,
    expected_version: int,
    changes: dict[str, Any],
    session: AsyncIOMotorClientSession | None = None,
) -> bool:
    """仅当库中 version 仍等于读取值时写入；返回是否命中。"""

    collection = Setting.get_motor_collection()
    result = await collection.update_one(
        {"key": key, "version": expected_version},
        [set_stage(changes, server_time_fields=("last_updated_at",))],
        session=session,
    )
    return result.matched_count == 1


async def append_history(
    payload: dict[str, Any],
    session: AsyncIOMotorClientSession | None = None,
) -> SettingHistory:
    """追加一条历史记录，时间戳取数据库服务端时间。"""

    collection = SettingHistory.get_motor_collection()
    history_id = ObjectId()
    await collection.update_one(
        {"_id": history_id},
        [set_stage(payload, server_time_fields=("timestamp",))],
        upsert=True,
        session=session,
    )
    entry = await SettingHistory.get(history_id, session=session)
    if entry is None:
        raise UnavailableError("历史记录写入后无法读取，请稍后重试")
    return entry


async def ensure_default_settings() -> int:
    """初始化缺失的默认配置项，已存在的配置项不做任何改动。"""

    created = 0
    for item in DEFAULT_SETTINGS:
        if await find_setting(item["key"]) is not None:
            continue
        await Setting(**item).insert()
        created += 1
    if created:
        logger.info("已初始化 %d 个默认配置项", created)
    return created


class SettingStore:
    """版本化配置存储。"""

    def __init__(self, database: Database, audit_sink: AuditSink) -> None:
        self.database = database
        self.audit_sink = audit_sink

    async def get(self, key: str, actor: Actor) -> Setting:
        permission_service.require_permission(actor, "settings", "read")
        with storage_errors():
            setting = await find_setting(key)
        if setting is None:
            raise NotFoundError(f"配置项不存在：{key}")

        if setting.sensitive and permission_service.can_perform(actor.role, "settings", "read_sensitive"):
            self.audit_sink.record_action(
                actor,
                action="view_setting_sensitive",
                resource_type="settings",
                resource_id=key,
                category=setting.category,
            )
        return setting

    async def list_settings(self, actor: Actor, filters: SettingFilters | None = None) -> list[Setting]:
        permission_service.require_permission(actor, "settings", "read")
        filters = filters or SettingFilters()
        with storage_errors():
            settings = await find_all_settings()

        if filters.category and filters.category != "all":
            settings = [item for item in settings if item.category == filters.category]
        if filters.editable != "all":
            wanted = filters.editable == "editable"
            settings = [item for item in settings if item.editable is wanted]
        if filters.sensitive != "all":
            wanted = filters.sensitive == "sensitive"
            settings = [item for item in settings if item.sensitive is wanted]
        if filters.environment_scope != "all":
            settings = [item for item in settings if item.environment_scope == filters.environment_scope]

        keyword = filters.search.strip().lower()
        if keyword:
            settings = [
                item
                for item in settings
                if keyword in item.key.lower()
                or keyword in item.label.lower()
                or keyword in item.description.lower()
            ]

        reverse = filters.sort_direction == "desc"
        if filters.sort_field == "key":
            settings.sort(key=lambda item: item.key, reverse=reverse)
        elif filters.sort_field == "category":
            settings.sort(key=lambda item: (item.category, item.key), reverse=reverse)
        else:
            settings.sort(key=lambda item: item.last_updated_at, reverse=reverse)
        return settings

    async def list_history(self, key: str, actor: Actor, limit: int = SETTING_HISTORY_LIMIT) -> list[SettingHistory]:
        """按时间倒序返回配置变更历史。"""

        permission_service.require_permission(actor, "settings", "read")
        with storage_errors():
            return await find_history_entries(key, max(limit, 1))

    async def parse_raw_value(
        self,
        key: str,
        raw_value: str,
        actor: Actor,
        value_type: str | None = None,
    ) -> Any:
        """按配置项当前定义解析编辑框文本，供表单式提交使用。"""

        permission_service.require_permission(actor, "settings", "update")
        if value_type is not None and value_type not in SETTING_VALUE_TYPES:
            raise InvalidError(f"未知的值类型：{value_type}")
        with storage_errors():
            setting = await find_setting(key)
        if setting is None:
            raise NotFoundError(f"配置项不存在：{key}")
        if value_type is not None:
            setting = setting.model_copy(update={"value_type": value_type})
        return parse_editor_value(raw_value, setting)

    async def update(
        self,
        key: str,
        value: Any,
        actor: Actor,
        *,
        value_type: str | None = None,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> SettingHistory:
        """更新配置值，返回本次写入的历史记录。"""

        permission_service.require_permission(actor, "settings", "update")
        cleaned_reason = validate_reason(reason)
        if value_type is not None and value_type not in SETTING_VALUE_TYPES:
            raise InvalidError(f"未知的值类型：{value_type}")

        with storage_errors():
            async with self.database.transaction() as session:
                current = await find_setting(key, session)
                if current is None:
                    raise NotFoundError(f"配置项不存在：{key}")
                ensure_editable(current)
                ensure_expected_version(current, expected_version)

                next_type = value_type or current.value_type
                validate_setting_value(current, next_type, value)

                entry = await self._commit(
                    current,
                    action="update",
                    after=SettingSnapshot(
                        value=copy.deepcopy(value),
                        value_type=next_type,
                        sensitive=current.sensitive,
                    ),
                    actor=actor,
                    reason=cleaned_reason,
                    session=session,
                )

        self.audit_sink.record_action(
            actor,
            action="setting_update",
            resource_type="settings",
            resource_id=key,
            before=_audit_snapshot(entry.before),
            after=_audit_snapshot(entry.after),
            reason=cleaned_reason,
            history_entry_id=str(entry.id),
            category=entry.category,
            version_before=entry.version_before,
            version_after=entry.version_after,
        )
        logger.info("配置项 %s 已更新至 v%d（操作人 %s）", key, entry.version_after, actor.uid)
        return entry

    async def rollback(
        self,
        key: str,
        history_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> SettingHistory:
        """把配置恢复为某条历史记录的 after 值，作为一个新版本写入。"""

        permission_service.require_permission(actor, "settings", "rollback")
        cleaned_reason = validate_reason(reason)

        with storage_errors():
            async with self.database.transaction() as session:
                current = await find_setting(key, session)
                if current is None:
                    raise NotFoundError(f"配置项不存在：{key}")
                target = await find_history_entry(history_id, session)
                if target is None or target.setting_key != key:
                    raise NotFoundError("历史记录不存在")

                ensure_editable(current)
                if current.version < 1:
                    raise ConflictError(f"配置项 {key} 尚无可回滚的历史")
                ensure_expected_version(current, expected_version)

                restored = target.after
                if restored is None:
                    raise ConflictError("所选历史记录没有可恢复的值")
                validate_setting_value(current, restored.value_type, restored.value)
                if restored.value_type == current.value_type and values_equal(current.value, restored.value):
                    raise ConflictError("当前值已与所选历史版本一致")

                entry = await self._commit(
                    current,
                    action="rollback",
                    after=SettingSnapshot(
                        value=copy.deepcopy(restored.value),
                        value_type=restored.value_type,
                        sensitive=current.sensitive,
                    ),
                    actor=actor,
                    reason=cleaned_reason,
                    session=session,
                    source_history_id=str(target.id),
                )

        self.audit_sink.record_action(
            actor,
            action="setting_rollback",
            resource_type="settings",
            resource_id=key,
            before=_audit_snapshot(entry.before),
            after=_audit_snapshot(entry.after),
            reason=cleaned_reason,
            history_entry_id=str(entry.id),
            source_history_id=entry.source_history_id,
            category=entry.category,
            version_before=entry.version_before,
            version_after=entry.version_after,
        )
        logger.info(
            "配置项 %s 已回滚至历史 %s，当前 v%d（操作人 %s）",
            key,
            entry.source_history_id,
            entry.version_after,
            actor.uid,
        )
        return entry

    async def _commit(
        self,
        current: Setting,
        *,
        action: Literal["update", "rollback"],
        after: SettingSnapshot,
        actor: Actor,
        reason: str | None,
        session: AsyncIOMotorClientSession | None,
        source_history_id: str | None = None,
    ) -> SettingHistory:
        version_before = current.version
        version_after = version_before + 1
        before = current.snapshot()

        written = await compare_and_set_setting(
            current.key,
            version_before,
            {
                "value": after.value,
                "value_type": after.value_type,
                "version": version_after,
                "last_updated_by": actor.uid,
                "updated_by_role": actor.role,
            },
            session=session,
        )
        if not written:
            raise ConflictError(STALE_VERSION_MESSAGE)

        return await append_history(
            {
                "setting_key": current.key,
                "category": current.category,
                "action": action,
                "actor_uid": actor.uid,
                "actor_role": actor.role,
                "version_before": version_before,
                "version_after": version_after,
                "before": before.model_dump(),
                "after": after.model_dump(),
                "reason": reason,
                "source_history_id": source_history_id,
            },
            session=session,
        )
