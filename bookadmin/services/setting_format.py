"""配置展示辅助：脱敏、摘要与编辑框文本解析。

存储层保存原始快照，脱敏只在输出给前端时进行。
"""

from __future__ import annotations

import json
from typing import Any

from bookadmin.models import Setting, SettingHistory
from bookadmin.services.errors import InvalidError

REDACTED_VALUE = "[REDACTED]"


def is_redacted(value: Any) -> bool:
    return value == REDACTED_VALUE


def is_high_risk_setting(setting: Setting) -> bool:
    return setting.sensitive or setting.category == "security_policy"


def mask_snapshot(snapshot: dict[str, Any] | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    masked = dict(snapshot)
    if masked.get("sensitive") and "value" in masked:
        masked["value"] = REDACTED_VALUE
    return masked


def redact_setting(setting: Setting, can_view_sensitive: bool) -> dict[str, Any]:
    """序列化配置项，敏感值仅对有权限的角色明文展示。"""

    payload = setting.model_dump(mode="json", exclude={"id", "revision_id"})
    if setting.sensitive and not can_view_sensitive:
        payload["value"] = REDACTED_VALUE
    payload["high_risk"] = is_high_risk_setting(setting)
    return payload


def redact_history_entry(entry: SettingHistory) -> dict[str, Any]:
    """序列化历史记录；敏感快照对所有角色都做脱敏。"""

    payload = entry.model_dump(mode="json", exclude={"revision_id"})
    payload["id"] = str(entry.id) if entry.id is not None else None
    payload["before"] = mask_snapshot(payload.get("before"))
    payload["after"] = mask_snapshot(payload.get("after"))
    return payload


def summarize_setting_value(value: Any, value_type: str) -> str:
    """生成列表页使用的简短值摘要。"""

    if is_redacted(value):
        return REDACTED_VALUE
    if value is None:
        return "null"

    if value_type == "boolean":
        return "true" if value else "false"
    if value_type in {"number", "enum"}:
        return str(value)
    if value_type == "string":
        text = str(value)
        return f"{text[:57]}..." if len(text) > 60 else text
    if value_type == "json":
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            return "[Invalid JSON]"
        return f"{text[:77]}..." if len(text) > 80 else text
    if value_type in {"string_list", "number_list"}:
        return f"{len(value)} 项" if isinstance(value, list) else "[Invalid list]"
    return str(value)


def parse_editor_value(raw_value: str, setting: Setting) -> Any:
    """把编辑框文本解析为配置值，列表类型按行拆分。"""

    value_type = setting.value_type
    text = str(raw_value or "")

    if value_type == "boolean":
        normalized = text.strip().lower()
        if normalized not in {"true", "false"}:
            raise InvalidError("请选择 true 或 false")
        return normalized == "true"

    if value_type == "number":
        try:
            number = float(text.strip())
        except ValueError:
            raise InvalidError("请输入有效数字") from None
        return int(number) if number.is_integer() and "." not in text else number

    if value_type == "string":
        return text

    if value_type == "enum":
        if any(isinstance(item, (int, float)) for item in setting.allowed_values or []):
            stripped = text.strip()
            if stripped.lstrip("-").isdigit():
                return int(stripped)
        return text

    if value_type == "json":
        try:
            parsed = json.loads(text or "{}")
        except ValueError:
            raise InvalidError("请输入合法的 JSON 对象") from None
        if not isinstance(parsed, dict):
            raise InvalidError("请输入合法的 JSON 对象")
        return parsed

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if value_type == "string_list":
        return lines
    if value_type == "number_list":
        numbers: list[int | float] = []
        for line in lines:
            try:
                number = float(line)
            except ValueError:
                raise InvalidError("每一行都必须是有效数字") from None
            numbers.append(int(number) if number.is_integer() and "." not in line else number)
        return numbers

    raise InvalidError(f"未知的值类型：{value_type}")
