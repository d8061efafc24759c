"""MongoDB 更新管道辅助：字面量包装与服务端时间戳。"""

from __future__ import annotations

from typing import Any

SERVER_NOW = "$$NOW"


def literal_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """用 $literal 包装字段值，避免以 $ 开头的字符串被当作字段路径解析。"""

    return {key: {"$literal": value} for key, value in fields.items()}


def set_stage(fields: dict[str, Any], *, server_time_fields: tuple[str, ...] = ()) -> dict[str, Any]:
    """构建 $set 管道阶段，server_time_fields 中的字段取数据库服务端时间。"""

    stage = literal_fields(fields)
    for field in server_time_fields:
        stage[field] = SERVER_NOW
    return {"$set": stage}
