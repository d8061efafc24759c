"""后台资源注册表（资源、动作与角色授权）。"""

from __future__ import annotations

from typing import Any, Iterable

ALL_ADMINS = ["admin", "super_admin"]
SUPER_ONLY = ["super_admin"]

ADMIN_TREE: list[dict[str, Any]] = [
    {
        "key": "accounts",
        "name": "用户管理",
        "children": [
            {
                "key": "users",
                "name": "用户",
                "url": "/admin/api/users",
                "grants": {
                    "read": ALL_ADMINS,
                    "update_status": ALL_ADMINS,
                    "update_author_status": ALL_ADMINS,
                    "assign_role": ALL_ADMINS,
                    "revoke_role": ALL_ADMINS,
                },
            },
        ],
    },
    {
        "key": "system",
        "name": "系统设置",
        "children": [
            {
                "key": "settings",
                "name": "平台配置",
                "url": "/admin/api/settings",
                "grants": {
                    "read": ALL_ADMINS,
                    "update": SUPER_ONLY,
                    "rollback": SUPER_ONLY,
                    "read_sensitive": SUPER_ONLY,
                },
            },
            {
                # 全局审计日志包含其他管理员的操作，仅超级管理员可见
                "key": "audit_logs",
                "name": "审计日志",
                "url": "/admin/api/audit-logs",
                "grants": {
                    "read": SUPER_ONLY,
                },
            },
        ],
    },
]


def iter_leaf_nodes(tree: list[dict]) -> Iterable[dict]:
    """遍历叶子节点。"""

    for node in tree:
        children = node.get("children")
        if children:
            yield from iter_leaf_nodes(children)
        else:
            yield node
