"""管理操作鉴权：按角色判断资源动作是否允许，拒绝时不产生任何副作用。"""

from __future__ import annotations

from bookadmin.apps.admin.registry import ADMIN_TREE, iter_leaf_nodes
from bookadmin.models.user import AdminRole
from bookadmin.services.errors import ForbiddenError
from bookadmin.services.role_service import Actor

_RESOURCE_GRANTS: dict[str, dict[str, frozenset[str]]] = {
    node["key"]: {
        action: frozenset(roles)
        for action, roles in node.get("grants", {}).items()
    }
    for node in iter_leaf_nodes(ADMIN_TREE)
}

_RESOURCE_NAMES: dict[str, str] = {
    node["key"]: node["name"]
    for node in iter_leaf_nodes(ADMIN_TREE)
}


def resource_actions(resource: str) -> set[str]:
    return set(_RESOURCE_GRANTS.get(resource, {}))


def resolve_permission_map(role: AdminRole | None) -> dict[str, set[str]]:
    """构建角色的权限映射 {resource: {action}}。"""

    if role is None:
        return {}

    permission_map: dict[str, set[str]] = {}
    for resource, grants in _RESOURCE_GRANTS.items():
        actions = {action for action, roles in grants.items() if role in roles}
        if actions:
            permission_map[resource] = actions
    return permission_map


def can(permission_map: dict[str, set[str]], resource: str, action: str) -> bool:
    return action in permission_map.get(resource, set())


def can_perform(role: AdminRole | None, resource: str, action: str) -> bool:
    """未知角色、资源或动作一律拒绝。"""

    if role is None:
        return False
    roles = _RESOURCE_GRANTS.get(resource, {}).get(action)
    if not roles:
        return False
    return role in roles


def require_permission(actor: Actor | None, resource: str, action: str) -> None:
    """鉴权失败抛出 ForbiddenError，调用方须在任何读写之前执行。"""

    role = actor.role if actor is not None else None
    if can_perform(role, resource, action):
        return
    name = _RESOURCE_NAMES.get(resource, resource)
    raise ForbiddenError(f"当前账号无权执行该操作：{name} / {action}")


def build_permission_flags(role: AdminRole | None) -> dict[str, dict[str, bool]]:
    """构建前端使用的布尔权限标记。"""

    permission_map = resolve_permission_map(role)
    return {
        resource: {
            action: can(permission_map, resource, action)
            for action in sorted(grants)
        }
        for resource, grants in _RESOURCE_GRANTS.items()
    }
