"""角色归一化服务：原始角色字符串到授权角色的唯一转换入口。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import get_args

from bookadmin.models.user import AdminRole

ADMIN_ROLES: tuple[str, ...] = get_args(AdminRole)

# 历史子角色统一折叠为 admin，不作为独立授权等级
LEGACY_ADMIN_ROLES = frozenset({"content_admin", "community_admin", "analyst"})


@dataclass(frozen=True)
class KnownRole:
    """已是标准授权角色。"""

    role: AdminRole


@dataclass(frozen=True)
class LegacyRole:
    """历史遗留的管理员子角色。"""

    raw: str


@dataclass(frozen=True)
class OtherRole:
    """非管理员角色（author、reader 等）或未知字符串。"""

    raw: str


RawRole = KnownRole | LegacyRole | OtherRole


@dataclass(frozen=True)
class Actor:
    """当前请求的操作管理员，由外部会话层提供。"""

    uid: str
    email: str
    role: AdminRole


def classify_role(raw: str | None) -> RawRole | None:
    """把原始角色字符串分类；空值返回 None。"""

    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    if value in ADMIN_ROLES:
        return KnownRole(role=value)  # type: ignore[arg-type]
    if value in LEGACY_ADMIN_ROLES:
        return LegacyRole(raw=value)
    return OtherRole(raw=value)


def normalize_admin_role(raw: str | None) -> AdminRole | None:
    """归一化为授权角色；非管理员角色一律返回 None。"""

    classified = classify_role(raw)
    if isinstance(classified, KnownRole):
        return classified.role
    if isinstance(classified, LegacyRole):
        return "admin"
    return None


def build_actor(uid: str | None, email: str | None, raw_role: str | None) -> Actor | None:
    """根据会话信息构造 Actor，角色无管理员权限时返回 None。"""

    role = normalize_admin_role(raw_role)
    normalized_uid = str(uid or "").strip()
    if role is None or not normalized_uid:
        return None
    return Actor(uid=normalized_uid, email=str(email or "").strip(), role=role)
