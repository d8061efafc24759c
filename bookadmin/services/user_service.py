"""用户管理服务层：账号状态、管理员角色与作者审核。

每个变更操作都遵循同一流程：鉴权 → 读取变更前的值 → 写入并盖上
updated_by / 服务端 updated_at → 把审计记录交给 AuditSink 异步写入。
状态之间不设转换约束，任意状态都可以切换到任意状态。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

from motor.motor_asyncio import AsyncIOMotorClientSession
from pydantic import BaseModel

from bookadmin.models import User
from bookadmin.models.audit_log import AuditAction
from bookadmin.models.user import AdminRole, AuthorStatus, UserStatus, UserType
from bookadmin.services import permission_service
from bookadmin.services.audit_service import AuditSink
from bookadmin.services.errors import ConflictError, InvalidError, NotFoundError, storage_errors
from bookadmin.services.pipeline import SERVER_NOW, literal_fields
from bookadmin.services.role_service import ADMIN_ROLES, Actor, normalize_admin_role

logger = logging.getLogger(__name__)

USER_LIST_LIMIT = 200
USER_STATUSES: tuple[str, ...] = ("active", "suspended", "disabled")
AUTHOR_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected", "suspended")
READER_ROLE_STRINGS = frozenset({"reader", "reader(user)", "user"})

AUTHOR_STATUS_AUDIT_ACTIONS: dict[str, AuditAction] = {
    "approved": "approve_author",
    "rejected": "reject_author",
    "suspended": "suspend_user",
    "pending": "activate_user",
}


class UserProfile(BaseModel):
    """读取时归一化后的用户视图，不回写数据库。"""

    uid: str
    email: str = ""
    display_name: str | None = None
    role: AdminRole | None = None
    user_type: UserType | None = None
    status: UserStatus = "active"
    author_status: AuthorStatus | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserFilters(BaseModel):
    """用户列表查询条件。"""

    user_type: Literal["all", "admin", "author", "reader"] = "all"
    status: Literal["all", "active", "suspended", "disabled"] = "all"
    search: str = ""


def derive_user_type(raw_role: str | None, stored_user_type: str | None) -> str | None:
    """兼容只存了旧版 role 字符串、没有 user_type 的历史文档。"""

    if stored_user_type:
        return stored_user_type
    if normalize_admin_role(raw_role) is not None:
        return "admin"
    if raw_role == "author":
        return "author"
    if raw_role in READER_ROLE_STRINGS:
        return "reader"
    return None


def to_user_profile(user: User) -> UserProfile:
    return UserProfile(
        uid=user.uid,
        email=user.email,
        display_name=user.display_name,
        role=normalize_admin_role(user.role),
        user_type=derive_user_type(user.role, user.user_type),
        status=user.status,
        author_status=user.author_status,
        updated_by=user.updated_by,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


# ---- 存储访问 ----


async def find_user(uid: str, session: AsyncIOMotorClientSession | None = None) -> User | None:
    return await User.find_one(User.uid == uid, session=session)


async def find_recent_users(limit: int = USER_LIST_LIMIT) -> list[User]:
    return await User.find_all().sort("-created_at").limit(limit).to_list()


async def find_active_super_admin_uids() -> list[str]:
    users = await User.find({"role": "super_admin", "status": "active"}).to_list()
    return [user.uid for user in users]


async def apply_user_changes(
    uid: str,
    changes: dict[str, Any],
    *,
    unset_fields: tuple[str, ...] = (),
    session: AsyncIOMotorClientSession | None = None,
) -> bool:
    """写入用户变更并以服务端时间更新 updated_at；返回是否命中文档。"""

    stage = literal_fields(changes)
    stage["updated_at"] = SERVER_NOW
    pipeline: list[dict[str, Any]] = [{"$set": stage}]
    if unset_fields:
        pipeline.append({"$unset": list(unset_fields)})

    collection = User.get_motor_collection()
    result = await collection.update_one({"uid": uid}, pipeline, session=session)
    return result.matched_count == 1


async def is_last_super_admin(uid: str) -> bool:
    """判断该用户是否为唯一处于 active 状态的超级管理员。"""

    super_admin_uids = await find_active_super_admin_uids()
    return super_admin_uids == [uid]


class UserAdminService:
    """用户相关的管理操作。"""

    def __init__(self, audit_sink: AuditSink) -> None:
        self.audit_sink = audit_sink

    async def get_user(self, uid: str, actor: Actor) -> UserProfile:
        permission_service.require_permission(actor, "users", "read")
        user = await self._load(uid)
        return to_user_profile(user)

    async def list_users(self, actor: Actor, filters: UserFilters | None = None) -> list[UserProfile]:
        permission_service.require_permission(actor, "users", "read")
        filters = filters or UserFilters()
        with storage_errors():
            users = await find_recent_users()

        profiles = [to_user_profile(user) for user in users]
        if filters.user_type != "all":
            profiles = [item for item in profiles if item.user_type == filters.user_type]
        if filters.status != "all":
            profiles = [item for item in profiles if item.status == filters.status]

        keyword = filters.search.strip().lower()
        if keyword:
            profiles = [
                item
                for item in profiles
                if keyword in item.email.lower() or keyword in (item.display_name or "").lower()
            ]
        return profiles

    async def update_user_status(self, uid: str, status: str, reason: str | None, actor: Actor) -> UserProfile:
        permission_service.require_permission(actor, "users", "update_status")
        if status not in USER_STATUSES:
            raise InvalidError(f"未知的账号状态：{status}")

        user = await self._load(uid)
        before = user.status
        if status != "active" and normalize_admin_role(user.role) == "super_admin":
            await self._ensure_not_last_super_admin(uid, "停用")
        profile = await self._write(uid, {"status": status}, actor)

        self.audit_sink.record_action(
            actor,
            action="activate_user" if status == "active" else "suspend_user",
            resource_type="user",
            resource_id=uid,
            before=before,
            after=status,
            reason=_clean_reason(reason),
        )
        logger.info("用户 %s 状态 %s -> %s（操作人 %s）", uid, before, status, actor.uid)
        return profile

    async def assign_admin_role(self, uid: str, role: str, reason: str | None, actor: Actor) -> UserProfile:
        permission_service.require_permission(actor, "users", "assign_role")
        if role not in ADMIN_ROLES:
            raise InvalidError(f"未知的管理员角色：{role}")

        user = await self._load(uid)
        before = user.role
        if role != "super_admin" and normalize_admin_role(user.role) == "super_admin":
            await self._ensure_not_last_super_admin(uid, "降级")
        profile = await self._write(uid, {"role": role, "user_type": "admin"}, actor)

        self.audit_sink.record_action(
            actor,
            action="assign_role",
            resource_type="user",
            resource_id=uid,
            before=before,
            after=role,
            reason=_clean_reason(reason),
        )
        logger.info("用户 %s 被授予角色 %s（操作人 %s）", uid, role, actor.uid)
        return profile

    async def revoke_admin_role(self, uid: str, reason: str | None, actor: Actor) -> UserProfile:
        permission_service.require_permission(actor, "users", "revoke_role")

        user = await self._load(uid)
        before = user.role
        if normalize_admin_role(user.role) == "super_admin":
            await self._ensure_not_last_super_admin(uid, "撤销")
        profile = await self._write(uid, {"user_type": "reader"}, actor, unset_fields=("role",))

        self.audit_sink.record_action(
            actor,
            action="revoke_role",
            resource_type="user",
            resource_id=uid,
            before=before,
            after=None,
            reason=_clean_reason(reason),
        )
        logger.info("用户 %s 的管理员角色已撤销（操作人 %s）", uid, actor.uid)
        return profile

    async def update_author_status(
        self,
        uid: str,
        author_status: str,
        reason: str | None,
        actor: Actor,
    ) -> UserProfile:
        permission_service.require_permission(actor, "users", "update_author_status")
        if author_status not in AUTHOR_STATUSES:
            raise InvalidError(f"未知的作者状态：{author_status}")

        user = await self._load(uid)
        before = user.author_status
        profile = await self._write(uid, {"author_status": author_status}, actor)

        self.audit_sink.record_action(
            actor,
            action=AUTHOR_STATUS_AUDIT_ACTIONS[author_status],
            resource_type="user",
            resource_id=uid,
            before=before,
            after=author_status,
            reason=_clean_reason(reason),
        )
        logger.info("作者 %s 状态 %s -> %s（操作人 %s）", uid, before, author_status, actor.uid)
        return profile

    async def _load(self, uid: str) -> User:
        with storage_errors():
            user = await find_user(uid)
        if user is None:
            raise NotFoundError(f"用户不存在：{uid}")
        return user

    async def _write(
        self,
        uid: str,
        changes: dict[str, Any],
        actor: Actor,
        *,
        unset_fields: tuple[str, ...] = (),
    ) -> UserProfile:
        with storage_errors():
            matched = await apply_user_changes(
                uid,
                {**changes, "updated_by": actor.uid},
                unset_fields=unset_fields,
            )
            if not matched:
                raise NotFoundError(f"用户不存在：{uid}")
            user = await find_user(uid)
        if user is None:
            raise NotFoundError(f"用户不存在：{uid}")
        return to_user_profile(user)

    async def _ensure_not_last_super_admin(self, uid: str, verb: str) -> None:
        # 检查与随后的写入不在同一事务内：两个并发请求分别降级仅剩的两位
        # 超级管理员时，可能都通过检查。
        with storage_errors():
            last = await is_last_super_admin(uid)
        if last:
            raise ConflictError(f"无法{verb}唯一的超级管理员，请先指定另一位超级管理员")


def _clean_reason(reason: str | None) -> str | None:
    cleaned = str(reason or "").strip()
    return cleaned or None
