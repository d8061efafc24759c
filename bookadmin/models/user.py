"""平台用户模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document
from pymongo import IndexModel
from pydantic import Field

AdminRole = Literal["admin", "super_admin"]
UserStatus = Literal["active", "suspended", "disabled"]
UserType = Literal["admin", "author", "reader"]
AuthorStatus = Literal["pending", "approved", "rejected", "suspended"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(Document):
    """平台用户（读者、作者与管理员共用一个集合）。"""

    uid: str = Field(..., min_length=1, max_length=128)
    email: str = Field(default="", max_length=254)
    display_name: str | None = Field(default=None, max_length=120)
    # 原始角色字符串，可能是 content_admin、reader(user) 等历史值，读取时再归一化
    role: str | None = None
    user_type: UserType | None = None
    status: UserStatus = "active"
    author_status: AuthorStatus | None = None
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "users"
        indexes = [
            IndexModel([("uid", 1)], unique=True, name="uniq_user_uid"),
            IndexModel([("role", 1), ("status", 1)], name="idx_user_role_status"),
            IndexModel([("created_at", -1)], name="idx_user_created_at"),
        ]
