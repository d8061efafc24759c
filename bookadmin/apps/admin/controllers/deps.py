"""控制器公共依赖：当前操作人与服务实例。"""

from __future__ import annotations

from fastapi import HTTPException, Request

from bookadmin.services.role_service import Actor, build_actor
from bookadmin.services.setting_service import SettingStore
from bookadmin.services.user_service import UserAdminService


def get_actor(request: Request) -> Actor:
    """从会话读取登录管理员；会话由外部认证层写入。"""

    actor = build_actor(
        request.session.get("admin_uid"),
        request.session.get("admin_email"),
        request.session.get("admin_role"),
    )
    if actor is None:
        raise HTTPException(status_code=401, detail="请先登录管理员账号")
    return actor


def get_setting_store(request: Request) -> SettingStore:
    return request.app.state.setting_store


def get_user_service(request: Request) -> UserAdminService:
    return request.app.state.user_service
