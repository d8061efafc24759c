"""用户管理控制器。"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from bookadmin.services.role_service import Actor
from bookadmin.services.user_service import UserAdminService, UserFilters, UserProfile
from bookadmin.apps.admin.controllers.deps import get_actor, get_user_service

router = APIRouter(prefix="/admin/api", tags=["users"])


class UserStatusPayload(BaseModel):
    status: str
    reason: str | None = Field(default=None, max_length=500)


class RoleAssignPayload(BaseModel):
    role: str
    reason: str | None = Field(default=None, max_length=500)


class RoleRevokePayload(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class AuthorStatusPayload(BaseModel):
    author_status: str
    reason: str | None = Field(default=None, max_length=500)


@router.get("/users")
async def list_users(
    user_type: Literal["all", "admin", "author", "reader"] = "all",
    status: Literal["all", "active", "suspended", "disabled"] = "all",
    search: str = "",
    actor: Actor = Depends(get_actor),
    service: UserAdminService = Depends(get_user_service),
) -> dict[str, Any]:
    """用户列表（最近注册在前）。"""
    filters = UserFilters(user_type=user_type, status=status, search=search)
    users = await service.list_users(actor, filters)
    return {
        "items": [user.model_dump(mode="json") for user in users],
        "total": len(users),
    }


@router.get("/users/{uid}", response_model=UserProfile)
async def get_user(
    uid: str,
    actor: Actor = Depends(get_actor),
    service: UserAdminService = Depends(get_user_service),
) -> UserProfile:
    return await service.get_user(uid, actor)


@router.post("/users/{uid}/status", response_model=UserProfile)
async def update_user_status(
    uid: str,
    payload: UserStatusPayload,
    actor: Actor = Depends(get_actor),
    service: UserAdminService = Depends(get_user_service),
) -> UserProfile:
    return await service.update_user_status(uid, payload.status, payload.reason, actor)


@router.post("/users/{uid}/role", response_model=UserProfile)
async def assign_admin_role(
    uid: str,
    payload: RoleAssignPayload,
    actor: Actor = Depends(get_actor),
    service: UserAdminService = Depends(get_user_service),
) -> UserProfile:
    return await service.assign_admin_role(uid, payload.role, payload.reason, actor)


@router.delete("/users/{uid}/role", response_model=UserProfile)
async def revoke_admin_role(
    uid: str,
    payload: RoleRevokePayload | None = Body(default=None),
    actor: Actor = Depends(get_actor),
    service: UserAdminService = Depends(get_user_service),
) -> UserProfile:
    """撤销管理员角色，用户降为普通读者。"""
    reason = payload.reason if payload is not None else None
    return await service.revoke_admin_role(uid, reason, actor)


@router.post("/users/{uid}/author-status", response_model=UserProfile)
async def update_author_status(
    uid: str,
    payload: AuthorStatusPayload,
    actor: Actor = Depends(get_actor),
    service: UserAdminService = Depends(get_user_service),
) -> UserProfile:
    return await service.update_author_status(uid, payload.author_status, payload.reason, actor)
