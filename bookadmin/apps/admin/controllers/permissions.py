"""当前管理员权限控制器。"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from bookadmin.services import permission_service
from bookadmin.services.role_service import Actor
from bookadmin.apps.admin.controllers.deps import get_actor

router = APIRouter(prefix="/admin/api", tags=["permissions"])


@router.get("/me/permissions")
async def my_permissions(actor: Actor = Depends(get_actor)) -> dict[str, Any]:
    """返回前端按钮显隐所需的布尔权限标记。"""
    return {
        "uid": actor.uid,
        "email": actor.email,
        "role": actor.role,
        "permissions": permission_service.build_permission_flags(actor.role),
    }
