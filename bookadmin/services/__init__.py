"""业务服务层。"""

from bookadmin.services import (
    audit_service,
    errors,
    permission_service,
    pipeline,
    role_service,
    setting_format,
    setting_service,
    user_service,
)

__all__ = [
    "audit_service",
    "errors",
    "permission_service",
    "pipeline",
    "role_service",
    "setting_format",
    "setting_service",
    "user_service",
]
