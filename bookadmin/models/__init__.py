"""模型集合。"""

from .user import User
from .setting import Setting
from .setting_history import SettingHistory
from .audit_log import AuditLog

__all__ = [
    "User",
    "Setting",
    "SettingHistory",
    "AuditLog",
]
