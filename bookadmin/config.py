"""应用配置（通过 .env 覆盖）。"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")

APP_NAME = os.getenv("APP_NAME", "BookAdmin")
APP_ENV = os.getenv("APP_ENV", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# 设置历史依赖多文档事务，MongoDB 需以副本集方式运行
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017/?replicaSet=rs0")
MONGO_DB = os.getenv("MONGO_DB", "bookadmin")
MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

AUDIT_QUEUE_SIZE = int(os.getenv("AUDIT_QUEUE_SIZE", "1000"))
AUDIT_MAX_ATTEMPTS = int(os.getenv("AUDIT_MAX_ATTEMPTS", "3"))
AUDIT_RETRY_DELAY_SECONDS = float(os.getenv("AUDIT_RETRY_DELAY_SECONDS", "0.5"))
AUDIT_DRAIN_TIMEOUT_SECONDS = float(os.getenv("AUDIT_DRAIN_TIMEOUT_SECONDS", "5"))

SETTING_REASON_MIN_LENGTH = int(os.getenv("SETTING_REASON_MIN_LENGTH", "0"))
SETTING_HISTORY_LIMIT = int(os.getenv("SETTING_HISTORY_LIMIT", "100"))
