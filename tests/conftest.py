"""测试公共 fixture。"""

from __future__ import annotations

import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Iterator

import pytest
from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.errors import OperationFailure, PyMongoError


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# 本地运行测试时沿用项目 .env，便于 TEST_MONGO_URL 跟随开发环境配置
load_dotenv(ROOT_DIR / ".env")

from bookadmin.services.audit_service import AuditEntry, build_audit_entry  # noqa: E402
from bookadmin.services.role_service import Actor  # noqa: E402


@pytest.fixture(scope="session")
def test_mongo_url() -> str:
    return os.getenv("TEST_MONGO_URL") or os.getenv("MONGO_URL", "mongodb://localhost:27017/?replicaSet=rs0")


@pytest.fixture(scope="session")
def test_mongo_db_name() -> str:
    return os.getenv("TEST_MONGO_DB", "bookadmin_test")


@pytest.fixture
def mongo_cleanup(test_mongo_url: str, test_mongo_db_name: str) -> Iterator[None]:
    client = MongoClient(test_mongo_url, serverSelectionTimeoutMS=2000)
    try:
        try:
            hello = client.admin.command("hello")
            client.drop_database(test_mongo_db_name)
        except OperationFailure as exc:
            pytest.skip(
                "MongoDB 用户无 dropDatabase 权限，请配置 TEST_MONGO_URL 为有测试库权限的连接串: "
                f"{exc.details.get('errmsg', str(exc))}"
            )
        except PyMongoError as exc:
            pytest.skip(f"MongoDB 不可用，跳过集成测试: {exc}")

        # 配置写入依赖多文档事务
        if not hello.get("setName"):
            pytest.skip("MongoDB 未以副本集方式运行，无法使用事务，跳过集成测试")

        yield
    finally:
        try:
            client.drop_database(test_mongo_db_name)
        except PyMongoError:
            pass
        client.close()


@pytest.fixture
def super_admin() -> Actor:
    return Actor(uid="sa-1", email="root@example.com", role="super_admin")


@pytest.fixture
def admin_actor() -> Actor:
    return Actor(uid="adm-1", email="ops@example.com", role="admin")


class RecordingAuditSink:
    """只在内存中收集审计记录的 AuditSink 替身。"""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def record_action(self, actor: Actor, **kwargs: Any) -> None:
        self.record(build_audit_entry(actor, **kwargs))

    @property
    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]


@pytest.fixture
def recording_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


class FakeDatabase:
    """只计数的事务替身，单元测试不连接 MongoDB。"""

    def __init__(self) -> None:
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield "fake-session"


@pytest.fixture
def fake_database() -> FakeDatabase:
    return FakeDatabase()
