"""集成测试 fixture。"""

from __future__ import annotations

import pytest_asyncio

from bookadmin.db import Database
from bookadmin.services.audit_service import AuditSink


@pytest_asyncio.fixture
async def database(mongo_cleanup, test_mongo_url: str, test_mongo_db_name: str):
    db = Database(url=test_mongo_url, name=test_mongo_db_name)
    await db.connect()
    try:
        yield db
    finally:
        await db.close()


@pytest_asyncio.fixture
async def audit_sink(database):
    sink = AuditSink(retry_delay=0)
    sink.start()
    try:
        yield sink
    finally:
        await sink.stop(timeout=2)
