"""数据库连接句柄与生命周期管理。"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession

from .config import MONGO_DB, MONGO_TIMEOUT_MS, MONGO_URL
from .models import AuditLog, Setting, SettingHistory, User
from .services.errors import UnavailableError

DOCUMENT_MODELS = [Setting, SettingHistory, AuditLog, User]


class Database:
    """显式构造的存储句柄：服务启动时连接，停止时关闭，由各服务通过构造函数注入。"""

    def __init__(
        self,
        url: str = MONGO_URL,
        name: str = MONGO_DB,
        timeout_ms: int = MONGO_TIMEOUT_MS,
    ) -> None:
        self.url = url
        self.name = name
        self.timeout_ms = timeout_ms
        self.client: AsyncIOMotorClient | None = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def connect(self) -> None:
        """创建客户端并初始化 Beanie 文档模型。"""
        if self.client is not None:
            return
        # timeoutMS 为客户端整体操作超时，超时统一映射为 UnavailableError
        self.client = AsyncIOMotorClient(self.url, timeoutMS=self.timeout_ms, tz_aware=True)
        await init_beanie(database=self.client[self.name], document_models=DOCUMENT_MODELS)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncIOMotorClientSession]:
        """开启会话与多文档事务；块内抛出异常时事务自动回滚。"""
        if self.client is None:
            raise UnavailableError("数据库未连接")
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def close(self) -> None:
        """关闭 Mongo 连接。"""
        if self.client is not None:
            self.client.close()
            self.client = None
