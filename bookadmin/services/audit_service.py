"""审计日志服务层：后台队列异步写入，失败只记日志，不影响主操作。"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from bookadmin.config import (
    AUDIT_DRAIN_TIMEOUT_SECONDS,
    AUDIT_MAX_ATTEMPTS,
    AUDIT_QUEUE_SIZE,
    AUDIT_RETRY_DELAY_SECONDS,
)
from bookadmin.models import AuditLog
from bookadmin.models.audit_log import AUDIT_ACTIONS, AUDIT_RESOURCE_TYPES, AuditAction, AuditResourceType
from bookadmin.models.user import AdminRole
from bookadmin.services import permission_service
from bookadmin.services.errors import InvalidError, NotFoundError, storage_errors
from bookadmin.services.pipeline import set_stage
from bookadmin.services.role_service import Actor

logger = logging.getLogger(__name__)

AUDIT_PAGE_SIZE_MAX = 100


class AuditEntry(BaseModel):
    """待写入的审计记录，metadata 至少包含 before / after / reason。"""

    model_config = ConfigDict(frozen=True)

    actor_uid: str
    actor_email: str = ""
    actor_role: AdminRole
    action: AuditAction
    resource_type: AuditResourceType
    resource_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def build_audit_entry(
    actor: Actor,
    *,
    action: AuditAction,
    resource_type: AuditResourceType,
    resource_id: str | None,
    before: Any = None,
    after: Any = None,
    reason: str | None = None,
    **extra: Any,
) -> AuditEntry:
    """统一构建审计记录，避免各调用点自行拼装 metadata 结构。"""

    metadata = {**extra, "before": before, "after": after, "reason": reason}
    return AuditEntry(
        actor_uid=actor.uid,
        actor_email=actor.email,
        actor_role=actor.role,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata,
    )


async def write_audit_log(entry: AuditEntry) -> None:
    """写入一条审计记录，时间戳取数据库服务端时间。"""

    collection = AuditLog.get_motor_collection()
    await collection.update_one(
        {"_id": ObjectId()},
        [set_stage(entry.model_dump(), server_time_fields=("timestamp",))],
        upsert=True,
    )


AuditWriter = Callable[[AuditEntry], Awaitable[None]]


class AuditSink:
    """有界后台队列：生产方只入队不等待，写入失败按重试预算重试后丢弃并记录。"""

    def __init__(
        self,
        writer: AuditWriter = write_audit_log,
        *,
        max_queue_size: int = AUDIT_QUEUE_SIZE,
        max_attempts: int = AUDIT_MAX_ATTEMPTS,
        retry_delay: float = AUDIT_RETRY_DELAY_SECONDS,
    ) -> None:
        self._writer = writer
        self._queue: asyncio.Queue[AuditEntry] = asyncio.Queue(maxsize=max(max_queue_size, 1))
        self._worker: asyncio.Task | None = None
        self.max_attempts = max(max_attempts, 1)
        self.retry_delay = max(retry_delay, 0.0)
        self.written = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def record(self, entry: AuditEntry) -> None:
        """入队一条审计记录；队列已满时丢弃并告警，从不向调用方抛错。"""

        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "审计队列已满，丢弃记录: action=%s resource=%s/%s actor=%s",
                entry.action,
                entry.resource_type,
                entry.resource_id,
                entry.actor_uid,
            )

    def record_action(
        self,
        actor: Actor,
        *,
        action: AuditAction,
        resource_type: AuditResourceType,
        resource_id: str | None,
        before: Any = None,
        after: Any = None,
        reason: str | None = None,
        **extra: Any,
    ) -> None:
        """构建并入队审计记录；构建失败同样只记录日志。"""

        try:
            entry = build_audit_entry(
                actor,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                before=before,
                after=after,
                reason=reason,
                **extra,
            )
        except Exception as exc:
            self.dropped += 1
            logger.error("审计记录构建失败，已丢弃: action=%s resource=%s/%s: %s", action, resource_type, resource_id, exc)
            return
        self.record(entry)

    async def _write_with_retry(self, entry: AuditEntry) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._writer(entry)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "审计日志写入失败（第 %d/%d 次）: action=%s resource=%s/%s: %s",
                    attempt,
                    self.max_attempts,
                    entry.action,
                    entry.resource_type,
                    entry.resource_id,
                    exc,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
                continue
            self.written += 1
            return True

        self.dropped += 1
        logger.error("审计日志重试耗尽，已丢弃: %s", entry.model_dump_json())
        return False

    async def _worker_loop(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                await self._write_with_retry(entry)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """启动后台写入任务。"""
        if self.running:
            return
        self._worker = asyncio.create_task(self._worker_loop())
        logger.info("审计日志写入任务已启动")

    async def flush(self) -> None:
        """等待当前队列全部处理完毕（写入成功或已丢弃）。"""
        if not self._queue.empty() and not self.running:
            self.start()
        await self._queue.join()

    async def stop(self, timeout: float = AUDIT_DRAIN_TIMEOUT_SECONDS) -> None:
        """在超时内排空队列后停止；超时仍未写入的记录记日志后放弃。"""

        if not self._queue.empty() and not self.running:
            self.start()

        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            abandoned = self._queue.qsize()
            self.dropped += abandoned
            logger.error("审计队列排空超时，放弃 %d 条未写入记录", abandoned)

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.info("审计日志写入任务已停止（写入 %d 条，丢弃 %d 条）", self.written, self.dropped)


class AuditLogFilters(BaseModel):
    """审计日志查询条件。"""

    actor_uid: str = ""
    actor_email: str = ""
    action: str = ""
    resource_type: str = ""
    resource_id: str = ""
    date_from: datetime | None = None
    date_to: datetime | None = None


def build_audit_query(filters: AuditLogFilters) -> dict[str, Any]:
    query: dict[str, Any] = {}

    actor_uid = filters.actor_uid.strip()
    if actor_uid:
        query["actor_uid"] = actor_uid

    actor_email = filters.actor_email.strip()
    if actor_email:
        query["actor_email"] = {"$regex": re.escape(actor_email), "$options": "i"}

    action = filters.action.strip().lower()
    if action:
        if action not in AUDIT_ACTIONS:
            raise InvalidError(f"未知的审计动作：{action}")
        query["action"] = action

    resource_type = filters.resource_type.strip().lower()
    if resource_type:
        if resource_type not in AUDIT_RESOURCE_TYPES:
            raise InvalidError(f"未知的资源类型：{resource_type}")
        query["resource_type"] = resource_type

    resource_id = filters.resource_id.strip()
    if resource_id:
        query["resource_id"] = resource_id

    time_range: dict[str, datetime] = {}
    if filters.date_from is not None:
        time_range["$gte"] = filters.date_from
    if filters.date_to is not None:
        time_range["$lte"] = filters.date_to
    if time_range:
        query["timestamp"] = time_range

    return query


async def list_audit_logs(
    actor: Actor,
    filters: AuditLogFilters,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[AuditLog], int]:
    """分页查询审计日志（新记录在前），仅超级管理员可见。"""

    permission_service.require_permission(actor, "audit_logs", "read")
    query = build_audit_query(filters)

    safe_page = page if page > 0 else 1
    safe_size = min(max(page_size, 1), AUDIT_PAGE_SIZE_MAX)
    skip = (safe_page - 1) * safe_size

    with storage_errors():
        total = await AuditLog.find(query).count()
        items = (
            await AuditLog.find(query)
            .sort("-timestamp", "-_id")
            .skip(skip)
            .limit(safe_size)
            .to_list()
        )
    return items, total


async def get_audit_log(actor: Actor, log_id: str) -> AuditLog:
    """按 ID 查询单条审计日志。"""

    permission_service.require_permission(actor, "audit_logs", "read")
    try:
        object_id = PydanticObjectId(log_id)
    except Exception:
        raise NotFoundError("审计日志不存在") from None

    with storage_errors():
        log = await AuditLog.get(object_id)
    if log is None:
        raise NotFoundError("审计日志不存在")
    return log
