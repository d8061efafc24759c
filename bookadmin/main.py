"""FastAPI 应用入口。"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from .apps.admin.controllers.audit_logs import router as audit_logs_router
from .apps.admin.controllers.permissions import router as permissions_router
from .apps.admin.controllers.settings import router as settings_router
from .apps.admin.controllers.users import router as users_router
from .config import APP_NAME, LOG_LEVEL, SECRET_KEY
from .db import Database
from .services.audit_service import AuditSink
from .services.errors import ServiceError
from .services.setting_service import SettingStore, ensure_default_settings
from .services.user_service import UserAdminService

# 配置日志
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[str, int] = {
    "not_found": 404,
    "forbidden": 403,
    "conflict": 409,
    "invalid": 422,
    "unavailable": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：启动时初始化，停止时清理资源。"""
    # 启动时执行
    database = Database()
    await database.connect()
    await ensure_default_settings()

    audit_sink = AuditSink()
    audit_sink.start()

    app.state.database = database
    app.state.audit_sink = audit_sink
    app.state.setting_store = SettingStore(database, audit_sink)
    app.state.user_service = UserAdminService(audit_sink)

    yield

    # 停止时执行：先排空审计队列，再关闭连接
    await audit_sink.stop()
    await database.close()


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """把服务层异常转换为统一的 JSON 错误响应。"""
    status_code = ERROR_STATUS_CODES.get(exc.code, 500)
    if status_code >= 500:
        logger.warning("请求失败 %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"code": exc.code, "detail": exc.message})


def create_app() -> FastAPI:
    application = FastAPI(title=APP_NAME, lifespan=lifespan)
    application.add_middleware(SessionMiddleware, secret_key=SECRET_KEY, session_cookie="bookadmin_session")
    application.add_exception_handler(ServiceError, service_error_handler)
    application.include_router(settings_router)
    application.include_router(users_router)
    application.include_router(audit_logs_router)
    application.include_router(permissions_router)

    @application.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
