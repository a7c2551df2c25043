"""
live_relay.main
~~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from live_relay.api import stream_endpoints, stream_ws
from live_relay.core.config import settings
from live_relay.core.logging import get_logger, setup_logging
from live_relay.core.rate_limit import limiter
from live_relay.db import close_mongo, connect_mongo, get_database
from live_relay.db.stream_log_repository import StreamLogRepository
from live_relay.schemas.api_response import ApiResponse
from live_relay.services.live_stream import LiveStreamService

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    repo: StreamLogRepository | None = None
    if settings.MONGO_ENABLED:
        await connect_mongo()
        repo = StreamLogRepository(get_database())

    service = LiveStreamService.from_settings(repo)
    app.state.live_stream = service
    app.state.stream_log_repo = repo

    heartbeat: asyncio.Task[None] | None = None
    if settings.HEARTBEAT_TIMEOUT > 0:
        heartbeat = asyncio.create_task(service.heartbeat_loop(settings.HEARTBEAT_SWEEP_INTERVAL))

    logger.info(
        "🚀 应用已启动 | env=%s | policy=%s | mongo=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.BROADCASTER_POLICY,
        settings.MONGO_ENABLED,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    if heartbeat is not None:
        heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await heartbeat
    await service.close()
    if settings.MONGO_ENABLED:
        await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="直播信令中继：主播/观众 WebRTC 信令、在线人数、聊天与连麦",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(stream_endpoints.router, prefix="/api", tags=["Live Stream"])
app.include_router(stream_ws.router, tags=["WebSocket Signaling"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    return ApiResponse.fail(msg=detail, code=500).as_error_response()


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    service: LiveStreamService = request.app.state.live_stream
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "is_live": service.registry.session.is_live,
            "connections": service.hub.online_count,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "live_relay.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
