"""
live_relay.api.stream_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播 REST 接口 —— 状态查询 + 参与者列表 + 聊天回看 + 强制下播。

端点:
  - ``GET  /stream/status``        → 当前直播状态与观众数
  - ``GET  /stream/participants``  → 在线参与者列表
  - ``GET  /stream/chat-history``  → 聊天记录（分页，需开启 MongoDB）
  - ``POST /stream/force-stop``    → 管理员强制下播
"""
from fastapi import APIRouter, Depends, Query, Request

from live_relay.api.deps import get_live_stream, get_stream_log_repo, require_admin
from live_relay.core.config import settings
from live_relay.core.logging import get_logger
from live_relay.core.rate_limit import limiter
from live_relay.core.security import Identity
from live_relay.db.stream_log_repository import StreamLogRepository
from live_relay.schemas.api_response import ApiResponse
from live_relay.schemas.stream import ChatHistoryData, ChatLogData, ParticipantInfoData, StreamStatusData
from live_relay.services.live_stream import LiveStreamService

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.get("/stream/status", summary="获取直播状态", response_model=ApiResponse[StreamStatusData])
@limiter.limit("10/second")
async def stream_status(request: Request, service: LiveStreamService = Depends(get_live_stream)):
    """返回当前直播状态、主播连接 ID 与观众数。"""
    return ApiResponse.ok(data=service.status())


@router.get(
    "/stream/participants",
    summary="获取在线参与者",
    response_model=ApiResponse[list[ParticipantInfoData]],
)
@limiter.limit("5/second")
async def stream_participants(request: Request, service: LiveStreamService = Depends(get_live_stream)):
    """返回所有在线参与者（含主播）。"""
    return ApiResponse.ok(data=service.participants_info())


@router.get("/stream/chat-history", summary="聊天回看", response_model=ApiResponse[ChatHistoryData])
@limiter.limit("5/second")
async def chat_history(
    request: Request,
    session_id: str | None = Query(None, description="只看某一场直播"),
    skip: int = Query(0, ge=0, description="跳过条数"),
    limit: int = Query(50, ge=1, le=settings.CHAT_HISTORY_LIMIT, description="每页条数"),
    repo: StreamLogRepository | None = Depends(get_stream_log_repo),
):
    """分页获取持久化的聊天记录。

    Args:
        session_id: 直播 ID，为空时返回全部场次。
        skip: 分页偏移。
        limit: 每页最大条数。
    """
    if repo is None:
        return ApiResponse.fail(msg="聊天记录持久化未启用", code=503).as_error_response()
    messages = await repo.get_chat_history(session_id, skip=skip, limit=limit)
    total = await repo.count_chat(session_id)
    return ApiResponse.ok(
        data=ChatHistoryData(
            messages=[ChatLogData(**msg) for msg in messages],
            total=total,
        ),
    )


@router.post("/stream/force-stop", summary="强制下播", response_model=ApiResponse[StreamStatusData])
@limiter.limit("2/second")
async def force_stop(
    request: Request,
    admin: Identity = Depends(require_admin),
    service: LiveStreamService = Depends(get_live_stream),
):
    """管理员强制结束当前直播（例如主播页面卡死但连接未断）。"""
    stopped = service.force_stop()
    logger.warning("管理员强制下播 | admin=%s | stopped=%s", admin.user_id, stopped)
    msg = "stream stopped" if stopped else "stream was not live"
    return ApiResponse.ok(data=service.status(), msg=msg)
