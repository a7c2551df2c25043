from fastapi import Header, HTTPException, Request

from live_relay.core.security import Identity, InvalidToken, decode_token, parse_bearer
from live_relay.db.stream_log_repository import StreamLogRepository
from live_relay.services.live_stream import LiveStreamService


def get_live_stream(request: Request) -> LiveStreamService:
    return request.app.state.live_stream


def get_stream_log_repo(request: Request) -> StreamLogRepository | None:
    return request.app.state.stream_log_repo


async def require_admin(authorization: str | None = Header(None)) -> Identity:
    """校验 ``Authorization: Bearer <jwt>``，要求管理员身份。"""
    token = parse_bearer(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Authorization header required")
    try:
        identity = decode_token(token)
    except InvalidToken:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return identity
