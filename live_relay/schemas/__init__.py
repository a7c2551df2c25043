"""
live_relay.schemas
~~~~~~~~~~~~~~~~~~
Pydantic schemas: HTTP responses and the WebSocket event protocol.
"""
from live_relay.schemas.api_response import ApiResponse
from live_relay.schemas.events import InboundEvent, outbound, parse_event
from live_relay.schemas.stream import (
    ChatHistoryData,
    ChatLogData,
    ParticipantInfoData,
    StreamStatusData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
