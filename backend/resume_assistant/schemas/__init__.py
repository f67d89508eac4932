"""
HTTP 接口的请求 / 响应模型
"""

from .assistant_turn import AssistantTurnRequest, AssistantTurnResponse, AssistantTurnError
from .conversation import (
    MessagePayload,
    ThreadLookupResponse,
    TranscriptResponse,
    SaveMessageResponse,
    DeleteMessageResponse,
    ResumeContentResponse,
    GuidanceResponse,
)

__all__ = [
    "AssistantTurnRequest",
    "AssistantTurnResponse",
    "AssistantTurnError",
    "MessagePayload",
    "ThreadLookupResponse",
    "TranscriptResponse",
    "SaveMessageResponse",
    "DeleteMessageResponse",
    "ResumeContentResponse",
    "GuidanceResponse"
]
