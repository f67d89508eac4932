"""
会话读写接口的请求 / 响应模型
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from resume_assistant.models.base import ensure_aware, utc_now
from resume_assistant.models.message import ChatMessage, MessageRole


class MessagePayload(BaseModel):
    """对话记录中的一条消息（线上格式）"""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    section: Optional[str] = None
    suggestion: Optional[str] = None
    thread_id: Optional[str] = Field(default=None, alias="threadId")

    @classmethod
    def from_record(cls, record: ChatMessage) -> "MessagePayload":
        return cls(
            id=record.id,
            role=record.role,
            content=record.content,
            timestamp=ensure_aware(record.timestamp),
            section=record.section,
            suggestion=record.suggestion,
            thread_id=record.thread_id
        )

    def to_record(self, analysis_id: str) -> ChatMessage:
        return ChatMessage(
            id=self.id,
            role=self.role,
            content=self.content,
            timestamp=self.timestamp,
            analysis_id=analysis_id,
            section=self.section,
            suggestion=self.suggestion,
            thread_id=self.thread_id
        )


class ThreadLookupResponse(BaseModel):
    """GET /conversations/{id}/thread"""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: Optional[str] = Field(default=None, alias="threadId")
    already_seeded: bool = Field(default=False, alias="alreadySeeded")


class TranscriptResponse(BaseModel):
    """GET /conversations/{id}/messages"""
    messages: List[MessagePayload] = Field(default_factory=list)


class SaveMessageResponse(BaseModel):
    """POST /conversations/{id}/messages"""
    saved: bool


class DeleteMessageResponse(BaseModel):
    """DELETE /conversations/{id}/messages/{message_id}"""
    deleted: bool


class ResumeContentResponse(BaseModel):
    """GET /conversations/{id}/resume-content"""

    model_config = ConfigDict(populate_by_name=True)

    resume_content: Optional[str] = Field(default=None, alias="resumeContent")


class GuidanceResponse(BaseModel):
    """GET /conversations/{id}/guidance"""
    guidance: Optional[str] = None
