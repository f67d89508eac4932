"""
助手对话轮次的请求 / 响应模型

对外字段使用 camelCase（analysisId / threadId ...），内部使用 snake_case
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from resume_assistant.assistant.prompts import FALLBACK_REPLY
from resume_assistant.conversation.context_fetcher import ContextLevel
from resume_assistant.conversation.context_resolver import is_identity_key


class AssistantTurnRequest(BaseModel):
    """POST /assistant-turn 请求体"""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    analysis_id: str = Field(alias="analysisId")
    current_section: Optional[str] = Field(default=None, alias="currentSection")
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    resume_content: Optional[str] = Field(default=None, alias="resumeContent")

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Missing required parameter: message")
        return value

    @field_validator("analysis_id")
    @classmethod
    def analysis_id_is_uuid(cls, value: str) -> str:
        if not is_identity_key(value):
            raise ValueError("Missing required parameter: analysisId")
        return value.lower()

    @field_validator("thread_id", "current_section", "resume_content")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class AssistantTurnResponse(BaseModel):
    """成功响应"""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    suggestion: Optional[str] = None
    thread_id: str = Field(alias="threadId")
    assistant_id: Optional[str] = Field(default=None, alias="assistantId")
    run_id: Optional[str] = Field(default=None, alias="runId")
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    context_level: Optional[ContextLevel] = Field(default=None, alias="contextLevel")


class AssistantTurnError(BaseModel):
    """
    失败响应

    同样以 HTTP 200 返回，message 是可以直接展示的兜底回复
    """

    error: str
    message: str = FALLBACK_REPLY
    retryable: bool = False
