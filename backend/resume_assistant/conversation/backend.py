"""
会话后端

客户端状态机眼中的服务端。两种实现接口一致：
- LocalConversationBackend：进程内直接调用服务和 Repository
- HttpConversationBackend：通过 httpx 调用 HTTP 接口
"""

import logging
from typing import List, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from resume_assistant.assistant.llm_factory import AssistantSettings
from resume_assistant.conversation.context_fetcher import fetch_resume_content
from resume_assistant.conversation.thread_locator import ThreadLocation, locate_thread
from resume_assistant.db.init_db import get_engine
from resume_assistant.repositories.message_repository import MessageRepository
from resume_assistant.repositories.resume_repository import ResumeRepository
from resume_assistant.repositories.thread_repository import ThreadMetadataRepository
from resume_assistant.schemas.assistant_turn import (
    AssistantTurnError,
    AssistantTurnRequest,
    AssistantTurnResponse,
)
from resume_assistant.schemas.conversation import (
    DeleteMessageResponse,
    GuidanceResponse,
    MessagePayload,
    ResumeContentResponse,
    SaveMessageResponse,
    ThreadLookupResponse,
    TranscriptResponse,
)
from resume_assistant.services.assistant_turn_service import AssistantTurnService

logger = logging.getLogger(__name__)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)

# 服务端轮询之外留给网络和持久化的余量（秒）
TURN_TIMEOUT_MARGIN = 30.0


def turn_timeout(settings: AssistantSettings, margin: float = TURN_TIMEOUT_MARGIN) -> float:
    """
    一轮对话请求的客户端超时：服务端最长轮询时间加余量

    Args:
        settings: 服务端使用的助手运行时配置
        margin: 额外余量（秒）
    """
    return settings.poll_interval_seconds * settings.max_poll_attempts + margin


def default_turn_timeout() -> float:
    """默认轮询策略（1 秒 x 60 次）下的超时"""
    return turn_timeout(AssistantSettings())


class ConversationBackendError(Exception):
    """服务端返回错误或无法连接"""

    def __init__(self, message: str, retryable: bool = False, reply: Optional[str] = None):
        super().__init__(message)
        self.retryable = retryable
        # 服务端给出的兜底回复（可能为空）
        self.reply = reply


class ConversationBackend(Protocol):
    """客户端使用的服务端接口"""

    async def locate_thread(self, analysis_id: str) -> ThreadLocation:
        ...

    async def load_transcript(self, analysis_id: str) -> List[MessagePayload]:
        ...

    async def save_message(self, analysis_id: str, message: MessagePayload) -> bool:
        ...

    async def delete_message(self, analysis_id: str, message_id: str) -> bool:
        ...

    async def fetch_resume_content(self, analysis_id: str) -> Optional[str]:
        ...

    async def fetch_guidance(self, analysis_id: str) -> Optional[str]:
        ...

    async def send_turn(self, request: AssistantTurnRequest) -> AssistantTurnResponse:
        ...


class LocalConversationBackend:
    """
    进程内后端

    使用示例：
        backend = LocalConversationBackend(AssistantTurnService(runtime))
        location = await backend.locate_thread(analysis_id)
    """

    def __init__(self, service: AssistantTurnService, engine=None):
        self.service = service
        self._engine = engine

    @property
    def engine(self):
        return self._engine or get_engine()

    async def locate_thread(self, analysis_id: str) -> ThreadLocation:
        with Session(self.engine) as session:
            return locate_thread(ThreadMetadataRepository(session), analysis_id)

    async def load_transcript(self, analysis_id: str) -> List[MessagePayload]:
        with Session(self.engine) as session:
            records = MessageRepository(session).list_transcript(analysis_id)
            return [MessagePayload.from_record(record) for record in records]

    async def save_message(self, analysis_id: str, message: MessagePayload) -> bool:
        with Session(self.engine) as session:
            return MessageRepository(session).save_message(message.to_record(analysis_id))

    async def delete_message(self, analysis_id: str, message_id: str) -> bool:
        with Session(self.engine) as session:
            return MessageRepository(session).delete_message(analysis_id, message_id)

    async def fetch_resume_content(self, analysis_id: str) -> Optional[str]:
        with Session(self.engine) as session:
            return fetch_resume_content(ResumeRepository(session), analysis_id)

    async def fetch_guidance(self, analysis_id: str) -> Optional[str]:
        with Session(self.engine) as session:
            return ResumeRepository(session).get_guidance(analysis_id)

    async def send_turn(self, request: AssistantTurnRequest) -> AssistantTurnResponse:
        result = await self.service.handle_safely(request)
        if isinstance(result, AssistantTurnError):
            raise ConversationBackendError(result.error, retryable=result.retryable, reply=result.message)
        return result


class HttpConversationBackend:
    """
    HTTP 后端

    send_turn 的请求会一直等到服务端轮询结束（默认最长 60 秒），
    所以它使用单独的超时 turn_timeout，不受客户端默认超时（httpx 为 5 秒）限制

    使用示例：
        async with httpx.AsyncClient(base_url="http://localhost:8000") as client:
            backend = HttpConversationBackend(client, turn_timeout=turn_timeout(get_assistant_settings()))
            response = await backend.send_turn(request)
    """

    def __init__(self, client: httpx.AsyncClient, turn_timeout: Optional[float] = None):
        """
        Args:
            client: 已配置 base_url 的 httpx.AsyncClient（生命周期由调用方管理）
            turn_timeout: send_turn 的超时（秒），默认按默认轮询策略计算
        """
        self.client = client
        self.turn_timeout = turn_timeout if turn_timeout is not None else default_turn_timeout()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error("[HttpConversationBackend] %s %s failed: %s", method, path, e)
            raise ConversationBackendError(str(e), retryable=True) from e
        except ValueError as e:
            # 响应体不是 JSON（例如网关错误页）
            logger.error("[HttpConversationBackend] %s %s returned invalid JSON: %s", method, path, e)
            raise ConversationBackendError(f"Invalid response from {path}", retryable=True) from e

    async def _get(self, path: str) -> dict:
        return await self._request("GET", path)

    async def _post(self, path: str, payload: dict, **kwargs) -> dict:
        return await self._request("POST", path, json=payload, **kwargs)

    def _parse(self, model: Type[ResponseModel], data: dict, path: str) -> ResponseModel:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error("[HttpConversationBackend] Unexpected response shape from %s: %s", path, e)
            raise ConversationBackendError(f"Unexpected response from {path}", retryable=True) from e

    async def locate_thread(self, analysis_id: str) -> ThreadLocation:
        path = f"/conversations/{analysis_id}/thread"
        data = self._parse(ThreadLookupResponse, await self._get(path), path)
        return ThreadLocation(thread_id=data.thread_id, already_seeded=data.already_seeded)

    async def load_transcript(self, analysis_id: str) -> List[MessagePayload]:
        path = f"/conversations/{analysis_id}/messages"
        return self._parse(TranscriptResponse, await self._get(path), path).messages

    async def save_message(self, analysis_id: str, message: MessagePayload) -> bool:
        path = f"/conversations/{analysis_id}/messages"
        payload = message.model_dump(mode="json", by_alias=True)
        return self._parse(SaveMessageResponse, await self._post(path, payload), path).saved

    async def delete_message(self, analysis_id: str, message_id: str) -> bool:
        path = f"/conversations/{analysis_id}/messages/{message_id}"
        return self._parse(DeleteMessageResponse, await self._request("DELETE", path), path).deleted

    async def fetch_resume_content(self, analysis_id: str) -> Optional[str]:
        path = f"/conversations/{analysis_id}/resume-content"
        return self._parse(ResumeContentResponse, await self._get(path), path).resume_content

    async def fetch_guidance(self, analysis_id: str) -> Optional[str]:
        path = f"/conversations/{analysis_id}/guidance"
        return self._parse(GuidanceResponse, await self._get(path), path).guidance

    async def send_turn(self, request: AssistantTurnRequest) -> AssistantTurnResponse:
        path = "/assistant-turn"
        payload = request.model_dump(by_alias=True, exclude_none=True)
        data = await self._post(path, payload, timeout=self.turn_timeout)
        if isinstance(data, dict) and "error" in data:
            error = self._parse(AssistantTurnError, data, path)
            raise ConversationBackendError(error.error, retryable=error.retryable, reply=error.message)
        return self._parse(AssistantTurnResponse, data, path)
