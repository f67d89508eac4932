"""
HTTP 接口

- POST /assistant-turn：一轮助手对话（失败同样返回 200，带 error / message / retryable）
- /conversations/{analysis_id}/...：客户端读写对话记录、定位 thread、获取简历内容和优化指引
- GET /health
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from sqlmodel import Session

from resume_assistant.assistant.invoker import AssistantInvoker
from resume_assistant.assistant.llm_factory import get_assistant_settings, get_runtime
from resume_assistant.conversation.context_fetcher import fetch_resume_content
from resume_assistant.conversation.context_resolver import is_identity_key
from resume_assistant.conversation.thread_locator import locate_thread
from resume_assistant.db.init_db import get_session, init_db
from resume_assistant.models.message import MessageRole
from resume_assistant.repositories.message_repository import MessageRepository
from resume_assistant.repositories.resume_repository import ResumeRepository
from resume_assistant.repositories.thread_repository import ThreadMetadataRepository
from resume_assistant.schemas.assistant_turn import AssistantTurnError, AssistantTurnRequest
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


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("[API] Database initialized")
    yield


app = FastAPI(
    title="Resume AI Assistant",
    version="0.1.0",
    lifespan=lifespan
)

# CORS configuration
origins = os.getenv("ALLOWED_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== 依赖 ====================

def build_turn_service() -> AssistantTurnService:
    """按 llm_config.json 创建运行时和调用器"""
    settings = get_assistant_settings()
    runtime = get_runtime()
    invoker = AssistantInvoker(
        runtime,
        poll_interval=settings.poll_interval_seconds,
        max_attempts=settings.max_poll_attempts
    )
    logger.info("[API] Assistant runtime ready: %s", settings.runtime)
    return AssistantTurnService(runtime, invoker)


def get_turn_service(request: Request) -> AssistantTurnService:
    """进程内共享一个服务实例（首次使用时创建）"""
    service = getattr(request.app.state, "turn_service", None)
    if service is None:
        service = build_turn_service()
        request.app.state.turn_service = service
    return service


def valid_analysis_id(analysis_id: str) -> str:
    if not is_identity_key(analysis_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid analysis ID")
    return analysis_id.lower()


def _validation_message(error: ValidationError) -> str:
    """把 pydantic 校验错误转换为一句话"""
    first = error.errors()[0]
    if first["type"] == "missing":
        return f"Missing required parameter: {first['loc'][-1]}"
    if first["type"] == "value_error":
        return str(first["ctx"]["error"])
    field = ".".join(str(part) for part in first["loc"])
    return f"Invalid parameter {field}: {first['msg']}"


# ==================== 助手对话 ====================

@app.post("/assistant-turn")
async def assistant_turn(request: Request):
    """
    一轮助手对话

    请求体：{message, analysisId, currentSection?, threadId?, resumeContent?}
    """
    try:
        payload = await request.json()
    except ValueError:
        return AssistantTurnError(error="Request body must be valid JSON").model_dump()

    try:
        turn_request = AssistantTurnRequest.model_validate(payload)
    except ValidationError as e:
        message = _validation_message(e)
        logger.warning("[API] Rejected assistant turn: %s", message)
        return AssistantTurnError(error=message).model_dump()

    service = get_turn_service(request)
    result = await service.handle_safely(turn_request)
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


# ==================== 会话读写 ====================

@app.get("/conversations/{analysis_id}/thread", response_model=ThreadLookupResponse)
async def get_thread(
    analysis_id: str = Depends(valid_analysis_id),
    session: Session = Depends(get_session)
):
    location = locate_thread(ThreadMetadataRepository(session), analysis_id)
    return ThreadLookupResponse(thread_id=location.thread_id, already_seeded=location.already_seeded)


@app.get("/conversations/{analysis_id}/messages", response_model=TranscriptResponse)
async def list_messages(
    analysis_id: str = Depends(valid_analysis_id),
    session: Session = Depends(get_session)
):
    records = MessageRepository(session).list_transcript(analysis_id)
    return TranscriptResponse(messages=[MessagePayload.from_record(record) for record in records])


@app.post("/conversations/{analysis_id}/messages", response_model=SaveMessageResponse)
async def save_message(
    message: MessagePayload,
    analysis_id: str = Depends(valid_analysis_id),
    session: Session = Depends(get_session)
):
    if message.role == MessageRole.SYSTEM:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="System messages are written by the server")
    saved = MessageRepository(session).save_message(message.to_record(analysis_id))
    return SaveMessageResponse(saved=saved)


@app.delete("/conversations/{analysis_id}/messages/{message_id}", response_model=DeleteMessageResponse)
async def delete_message(
    message_id: str,
    analysis_id: str = Depends(valid_analysis_id),
    session: Session = Depends(get_session)
):
    deleted = MessageRepository(session).delete_message(analysis_id, message_id)
    return DeleteMessageResponse(deleted=deleted)


@app.get("/conversations/{analysis_id}/resume-content", response_model=ResumeContentResponse)
async def get_resume_content(
    analysis_id: str = Depends(valid_analysis_id),
    session: Session = Depends(get_session)
):
    return ResumeContentResponse(resume_content=fetch_resume_content(ResumeRepository(session), analysis_id))


@app.get("/conversations/{analysis_id}/guidance", response_model=GuidanceResponse)
async def get_guidance(
    analysis_id: str = Depends(valid_analysis_id),
    session: Session = Depends(get_session)
):
    guidance: Optional[str] = ResumeRepository(session).get_guidance(analysis_id)
    return GuidanceResponse(guidance=guidance)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
