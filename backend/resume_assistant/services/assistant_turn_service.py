"""
助手对话轮次服务（服务端）

一轮对话的编排：
1. Thread 解析：显式 threadId -> 元数据中的最新 thread -> 新建
2. 上下文解析：full / partial / none
3. 组装本轮 run 指令
4. 调用助手并解析回复
5. 尽力而为地持久化（失败只记录日志）：
   - 调用前先记录 thread 元数据，首轮失败后重试时复用同一个 thread
   - 成功后更新 run_id 并保存 system 指令消息
"""

import asyncio
import logging
import uuid
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from resume_assistant.assistant.errors import AssistantError, ThreadNotFoundError
from resume_assistant.assistant.interpreter import interpret
from resume_assistant.assistant.invoker import AssistantInvoker
from resume_assistant.assistant.prompts import build_system_prompt
from resume_assistant.assistant.runtime import AssistantRuntime
from resume_assistant.conversation.context_fetcher import resolve_context
from resume_assistant.conversation.thread_locator import locate_thread
from resume_assistant.db.init_db import get_engine
from resume_assistant.models.message import ChatMessage, MessageRole
from resume_assistant.repositories.message_repository import MessageRepository
from resume_assistant.repositories.resume_repository import ResumeRepository
from resume_assistant.repositories.thread_repository import ThreadMetadataRepository
from resume_assistant.schemas.assistant_turn import (
    AssistantTurnError,
    AssistantTurnRequest,
    AssistantTurnResponse,
)

logger = logging.getLogger(__name__)


class AssistantTurnService:
    """
    助手对话轮次服务

    使用示例：
        service = AssistantTurnService(runtime=get_runtime())
        response = await service.handle(AssistantTurnRequest(message="...", analysisId="..."))
        print(response.message, response.suggestion)
    """

    def __init__(
        self,
        runtime: AssistantRuntime,
        invoker: Optional[AssistantInvoker] = None,
        engine=None
    ):
        """
        Args:
            runtime: 助手运行时
            invoker: 调用器（默认使用 1 秒 x 60 次的轮询策略）
            engine: 数据库引擎（默认 get_engine()）
        """
        self.runtime = runtime
        self.invoker = invoker or AssistantInvoker(runtime)
        self._engine = engine

    @property
    def engine(self):
        return self._engine or get_engine()

    async def handle(
        self,
        request: AssistantTurnRequest,
        cancel_event: Optional[asyncio.Event] = None
    ) -> AssistantTurnResponse:
        """
        处理一轮对话

        Raises:
            AssistantError: run 失败、超时、取消或 thread 忙
        """
        analysis_id = request.analysis_id
        logger.info("[AssistantTurnService] Processing message for analysis %s", analysis_id)

        # 1. Thread
        thread_id = await self._resolve_thread(analysis_id, request.thread_id)
        self._record_thread(request, thread_id)

        # 2. 上下文
        with Session(self.engine) as session:
            context = resolve_context(
                ResumeRepository(session),
                analysis_id,
                request.current_section,
                request.resume_content
            )
        logger.info("[AssistantTurnService] Context level for %s: %s", analysis_id, context.level.value)

        # 3. 指令
        system_prompt = build_system_prompt(context.job_context, context.section_content)

        # 4. 调用 + 解析
        result = await self.invoker.invoke(
            thread_id,
            request.message,
            instructions=system_prompt,
            cancel_event=cancel_event
        )
        interpreted = interpret(result.text)

        # 5. 持久化（尽力而为）
        self._record_turn(request, thread_id, result.run_id, system_prompt)

        return AssistantTurnResponse(
            message=interpreted.display_text,
            suggestion=interpreted.suggestion,
            thread_id=thread_id,
            assistant_id=self.runtime.assistant_id,
            run_id=result.run_id,
            system_prompt=system_prompt,
            context_level=context.level
        )

    async def handle_safely(
        self,
        request: AssistantTurnRequest,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Union[AssistantTurnResponse, AssistantTurnError]:
        """
        处理一轮对话，把所有失败转换成带兜底回复的错误响应
        """
        try:
            return await self.handle(request, cancel_event)
        except AssistantError as e:
            logger.error("[AssistantTurnService] Assistant turn failed: %s", e)
            return AssistantTurnError(error=str(e), retryable=e.retryable)
        except Exception as e:
            logger.exception("[AssistantTurnService] Unexpected error in assistant turn")
            return AssistantTurnError(error=str(e) or e.__class__.__name__)

    async def _resolve_thread(self, analysis_id: str, thread_id: Optional[str]) -> str:
        """
        解析本轮使用的 thread

        显式 threadId 失效时直接新建；否则查元数据中最新的 thread，失效或没有就新建
        """
        if thread_id:
            try:
                thread_id = await self.runtime.retrieve_thread(thread_id)
                logger.info("[AssistantTurnService] Using existing thread: %s", thread_id)
                return thread_id
            except ThreadNotFoundError:
                logger.info("[AssistantTurnService] Could not retrieve thread %s, creating new one", thread_id)
                return await self.runtime.create_thread()

        with Session(self.engine) as session:
            location = locate_thread(ThreadMetadataRepository(session), analysis_id)

        if not location.found:
            return await self.runtime.create_thread()

        try:
            thread_id = await self.runtime.retrieve_thread(location.thread_id)
        except ThreadNotFoundError:
            logger.info("[AssistantTurnService] Could not retrieve stored thread, creating new one")
            return await self.runtime.create_thread()

        logger.info("[AssistantTurnService] Retrieved existing thread: %s", thread_id)
        return thread_id

    def _record_thread(self, request: AssistantTurnRequest, thread_id: str) -> None:
        """调用助手之前记录 thread 绑定关系，失败只记录日志"""
        try:
            with Session(self.engine) as session:
                ThreadMetadataRepository(session).upsert_thread_metadata(
                    analysis_id=request.analysis_id,
                    thread_id=thread_id,
                    assistant_id=self.runtime.assistant_id,
                    section=request.current_section
                )
        except SQLAlchemyError as e:
            logger.error("[AssistantTurnService] Error storing thread metadata: %s", e)

    def _record_turn(
        self,
        request: AssistantTurnRequest,
        thread_id: str,
        run_id: str,
        system_prompt: str
    ) -> None:
        """保存 thread 元数据和 system 指令消息，失败只记录日志"""
        try:
            with Session(self.engine) as session:
                ThreadMetadataRepository(session).upsert_thread_metadata(
                    analysis_id=request.analysis_id,
                    thread_id=thread_id,
                    run_id=run_id,
                    assistant_id=self.runtime.assistant_id,
                    section=request.current_section
                )
                MessageRepository(session).save_message(ChatMessage(
                    id=str(uuid.uuid4()),
                    role=MessageRole.SYSTEM,
                    content=system_prompt,
                    analysis_id=request.analysis_id,
                    section=request.current_section,
                    thread_id=thread_id
                ))
        except SQLAlchemyError as e:
            logger.error("[AssistantTurnService] Error storing turn metadata: %s", e)
