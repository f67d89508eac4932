"""
OpenAI Assistants 运行时

基于 openai.AsyncOpenAI 的 beta threads 接口实现 AssistantRuntime
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import openai

from resume_assistant.assistant.errors import ThreadBusyError, ThreadNotFoundError
from resume_assistant.assistant.runtime import AssistantRun, RunStatus, ThreadMessage

logger = logging.getLogger(__name__)

# 运行时拒绝重叠 run 时的错误文本特征
_BUSY_MARKERS = ("while a run", "already has an active run", "is active")


def _is_busy_error(error: openai.BadRequestError) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _BUSY_MARKERS)


def _message_text(message) -> str:
    """拼接消息中的全部 text 块"""
    parts = []
    for block in message.content or []:
        if getattr(block, "type", None) == "text":
            parts.append(block.text.value)
    return "\n".join(parts)


def _to_run(run, thread_id: str) -> AssistantRun:
    last_error = getattr(run, "last_error", None)
    return AssistantRun(
        run_id=run.id,
        thread_id=thread_id,
        status=RunStatus.parse(run.status),
        last_error=getattr(last_error, "message", None) if last_error else None
    )


class OpenAIAssistantRuntime:
    """
    OpenAI Assistants API 运行时

    使用示例：
        runtime = OpenAIAssistantRuntime(AsyncOpenAI(api_key=...), assistant_id="asst_xxx")
        thread_id = await runtime.create_thread()
    """

    def __init__(self, client: openai.AsyncOpenAI, assistant_id: str, message_page_size: int = 20):
        """
        Args:
            client: AsyncOpenAI 客户端
            assistant_id: 处理 run 的 assistant
            message_page_size: list_messages 每次拉取的条数（最新的在前）
        """
        self.client = client
        self.assistant_id = assistant_id
        self.message_page_size = message_page_size

    async def create_thread(self) -> str:
        thread = await self.client.beta.threads.create()
        logger.info("[OpenAIAssistantRuntime] Created new thread: %s", thread.id)
        return thread.id

    async def retrieve_thread(self, thread_id: str) -> str:
        try:
            thread = await self.client.beta.threads.retrieve(thread_id)
        except openai.NotFoundError as e:
            raise ThreadNotFoundError(thread_id) from e
        return thread.id

    async def add_user_message(self, thread_id: str, content: str) -> str:
        try:
            message = await self.client.beta.threads.messages.create(
                thread_id=thread_id,
                role="user",
                content=content
            )
        except openai.BadRequestError as e:
            if _is_busy_error(e):
                raise ThreadBusyError(thread_id, str(e)) from e
            raise
        return message.id

    async def create_run(self, thread_id: str, instructions: Optional[str] = None) -> AssistantRun:
        kwargs = {"thread_id": thread_id, "assistant_id": self.assistant_id}
        if instructions:
            # run 级覆盖，不写入 thread 历史
            kwargs["instructions"] = instructions
        try:
            run = await self.client.beta.threads.runs.create(**kwargs)
        except openai.BadRequestError as e:
            if _is_busy_error(e):
                raise ThreadBusyError(thread_id, str(e)) from e
            raise
        return _to_run(run, thread_id)

    async def retrieve_run(self, thread_id: str, run_id: str) -> AssistantRun:
        run = await self.client.beta.threads.runs.retrieve(run_id=run_id, thread_id=thread_id)
        return _to_run(run, thread_id)

    async def list_messages(self, thread_id: str) -> List[ThreadMessage]:
        page = await self.client.beta.threads.messages.list(
            thread_id=thread_id,
            order="desc",
            limit=self.message_page_size
        )
        return [
            ThreadMessage(
                message_id=message.id,
                role=message.role,
                text=_message_text(message),
                created_at=datetime.fromtimestamp(message.created_at, tz=timezone.utc),
                run_id=getattr(message, "run_id", None)
            )
            for message in page.data
        ]
