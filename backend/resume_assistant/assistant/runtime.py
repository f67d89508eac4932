"""
助手运行时接口

把 LLM 助手当作不透明的对话服务：创建 thread、追加消息、启动 run、
查询 run 状态、列出消息。具体实现见 openai_runtime 和 graph_runtime。
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """run 状态枚举"""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, raw: str) -> "RunStatus":
        """
        将运行时返回的原始状态归一化

        - requires_action / cancelling 视为仍在进行中
        - incomplete 视为失败
        - 其余未知状态按进行中处理，由轮询上限兜底
        """
        try:
            return cls(raw)
        except ValueError:
            if raw == "incomplete":
                return cls.FAILED
            return cls.IN_PROGRESS

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_failure(self) -> bool:
        return self in FAILED_STATUSES


FAILED_STATUSES = frozenset({RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.EXPIRED})
TERMINAL_STATUSES = FAILED_STATUSES | {RunStatus.COMPLETED}


class AssistantRun(BaseModel):
    """一次 run 的快照"""
    run_id: str
    thread_id: str
    status: RunStatus
    last_error: Optional[str] = None


class ThreadMessage(BaseModel):
    """thread 中的一条消息（纯文本）"""
    message_id: str
    role: str
    text: str
    created_at: datetime
    run_id: Optional[str] = None


class InvocationResult(BaseModel):
    """一轮调用的结果"""
    text: str
    run_id: str
    thread_id: str
    raw_messages: List[ThreadMessage] = Field(default_factory=list)


class AssistantRuntime(Protocol):
    """
    助手运行时协议

    所有方法都是协程；retrieve_thread 在 thread 失效时抛出 ThreadNotFoundError，
    add_user_message / create_run 在 thread 有进行中的 run 时抛出 ThreadBusyError
    """

    assistant_id: Optional[str]

    async def create_thread(self) -> str:
        ...

    async def retrieve_thread(self, thread_id: str) -> str:
        ...

    async def add_user_message(self, thread_id: str, content: str) -> str:
        ...

    async def create_run(self, thread_id: str, instructions: Optional[str] = None) -> AssistantRun:
        ...

    async def retrieve_run(self, thread_id: str, run_id: str) -> AssistantRun:
        ...

    async def list_messages(self, thread_id: str) -> List[ThreadMessage]:
        ...
