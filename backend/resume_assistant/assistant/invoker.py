"""
助手调用器（服务端）

一轮对话的执行流程：
1. 把用户消息追加到 thread（失败直接向上抛出）
2. 以本轮 system 指令作为 run 级覆盖启动 run（指令不写入 thread 历史）
3. 固定间隔轮询 run 状态，completed 立即返回，失败状态或超出上限都视为本轮失败
4. 列出 thread 消息，取最新的一条 assistant 回复

采用轮询而不是回调：运行时的 run 生命周期是异步的，且没有向本服务投递结果的保证；
固定的轮询上限让最坏延迟有界，失败模式确定。
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from resume_assistant.assistant.errors import (
    AssistantCancelledError,
    AssistantRunError,
    AssistantTimeoutError,
)
from resume_assistant.assistant.runtime import (
    AssistantRuntime,
    InvocationResult,
    RunStatus,
    ThreadMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_ATTEMPTS = 60


def select_latest_assistant_message(messages: List[ThreadMessage]) -> Optional[ThreadMessage]:
    """
    选出最新的 assistant 消息

    按 created_at 倒序；时间相同时保持列表中的原始顺序（靠前者胜出）
    """
    candidates = [message for message in messages if message.role == "assistant"]
    if not candidates:
        return None
    # sorted 是稳定排序，相同时间戳保持列表顺序
    return sorted(candidates, key=lambda message: message.created_at, reverse=True)[0]


class AssistantInvoker:
    """
    助手调用器

    使用示例：
        invoker = AssistantInvoker(runtime)
        result = await invoker.invoke(thread_id, "帮我优化技能部分", system_prompt)
        print(result.text)
    """

    def __init__(
        self,
        runtime: AssistantRuntime,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Args:
            runtime: 助手运行时
            poll_interval: 轮询间隔（秒）
            max_attempts: 最多轮询次数，超过即超时
            sleep: 休眠函数（测试中可替换）
        """
        if max_attempts < 1:
            raise ValueError("max_attempts 必须大于 0")
        self.runtime = runtime
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def invoke(
        self,
        thread_id: str,
        user_message: str,
        instructions: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> InvocationResult:
        """
        执行一轮助手调用

        Args:
            thread_id: 目标 thread
            user_message: 用户消息
            instructions: 本轮 run 的指令覆盖
            cancel_event: 取消信号，在两次轮询之间检查

        Returns:
            InvocationResult: 助手回复文本、run_id 和 thread 消息列表

        Raises:
            ThreadBusyError: thread 上已有进行中的 run（可重试）
            AssistantRunError: run 失败，或完成后没有助手回复
            AssistantTimeoutError: 超过轮询上限
            AssistantCancelledError: 收到取消信号
        """
        # 1. 追加用户消息
        await self.runtime.add_user_message(thread_id, user_message)
        logger.info("[AssistantInvoker] Added user message to thread: %s", thread_id)

        # 2. 启动 run
        run = await self.runtime.create_run(thread_id, instructions=instructions)
        run_id = run.run_id
        logger.info("[AssistantInvoker] Started assistant run: %s", run_id)

        # 3. 轮询 run 状态
        await self._wait_for_completion(thread_id, run_id, cancel_event)

        # 4. 取回复
        messages = await self.runtime.list_messages(thread_id)
        latest = select_latest_assistant_message(messages)
        if latest is None:
            raise AssistantRunError("No assistant response found", status=RunStatus.COMPLETED.value, run_id=run_id)

        logger.info("[AssistantInvoker] Retrieved assistant response for run: %s", run_id)
        return InvocationResult(
            text=latest.text,
            run_id=run_id,
            thread_id=thread_id,
            raw_messages=messages
        )

    async def _wait_for_completion(
        self,
        thread_id: str,
        run_id: str,
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        """
        轮询直到 completed

        completed 那一次轮询之后不再休眠；失败状态不自动重试
        """
        status = None
        for attempt in range(1, self.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise AssistantCancelledError(f"Run {run_id} polling cancelled")

            run = await self.runtime.retrieve_run(thread_id, run_id)
            status = run.status
            logger.info(
                "[AssistantInvoker] Run status check %d/%d: %s",
                attempt, self.max_attempts, status.value
            )

            if status == RunStatus.COMPLETED:
                return
            if status.is_failure:
                detail = f": {run.last_error}" if run.last_error else ""
                raise AssistantRunError(
                    f"Run failed with status: {status.value}{detail}",
                    status=status.value,
                    run_id=run_id
                )

            if attempt < self.max_attempts:
                await self._sleep(self.poll_interval)

        raise AssistantTimeoutError(
            "Assistant run did not complete within the time limit",
            status=status.value if status else None,
            run_id=run_id
        )
